"""Domain models for the Lectern database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class SourceKind(str, Enum):
    FILE = "file"
    WEBPAGE = "webpage"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ChunkStatus(str, Enum):
    PENDING = "pending"
    EMBEDDED = "embedded"
    ERROR = "error"


@dataclass
class Document:
    id: str
    collection_id: str
    name: str
    source_kind: SourceKind
    storage_ref: str  # local file path or URL
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: str | None = None
    extracted_text: str | None = None
    processing_started_at: str | None = None
    processing_completed_at: str | None = None
    processing_metadata: str = field(default_factory=lambda: "{}")
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.processing_metadata or "{}")


@dataclass
class Chunk:
    id: str
    document_id: str
    chunk_index: int
    text: str
    token_count: int
    status: ChunkStatus = ChunkStatus.PENDING
    vector_id: str | None = None
    created_at: str | None = None
