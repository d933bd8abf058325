"""Raw text extraction for files and web pages."""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Protocol

import docx
import pypdf
from docx.opc.exceptions import PackageNotFoundError
from pypdf.errors import PyPdfError

from lectern.db.models import Document, SourceKind
from lectern.errors import ExtractionFailure
from lectern.ingest.web import fetch_page_text

logger = logging.getLogger(__name__)

TEXT_SUFFIXES: frozenset[str] = frozenset(
    [".txt", ".text", ".md", ".markdown", ".rst", ".csv", ".log"]
)
SUPPORTED_SUFFIXES: frozenset[str] = TEXT_SUFFIXES | {".pdf", ".docx"}


class Extractor(Protocol):
    """Turns a document's source into raw text. Raises ExtractionFailure."""

    def extract(self, document: Document) -> str: ...


class SourceExtractor:
    """Default extractor: dispatches on source kind, then on file suffix.

    - ``.pdf``: page text via pypdf, pages joined by blank lines
    - ``.docx``: paragraph text via python-docx
    - plain text suffixes: decoded as UTF-8 (undecodable bytes replaced)
    - ``webpage``: fetched through lectern.ingest.web
    """

    def __init__(self, check_robots: bool = True) -> None:
        self._check_robots = check_robots

    def extract(self, document: Document) -> str:
        if document.source_kind == SourceKind.WEBPAGE:
            return fetch_page_text(document.storage_ref, check_robots=self._check_robots).text

        path = Path(document.storage_ref)
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            raise ExtractionFailure(
                f"Unsupported file type '{suffix or path.name}'. "
                f"Supported: {', '.join(sorted(SUPPORTED_SUFFIXES))}"
            )
        if not path.is_file():
            raise ExtractionFailure(f"File not found: {path}")

        try:
            if suffix == ".pdf":
                return extract_pdf_text(path)
            if suffix == ".docx":
                return extract_docx_text(path)
            return path.read_text(encoding="utf-8", errors="replace")
        except (
            OSError,
            PyPdfError,
            PackageNotFoundError,
            zipfile.BadZipFile,
            ValueError,
            KeyError,
        ) as exc:
            raise ExtractionFailure(
                f"Failed to extract text from {suffix} file '{path.name}': {exc}"
            ) from exc


def extract_pdf_text(path: Path | str) -> str:
    """Extract all page text from the PDF at *path*; image-only pages are skipped."""
    reader = pypdf.PdfReader(str(path))
    parts: list[str] = []
    for page in reader.pages:
        stripped = (page.extract_text() or "").strip()
        if stripped:
            parts.append(stripped)
    logger.debug("Extracted %d/%d non-empty pages from %s", len(parts), len(reader.pages), path)
    return "\n\n".join(parts)


def extract_docx_text(path: Path | str) -> str:
    """Extract paragraph text from the Word document at *path*."""
    document = docx.Document(str(path))
    return "\n".join(p.text for p in document.paragraphs if p.text.strip())
