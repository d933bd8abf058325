"""Small key/value cache abstraction injected into ingestion and retrieval.

Components receive a ``Cache`` explicitly instead of reaching for process-wide
state, so two requests never share entries by accident and tests can pass a
fake or ``NullCache``.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Protocol


class Cache(Protocol):
    """Minimal cache contract: TTL in seconds, ``None`` means never expire."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...


class NullCache:
    """Cache that stores nothing. Every ``get`` is a miss."""

    def get(self, key: str) -> Any | None:
        return None

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        return None


class InMemoryCache:
    """Thread-safe in-process cache with per-entry TTL.

    Args:
        max_entries: Oldest entries are evicted once this size is exceeded.
        clock: Monotonic time source (seconds); injectable for tests.
    """

    def __init__(
        self,
        max_entries: int = 1_024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (value, expires_at)
            while len(self._entries) > self._max_entries:
                # dicts keep insertion order, so the first key is the oldest
                del self._entries[next(iter(self._entries))]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
