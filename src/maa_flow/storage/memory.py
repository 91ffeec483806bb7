"""In-memory document store for tests only."""

from __future__ import annotations

import copy
import threading
from typing import Any


class InMemoryDocumentStore:
    """Simple in-memory implementation for unit tests."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.writes: list[tuple[str, dict[str, Any] | None]] = []

    def migrate(self) -> None:
        return None

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            payload = self._documents.get(key)
            return copy.deepcopy(payload) if payload is not None else None

    def put(self, key: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self._documents[key] = copy.deepcopy(payload)
            self.writes.append((key, copy.deepcopy(payload)))

    def delete(self, key: str) -> None:
        with self._lock:
            self._documents.pop(key, None)
            self.writes.append((key, None))
