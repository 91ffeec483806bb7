"""Storage interface for durable flow documents (last write wins per key)."""

from __future__ import annotations

from typing import Any, Protocol


class DocumentStore(Protocol):
    def migrate(self) -> None: ...

    def get(self, key: str) -> dict[str, Any] | None: ...

    def put(self, key: str, payload: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...
