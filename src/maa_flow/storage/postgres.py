"""PostgreSQL-backed document store with automatic table migration."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from typing import Any


class PostgresDocumentStore:
    """Persist flow documents as JSONB rows in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("MAA_FLOW_DATABASE_URL is required for the postgres backend")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS flow_documents (
                    key TEXT PRIMARY KEY,
                    payload_json JSONB NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.commit()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM flow_documents WHERE key = %s",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return self._parse_json_optional(row["payload_json"])

    def put(self, key: str, payload: dict[str, Any]) -> None:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO flow_documents (key, payload_json, updated_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (key) DO UPDATE SET
                    payload_json = EXCLUDED.payload_json,
                    updated_at = EXCLUDED.updated_at
                """,
                (key, self._json_wrapper(payload), now),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM flow_documents WHERE key = %s", (key,))
            conn.commit()

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_optional(raw: Any) -> dict[str, Any] | None:
        if raw is None:
            return None
        parsed = json.loads(raw) if isinstance(raw, str) else raw
        return parsed if isinstance(parsed, dict) else None
