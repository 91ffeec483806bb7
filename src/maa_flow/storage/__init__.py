"""Durable storage backends."""

from __future__ import annotations

from maa_flow.config.settings import Settings
from maa_flow.storage.base import DocumentStore
from maa_flow.storage.memory import InMemoryDocumentStore
from maa_flow.storage.postgres import PostgresDocumentStore
from maa_flow.storage.recovery import RecoveryStore
from maa_flow.storage.sqlite import SqliteDocumentStore


def build_document_store(settings: Settings) -> DocumentStore:
    backend = settings.storage_backend.strip().lower()
    if backend == "sqlite":
        return SqliteDocumentStore(settings.sqlite_path)
    if backend == "postgres":
        return PostgresDocumentStore(settings.database_url)
    if backend == "memory":
        return InMemoryDocumentStore()
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "PostgresDocumentStore",
    "RecoveryStore",
    "SqliteDocumentStore",
    "build_document_store",
]
