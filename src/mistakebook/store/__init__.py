from __future__ import annotations

from ..config import settings
from .base import (
    RecordNotFoundError,
    RecordStore,
    RecordStoreError,
    StaleRecordError,
)
from .memory import InMemoryRecordStore
from .sqlite import SQLiteRecordStore


def create_store(backend: str | None = None, db_path: str | None = None) -> RecordStore:
    """Build the record store selected by `MISTAKEBOOK_STORE`."""

    selected = (backend or settings.mistakebook_store).strip().lower()
    if selected == "memory":
        return InMemoryRecordStore()
    if selected == "sqlite":
        return SQLiteRecordStore(db_path=db_path or settings.mistakebook_db_path)
    raise ValueError(f"unknown record store backend: {selected!r}")


store = create_store()


def get_store() -> RecordStore:
    """FastAPI dependency returning the shared store (override in tests)."""

    return store


__all__ = [
    "InMemoryRecordStore",
    "RecordNotFoundError",
    "RecordStore",
    "RecordStoreError",
    "SQLiteRecordStore",
    "StaleRecordError",
    "create_store",
    "get_store",
    "store",
]
