"""
Storage package — append-only record stores.

Modules:
    base          — RecordStore interface + latest-per-key helper
    memory_store  — in-process store (development, tests)
    sql_store     — SQLAlchemy async store
    tables        — ORM tables used by sql_store
"""

from backend.pumpwatch.storage.base import RecordStore
from backend.pumpwatch.storage.memory_store import InMemoryRecordStore


def create_store(url: str, *, echo: bool = False) -> RecordStore:
    """``memory://`` → in-process store, anything else → SQL store."""
    if url.startswith("memory://"):
        return InMemoryRecordStore()
    from backend.pumpwatch.storage.sql_store import SqlRecordStore

    return SqlRecordStore(url, echo=echo)


__all__ = ["RecordStore", "InMemoryRecordStore", "create_store"]
