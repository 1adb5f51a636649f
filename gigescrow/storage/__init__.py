"""Record storage for gigescrow.

Backends:
- InMemoryRecordStore: thread-safe dict store for tests and local runs
- SQLiteRecordStore: durable local store with version compare-and-swap

Helpers:
- legacy: import/export of the original single JSON document
"""

from gigescrow.storage.base import (
    ARBITERS,
    DISPUTES,
    ENTITY_GROUPS,
    ESCROW_TRANSITIONS,
    ESCROWS,
    GIGS,
    MESSAGES,
    NOTIFICATIONS,
    USERS,
    RecordStore,
    VersionConflictError,
)
from gigescrow.storage.memory import InMemoryRecordStore
from gigescrow.storage.sqlite import SQLiteRecordStore

__all__ = [
    "RecordStore",
    "VersionConflictError",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
    "ENTITY_GROUPS",
    "ESCROWS",
    "ESCROW_TRANSITIONS",
    "DISPUTES",
    "NOTIFICATIONS",
    "GIGS",
    "USERS",
    "ARBITERS",
    "MESSAGES",
]
