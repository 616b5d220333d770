"""
Storage Services Package

Provides abstract interfaces and concrete implementations for record
and audit storage. SQLite is the default backend; the in-memory
backend serves tests and embedding.
"""

from savings_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
)
from savings_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryRecordStore,
)
from savings_ledger.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteDatabase,
    SQLiteRecordStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RecordStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryRecordStore",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteDatabase",
    "SQLiteRecordStore",
]
