"""Services package."""

from savings_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryRecordStore,
    NotFoundError,
    RecordStoreInterface,
    SQLiteAuditStorage,
    SQLiteRecordStore,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryRecordStore",
    "NotFoundError",
    "RecordStoreInterface",
    "SQLiteAuditStorage",
    "SQLiteRecordStore",
    "StorageError",
]
