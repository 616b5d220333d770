"""
Ledger Orchestrator

Ties together the storage backend, the audit logger and the two ledger
components. Callers (a UI, a script, a test) get fully wired objects
from create_ledger_components and never construct stores themselves.

DESIGN DECISION: The orchestrator enforces the boundaries:
- The engine and the manager share one store, one audit logger and
  one single-flight guard
- Settings are read once here and passed down
- Every operation is audited through the same logger
"""

import logging
from pathlib import Path
from typing import Literal, Optional

import structlog

from savings_ledger.audit import AuditLogger
from savings_ledger.config import Settings, get_settings
from savings_ledger.ledger import ContributionEngine, GoalLifecycleManager, SingleFlight
from savings_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryRecordStore,
    RecordStoreInterface,
    SQLiteAuditStorage,
    SQLiteDatabase,
    SQLiteRecordStore,
    StorageError,
)


logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog's stdlib logger at the configured level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level))


def create_storage(
    backend: Literal["memory", "sqlite"],
    sqlite_path: Optional[Path] = None,
    retry_attempts: int = 3,
) -> tuple[RecordStoreInterface, AuditStorageInterface]:
    """
    Create the record store and the audit storage for a backend.

    The SQLite backend keeps both in one database file.
    """
    if backend == "memory":
        return InMemoryRecordStore(), InMemoryAuditStorage()

    if sqlite_path is None:
        raise StorageError("sqlite backend requires a database path")
    database = SQLiteDatabase(sqlite_path, retry_attempts)
    database.init_schema()
    return (
        SQLiteRecordStore(sqlite_path, database=database),
        SQLiteAuditStorage(sqlite_path, database=database),
    )


def create_ledger_components(
    store: Optional[RecordStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    settings: Optional[Settings] = None,
) -> tuple[ContributionEngine, GoalLifecycleManager, RecordStoreInterface]:
    """
    Factory function to create all ledger components.

    Args:
        store: Record store to use. If None, one is built from the
               storage settings.
        audit_storage: Audit persistence. If None and the store was
               built here, the matching audit storage is used;
               otherwise audit events are only logged locally.
        settings: Settings to use. Defaults to get_settings().

    Returns:
        (contribution_engine, lifecycle_manager, store)
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)

    if store is None:
        storage_settings = settings.storage
        store, built_audit_storage = create_storage(
            storage_settings.backend,
            storage_settings.sqlite_path,
            storage_settings.retry_attempts,
        )
        audit_storage = audit_storage or built_audit_storage
        logger.info(
            "ledger_storage_ready",
            backend=storage_settings.backend,
            environment=app_settings.app_environment,
        )

    ledger_settings = settings.ledger
    audit_logger = AuditLogger(audit_storage)
    guard = SingleFlight()

    engine = ContributionEngine(
        store,
        audit_logger=audit_logger,
        guard=guard,
        settings=ledger_settings,
    )
    manager = GoalLifecycleManager(
        store,
        engine=engine,
        audit_logger=audit_logger,
        settings=ledger_settings,
    )

    return engine, manager, store
