"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the default local backend because:
1. A single file, no server to run
2. Real transactions, so a balance adjustment is atomic
3. Ships with Python

TRADEOFFS:
- One writer at a time (fine for a personal ledger)
- A locked database raises OperationalError; we retry those with backoff

Money is stored as TEXT holding the Decimal's string form, so values
round-trip exactly. Every call opens its own connection and closes it
before returning.
"""

import json
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Sequence
from uuid import UUID

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from savings_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from savings_ledger.models.ledger import (
    Account,
    AccountType,
    GoalCategory,
    SavingsContribution,
    SavingsGoal,
    Transaction,
    TransactionType,
)
from savings_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        balance TEXT NOT NULL,
        color TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS goals (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        target_amount TEXT NOT NULL,
        current_amount TEXT NOT NULL,
        target_date TEXT NOT NULL,
        monthly_contribution TEXT NOT NULL,
        category TEXT NOT NULL,
        color TEXT NOT NULL,
        icon TEXT NOT NULL,
        is_completed INTEGER NOT NULL DEFAULT 0,
        savings_account_id TEXT NOT NULL,
        contribution_account_id TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS contributions (
        id TEXT PRIMARY KEY,
        goal_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        amount TEXT NOT NULL,
        date TEXT NOT NULL,
        created_at TEXT NOT NULL,
        from_account_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        account_id TEXT NOT NULL,
        counterparty_account_id TEXT,
        amount TEXT NOT NULL,
        type TEXT NOT NULL,
        category TEXT NOT NULL,
        description TEXT NOT NULL,
        date TEXT NOT NULL,
        created_at TEXT NOT NULL,
        parent_transaction_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_events (
        event_id TEXT PRIMARY KEY,
        timestamp TEXT NOT NULL,
        event_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        entity_type TEXT,
        entity_id TEXT,
        correlation_id TEXT,
        user_id TEXT,
        description TEXT NOT NULL,
        details_json TEXT,
        error_code TEXT,
        error_message TEXT,
        is_user_action INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_goals_user ON goals(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_contributions_goal ON contributions(goal_id)",
    "CREATE INDEX IF NOT EXISTS idx_contributions_user ON contributions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, date)",
    "CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_events(correlation_id)",
]


def _uuid_or_none(value: Optional[str]) -> Optional[UUID]:
    return UUID(value) if value else None


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


class SQLiteDatabase:
    """
    Low-level SQLite wrapper.

    Creates the schema on first use and provides retry logic for
    locked-database errors.
    """

    def __init__(self, db_path: Path, retry_attempts: int = 3):
        self._db_path = Path(db_path)
        self._retry_attempts = retry_attempts
        self._initialized = False

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            retry=retry_if_exception_type(sqlite3.OperationalError),
            reraise=True,
        )

    def init_schema(self) -> None:
        """Create tables and indexes if they don't exist yet."""
        if self._initialized:
            return
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConnectionError(f"Cannot create database directory: {e}")

        def create(conn: sqlite3.Connection) -> None:
            cursor = conn.cursor()
            for statement in SCHEMA:
                cursor.execute(statement)

        self.run(create)
        self._initialized = True

    def run(self, work):
        """
        Run work(conn) inside one transaction and return its result.

        Commits on success, rolls back on any error. sqlite3 errors are
        converted to StorageError once retries are exhausted.
        """
        try:
            for attempt in self._retrying():
                with attempt:
                    conn = self._connect()
                    try:
                        result = work(conn)
                        conn.commit()
                        return result
                    except Exception:
                        conn.rollback()
                        raise
                    finally:
                        conn.close()
        except sqlite3.IntegrityError as e:
            raise DuplicateError(str(e))
        except sqlite3.Error as e:
            raise StorageError(f"SQLite operation failed: {e}")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a write statement. Returns the number of affected rows."""
        self.init_schema()
        return self.run(lambda conn: conn.execute(sql, params).rowcount)

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        self.init_schema()
        return self.run(lambda conn: conn.execute(sql, params).fetchall())

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        self.init_schema()
        return self.run(lambda conn: conn.execute(sql, params).fetchone())


class SQLiteRecordStore(RecordStoreInterface):
    """
    SQLite implementation of the record store.

    One table per record type; rows are converted to and from the
    pydantic models here and nowhere else.
    """

    def __init__(
        self,
        db_path: Path,
        retry_attempts: int = 3,
        database: Optional[SQLiteDatabase] = None,
    ):
        self._db = database or SQLiteDatabase(db_path, retry_attempts)

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            id=UUID(row["id"]),
            user_id=row["user_id"],
            name=row["name"],
            type=AccountType(row["type"]),
            balance=Decimal(row["balance"]),
            color=row["color"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _goal_to_row(goal: SavingsGoal) -> tuple:
        return (
            str(goal.id),
            goal.user_id,
            goal.name,
            str(goal.target_amount),
            str(goal.current_amount),
            goal.target_date.isoformat(),
            str(goal.monthly_contribution),
            goal.category.value,
            goal.color,
            goal.icon,
            int(goal.is_completed),
            str(goal.savings_account_id),
            _str_or_none(goal.contribution_account_id),
            goal.created_at.isoformat(),
        )

    @staticmethod
    def _row_to_goal(row: sqlite3.Row) -> SavingsGoal:
        return SavingsGoal(
            id=UUID(row["id"]),
            user_id=row["user_id"],
            name=row["name"],
            target_amount=Decimal(row["target_amount"]),
            current_amount=Decimal(row["current_amount"]),
            target_date=date.fromisoformat(row["target_date"]),
            monthly_contribution=Decimal(row["monthly_contribution"]),
            category=GoalCategory(row["category"]),
            color=row["color"],
            icon=row["icon"],
            is_completed=bool(row["is_completed"]),
            savings_account_id=UUID(row["savings_account_id"]),
            contribution_account_id=_uuid_or_none(row["contribution_account_id"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_contribution(row: sqlite3.Row) -> SavingsContribution:
        return SavingsContribution(
            id=UUID(row["id"]),
            goal_id=UUID(row["goal_id"]),
            user_id=row["user_id"],
            amount=Decimal(row["amount"]),
            date=date.fromisoformat(row["date"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            from_account_id=_uuid_or_none(row["from_account_id"]),
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=UUID(row["id"]),
            user_id=row["user_id"],
            account_id=UUID(row["account_id"]),
            counterparty_account_id=_uuid_or_none(row["counterparty_account_id"]),
            amount=Decimal(row["amount"]),
            type=TransactionType(row["type"]),
            category=row["category"],
            description=row["description"],
            date=date.fromisoformat(row["date"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            parent_transaction_id=_uuid_or_none(row["parent_transaction_id"]),
        )

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        row = self._db.fetch_one(
            "SELECT * FROM accounts WHERE id = ?", (str(account_id),)
        )
        return self._row_to_account(row) if row else None

    async def list_accounts(
        self,
        user_id: str,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        query = "SELECT * FROM accounts WHERE user_id = ?"
        params: list[Any] = [user_id]
        if account_type is not None:
            query += " AND type = ?"
            params.append(account_type.value)
        query += " ORDER BY rowid"
        return [self._row_to_account(r) for r in self._db.fetch_all(query, params)]

    async def save_account(self, account: Account) -> Account:
        self._db.execute(
            "INSERT INTO accounts (id, user_id, name, type, balance, color, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                str(account.id),
                account.user_id,
                account.name,
                account.type.value,
                str(account.balance),
                account.color,
                account.created_at.isoformat(),
            ),
        )
        return account

    async def adjust_account_balance(
        self,
        account_id: UUID,
        delta: Decimal,
    ) -> Account:
        self._db.init_schema()

        def adjust(conn: sqlite3.Connection) -> sqlite3.Row:
            # Take the write lock before reading so the read-modify-write is atomic
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM accounts WHERE id = ?", (str(account_id),)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Account not found: {account_id}")
            new_balance = Decimal(row["balance"]) + delta
            conn.execute(
                "UPDATE accounts SET balance = ? WHERE id = ?",
                (str(new_balance), str(account_id)),
            )
            return conn.execute(
                "SELECT * FROM accounts WHERE id = ?", (str(account_id),)
            ).fetchone()

        return self._row_to_account(self._db.run(adjust))

    # =========================================================================
    # GOALS
    # =========================================================================

    async def get_goal(self, goal_id: UUID) -> Optional[SavingsGoal]:
        row = self._db.fetch_one("SELECT * FROM goals WHERE id = ?", (str(goal_id),))
        return self._row_to_goal(row) if row else None

    async def list_goals(self, user_id: str) -> list[SavingsGoal]:
        rows = self._db.fetch_all(
            "SELECT * FROM goals WHERE user_id = ? ORDER BY rowid", (user_id,)
        )
        return [self._row_to_goal(r) for r in rows]

    async def save_goal(self, goal: SavingsGoal) -> SavingsGoal:
        self._db.execute(
            "INSERT INTO goals (id, user_id, name, target_amount, current_amount, "
            "target_date, monthly_contribution, category, color, icon, is_completed, "
            "savings_account_id, contribution_account_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            self._goal_to_row(goal),
        )
        return goal

    async def update_goal(self, goal: SavingsGoal) -> SavingsGoal:
        row = self._goal_to_row(goal)
        updated = self._db.execute(
            "UPDATE goals SET user_id = ?, name = ?, target_amount = ?, "
            "current_amount = ?, target_date = ?, monthly_contribution = ?, "
            "category = ?, color = ?, icon = ?, is_completed = ?, "
            "savings_account_id = ?, contribution_account_id = ?, created_at = ? "
            "WHERE id = ?",
            row[1:] + (row[0],),
        )
        if updated == 0:
            raise NotFoundError(f"Goal not found: {goal.id}")
        return goal

    async def delete_goal(self, goal_id: UUID) -> bool:
        return self._db.execute("DELETE FROM goals WHERE id = ?", (str(goal_id),)) > 0

    # =========================================================================
    # CONTRIBUTIONS
    # =========================================================================

    async def add_contribution(
        self,
        contribution: SavingsContribution,
    ) -> SavingsContribution:
        self._db.execute(
            "INSERT INTO contributions (id, goal_id, user_id, amount, date, "
            "created_at, from_account_id) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                str(contribution.id),
                str(contribution.goal_id),
                contribution.user_id,
                str(contribution.amount),
                contribution.date.isoformat(),
                contribution.created_at.isoformat(),
                _str_or_none(contribution.from_account_id),
            ),
        )
        return contribution

    async def get_contribution(
        self,
        contribution_id: UUID,
    ) -> Optional[SavingsContribution]:
        row = self._db.fetch_one(
            "SELECT * FROM contributions WHERE id = ?", (str(contribution_id),)
        )
        return self._row_to_contribution(row) if row else None

    async def list_contributions(self, goal_id: UUID) -> list[SavingsContribution]:
        rows = self._db.fetch_all(
            "SELECT * FROM contributions WHERE goal_id = ? ORDER BY rowid",
            (str(goal_id),),
        )
        return [self._row_to_contribution(r) for r in rows]

    async def list_user_contributions(
        self,
        user_id: str,
    ) -> list[SavingsContribution]:
        rows = self._db.fetch_all(
            "SELECT * FROM contributions WHERE user_id = ? ORDER BY rowid",
            (user_id,),
        )
        return [self._row_to_contribution(r) for r in rows]

    async def delete_contribution(self, contribution_id: UUID) -> bool:
        return self._db.execute(
            "DELETE FROM contributions WHERE id = ?", (str(contribution_id),)
        ) > 0

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        self._db.execute(
            "INSERT INTO transactions (id, user_id, account_id, counterparty_account_id, "
            "amount, type, category, description, date, created_at, "
            "parent_transaction_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(transaction.id),
                transaction.user_id,
                str(transaction.account_id),
                _str_or_none(transaction.counterparty_account_id),
                str(transaction.amount),
                transaction.type.value,
                transaction.category,
                transaction.description,
                transaction.date.isoformat(),
                transaction.created_at.isoformat(),
                _str_or_none(transaction.parent_transaction_id),
            ),
        )
        return transaction

    async def list_transactions(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        query = "SELECT * FROM transactions WHERE user_id = ?"
        params: list[Any] = [user_id]
        if date_from:
            query += " AND date >= ?"
            params.append(date_from.isoformat())
        if date_to:
            query += " AND date <= ?"
            params.append(date_to.isoformat())
        query += " ORDER BY rowid"
        return [self._row_to_transaction(r) for r in self._db.fetch_all(query, params)]

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        return self._db.execute(
            "DELETE FROM transactions WHERE id = ?", (str(transaction_id),)
        ) > 0


class SQLiteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(
        self,
        db_path: Path,
        retry_attempts: int = 3,
        database: Optional[SQLiteDatabase] = None,
    ):
        self._db = database or SQLiteDatabase(db_path, retry_attempts)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            entity_type=row["entity_type"],
            entity_id=_uuid_or_none(row["entity_id"]),
            correlation_id=_uuid_or_none(row["correlation_id"]),
            user_id=row["user_id"],
            description=row["description"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
            error_code=row["error_code"],
            error_message=row["error_message"],
            is_user_action=bool(row["is_user_action"]),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        self._db.execute(
            "INSERT INTO audit_events (event_id, timestamp, event_type, severity, "
            "entity_type, entity_id, correlation_id, user_id, description, "
            "details_json, error_code, error_message, is_user_action) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            event.to_row(),
        )
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        rows = self._db.fetch_all(
            "SELECT * FROM audit_events WHERE correlation_id = ? "
            "ORDER BY timestamp, rowid",
            (str(correlation_id),),
        )
        return [self._row_to_event(r) for r in rows]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        rows = self._db.fetch_all(
            "SELECT * FROM audit_events WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY timestamp, rowid",
            (entity_type, str(entity_id)),
        )
        return [self._row_to_event(r) for r in rows]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        rows = self._db.fetch_all(
            "SELECT * FROM audit_events ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_event(r) for r in rows]
