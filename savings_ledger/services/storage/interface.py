"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the ledger on SQLite locally and on anything else later
2. Use in-memory storage for testing
3. Inject failures in tests by subclassing a store
4. Keep ledger logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the record operations the ledger needs.

CRITICAL: Account balances change only through adjust_account_balance.
It applies a delta inside the store so that two writers never
overwrite each other with stale totals.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from savings_ledger.models.audit import AuditEvent
from savings_ledger.models.ledger import (
    Account,
    AccountType,
    SavingsContribution,
    SavingsGoal,
    Transaction,
)


class RecordStoreInterface(ABC):
    """
    Abstract interface for ledger record storage.

    Any storage implementation (SQLite, in-memory, etc.)
    must implement these methods. Lookups return None for
    unknown ids; writes raise StorageError on failure.
    """

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        """
        Retrieve an account by its ID.

        Returns:
            The account if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_accounts(
        self,
        user_id: str,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        """
        List a user's accounts in creation order.

        Args:
            user_id: Owner of the accounts
            account_type: Only accounts of this type, if given
        """
        pass

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        """
        Insert a new account.

        Raises:
            DuplicateError: If the id is already taken
        """
        pass

    @abstractmethod
    async def adjust_account_balance(
        self,
        account_id: UUID,
        delta: Decimal,
    ) -> Account:
        """
        Add delta (signed) to an account balance.

        Returns:
            The account with its new balance

        Raises:
            NotFoundError: If the account doesn't exist
            StorageError: If the write fails
        """
        pass

    # =========================================================================
    # GOALS
    # =========================================================================

    @abstractmethod
    async def get_goal(self, goal_id: UUID) -> Optional[SavingsGoal]:
        pass

    @abstractmethod
    async def list_goals(self, user_id: str) -> list[SavingsGoal]:
        pass

    @abstractmethod
    async def save_goal(self, goal: SavingsGoal) -> SavingsGoal:
        """
        Insert a new goal.

        Raises:
            DuplicateError: If the id is already taken
        """
        pass

    @abstractmethod
    async def update_goal(self, goal: SavingsGoal) -> SavingsGoal:
        """
        Replace a stored goal with the given version.

        Raises:
            NotFoundError: If goal doesn't exist
        """
        pass

    @abstractmethod
    async def delete_goal(self, goal_id: UUID) -> bool:
        """
        Delete a goal by ID.

        Returns:
            True if a goal was deleted
        """
        pass

    # =========================================================================
    # CONTRIBUTIONS
    # =========================================================================

    @abstractmethod
    async def add_contribution(
        self,
        contribution: SavingsContribution,
    ) -> SavingsContribution:
        pass

    @abstractmethod
    async def get_contribution(
        self,
        contribution_id: UUID,
    ) -> Optional[SavingsContribution]:
        pass

    @abstractmethod
    async def list_contributions(self, goal_id: UUID) -> list[SavingsContribution]:
        """Contributions of one goal, oldest first."""
        pass

    @abstractmethod
    async def list_user_contributions(
        self,
        user_id: str,
    ) -> list[SavingsContribution]:
        """All contributions of a user across goals, oldest first."""
        pass

    @abstractmethod
    async def delete_contribution(self, contribution_id: UUID) -> bool:
        pass

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """
        List a user's transactions, oldest first.

        Args:
            user_id: Owner of the transactions
            date_from: Only transactions on or after this date
            date_to: Only transactions on or before this date
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one ledger operation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'goal', 'contribution')
            entity_id: The entity's ID
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
