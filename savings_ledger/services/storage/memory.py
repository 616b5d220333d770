"""
In-Memory Storage Implementation

Used by the test-suite and for embedding the ledger without a database.

Records are copied on the way in and on the way out, so callers can
never mutate stored state except through the interface. Insertion order
is preserved by the underlying dicts, which gives the "oldest first"
ordering the interface promises.
"""

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
from savings_ledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    RecordStoreInterface,
)


class InMemoryRecordStore(RecordStoreInterface):
    """Dict-backed record store."""

    def __init__(self):
        self._accounts: dict[UUID, Account] = {}
        self._goals: dict[UUID, SavingsGoal] = {}
        self._contributions: dict[UUID, SavingsContribution] = {}
        self._transactions: dict[UUID, Transaction] = {}

    # Accounts

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def list_accounts(
        self,
        user_id: str,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        return [
            a.model_copy(deep=True)
            for a in self._accounts.values()
            if a.user_id == user_id
            and (account_type is None or a.type == account_type)
        ]

    async def save_account(self, account: Account) -> Account:
        if account.id in self._accounts:
            raise DuplicateError(f"Account already exists: {account.id}")
        self._accounts[account.id] = account.model_copy(deep=True)
        return account

    async def adjust_account_balance(
        self,
        account_id: UUID,
        delta: Decimal,
    ) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        account.balance += delta
        return account.model_copy(deep=True)

    # Goals

    async def get_goal(self, goal_id: UUID) -> Optional[SavingsGoal]:
        goal = self._goals.get(goal_id)
        return goal.model_copy(deep=True) if goal else None

    async def list_goals(self, user_id: str) -> list[SavingsGoal]:
        return [
            g.model_copy(deep=True)
            for g in self._goals.values()
            if g.user_id == user_id
        ]

    async def save_goal(self, goal: SavingsGoal) -> SavingsGoal:
        if goal.id in self._goals:
            raise DuplicateError(f"Goal already exists: {goal.id}")
        self._goals[goal.id] = goal.model_copy(deep=True)
        return goal

    async def update_goal(self, goal: SavingsGoal) -> SavingsGoal:
        if goal.id not in self._goals:
            raise NotFoundError(f"Goal not found: {goal.id}")
        self._goals[goal.id] = goal.model_copy(deep=True)
        return goal

    async def delete_goal(self, goal_id: UUID) -> bool:
        return self._goals.pop(goal_id, None) is not None

    # Contributions

    async def add_contribution(
        self,
        contribution: SavingsContribution,
    ) -> SavingsContribution:
        if contribution.id in self._contributions:
            raise DuplicateError(f"Contribution already exists: {contribution.id}")
        self._contributions[contribution.id] = contribution.model_copy(deep=True)
        return contribution

    async def get_contribution(
        self,
        contribution_id: UUID,
    ) -> Optional[SavingsContribution]:
        contribution = self._contributions.get(contribution_id)
        return contribution.model_copy(deep=True) if contribution else None

    async def list_contributions(self, goal_id: UUID) -> list[SavingsContribution]:
        return [
            c.model_copy(deep=True)
            for c in self._contributions.values()
            if c.goal_id == goal_id
        ]

    async def list_user_contributions(
        self,
        user_id: str,
    ) -> list[SavingsContribution]:
        return [
            c.model_copy(deep=True)
            for c in self._contributions.values()
            if c.user_id == user_id
        ]

    async def delete_contribution(self, contribution_id: UUID) -> bool:
        return self._contributions.pop(contribution_id, None) is not None

    # Transactions

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        if transaction.id in self._transactions:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction

    async def list_transactions(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        transactions = []
        for t in self._transactions.values():
            if t.user_id != user_id:
                continue
            if date_from and t.date < date_from:
                continue
            if date_to and t.date > date_to:
                continue
            transactions.append(t.model_copy(deep=True))
        return transactions

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        return self._transactions.pop(transaction_id, None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """
    List-backed audit log.

    Audit events are append-only.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        # Newest first; reversed() keeps insertion order stable on equal timestamps
        events = sorted(reversed(self._events), key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
