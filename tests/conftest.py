"""
Shared fixtures for the ledger tests.

Async code is driven with asyncio.run. Storage failures are injected
with FlakyRecordStore, an in-memory store that raises StorageError on
chosen calls.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from savings_ledger.audit import AuditLogger
from savings_ledger.config import LedgerSettings
from savings_ledger.ledger import ContributionEngine, GoalLifecycleManager
from savings_ledger.models.ledger import Account, AccountType, CreateGoalData
from savings_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryRecordStore,
    StorageError,
)


USER = "user-1"
TODAY = date(2025, 1, 15)


def run(coro):
    return asyncio.run(coro)


class FlakyRecordStore(InMemoryRecordStore):
    """
    In-memory store that fails on demand.

    fail("update_goal", after=1, times=2) lets one call through and
    then fails the next two. times=None fails every later call.
    """

    def __init__(self):
        super().__init__()
        self._plans: dict[str, list] = {}
        self.calls: dict[str, int] = {}

    def fail(self, method: str, after: int = 0, times: Optional[int] = 1) -> None:
        self._plans[method] = [after, times]

    def heal(self) -> None:
        self._plans.clear()

    def _check(self, method: str) -> None:
        self.calls[method] = self.calls.get(method, 0) + 1
        plan = self._plans.get(method)
        if plan is None:
            return
        if plan[0] > 0:
            plan[0] -= 1
            return
        if plan[1] is None:
            raise StorageError(f"injected failure in {method}")
        if plan[1] > 0:
            plan[1] -= 1
            raise StorageError(f"injected failure in {method}")

    async def adjust_account_balance(self, account_id, delta):
        self._check("adjust_account_balance")
        return await super().adjust_account_balance(account_id, delta)

    async def update_goal(self, goal):
        self._check("update_goal")
        return await super().update_goal(goal)

    async def save_goal(self, goal):
        self._check("save_goal")
        return await super().save_goal(goal)

    async def delete_goal(self, goal_id):
        self._check("delete_goal")
        return await super().delete_goal(goal_id)

    async def add_contribution(self, contribution):
        self._check("add_contribution")
        return await super().add_contribution(contribution)

    async def delete_contribution(self, contribution_id):
        self._check("delete_contribution")
        return await super().delete_contribution(contribution_id)

    async def add_transaction(self, transaction):
        self._check("add_transaction")
        return await super().add_transaction(transaction)

    async def delete_transaction(self, transaction_id):
        self._check("delete_transaction")
        return await super().delete_transaction(transaction_id)


class SlowRecordStore(InMemoryRecordStore):
    """In-memory store whose reads and balance writes yield to the event loop."""

    async def get_goal(self, goal_id):
        await asyncio.sleep(0)
        return await super().get_goal(goal_id)

    async def adjust_account_balance(self, account_id, delta):
        await asyncio.sleep(0)
        return await super().adjust_account_balance(account_id, delta)


def make_settings(**overrides) -> LedgerSettings:
    values = {
        "compensation_max_attempts": 3,
        "compensation_wait_min_seconds": 0,
        "compensation_wait_max_seconds": 0,
    }
    values.update(overrides)
    return LedgerSettings(**values)


class Ledger:
    """A wired engine and manager over one store, with seeding helpers."""

    def __init__(self, store: InMemoryRecordStore, settings: LedgerSettings):
        self.store = store
        self.audit_storage = InMemoryAuditStorage()
        audit_logger = AuditLogger(self.audit_storage)
        self.engine = ContributionEngine(store, audit_logger=audit_logger, settings=settings)
        self.manager = GoalLifecycleManager(
            store, engine=self.engine, audit_logger=audit_logger, settings=settings
        )

    def account(
        self,
        name: str,
        account_type: AccountType,
        balance: str,
        user_id: str = USER,
    ) -> Account:
        account = Account(
            user_id=user_id,
            name=name,
            type=account_type,
            balance=Decimal(balance),
        )
        run(self.store.save_account(account))
        return account

    def balance(self, account_id) -> Decimal:
        return run(self.store.get_account(account_id)).balance

    def goal(self, goal_id):
        return run(self.store.get_goal(goal_id))

    def create_goal(self, savings: Account, **fields):
        data = {
            "name": "Vacation",
            "target_amount": Decimal("1200"),
            "target_date": date(2025, 12, 31),
            "monthly_contribution": Decimal("100"),
            "savings_account_id": savings.id,
        }
        data.update(fields)
        result = run(self.manager.create(CreateGoalData(**data), user_id=USER, today=TODAY))
        assert result.success, result.message
        return result.goal_id

    def contribute(self, goal_id, amount, source_id=None, user_id: str = USER):
        return run(self.engine.contribute(
            goal_id, amount, source_id, user_id=user_id, contribution_date=TODAY
        ))

    def total_balance(self) -> Decimal:
        accounts = run(self.store.list_accounts(USER))
        return sum((a.balance for a in accounts), Decimal("0"))


@pytest.fixture
def ledger() -> Ledger:
    return Ledger(InMemoryRecordStore(), make_settings())


@pytest.fixture
def flaky_ledger() -> Ledger:
    return Ledger(FlakyRecordStore(), make_settings())


@pytest.fixture
def funded(ledger):
    """Checking account with 1000, empty savings account, one goal."""
    checking = ledger.account("Checking", AccountType.CHECKING, "1000")
    savings = ledger.account("Savings", AccountType.SAVINGS, "0")
    goal_id = ledger.create_goal(savings)
    return ledger, checking, savings, goal_id


@pytest.fixture
def flaky_funded(flaky_ledger):
    checking = flaky_ledger.account("Checking", AccountType.CHECKING, "1000")
    savings = flaky_ledger.account("Savings", AccountType.SAVINGS, "0")
    goal_id = flaky_ledger.create_goal(savings)
    return flaky_ledger, checking, savings, goal_id
