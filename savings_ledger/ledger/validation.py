"""
Precondition checks shared by the contribution engine and the
lifecycle manager.

IMPORTANT: Validation NEVER silently fixes input. Every check either
returns the validated value or raises the matching LedgerError, and
all of them run before the first write of an operation.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from uuid import UUID

from savings_ledger.ledger.errors import (
    AccountNotFoundError,
    ContributionNotFoundError,
    GoalNotFoundError,
    InvalidAmountError,
    InvalidGoalError,
)
from savings_ledger.models.ledger import (
    Account,
    AccountType,
    SavingsContribution,
    SavingsGoal,
)
from savings_ledger.services.storage import RecordStoreInterface


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Parse a strictly positive, finite money amount.

    Floats go through str() so 0.1 stays 0.1. Booleans are refused
    even though they are ints.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError(f"{field} must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(f"{field} is not a valid number: {value!r}")

    if not amount.is_finite():
        raise InvalidAmountError(f"{field} must be finite")
    if amount <= 0:
        raise InvalidAmountError(f"{field} must be greater than zero")
    return amount


async def require_goal(
    store: RecordStoreInterface,
    goal_id: UUID,
    user_id: str,
) -> SavingsGoal:
    """The goal, if it exists and belongs to user_id."""
    goal = await store.get_goal(goal_id)
    if goal is None or goal.user_id != user_id:
        raise GoalNotFoundError(f"Goal not found: {goal_id}")
    return goal


async def require_account(
    store: RecordStoreInterface,
    account_id: Optional[UUID],
    user_id: str,
    role: str = "Account",
) -> Account:
    """The account, if it exists and belongs to user_id."""
    account = await store.get_account(account_id) if account_id else None
    if account is None or account.user_id != user_id:
        raise AccountNotFoundError(f"{role} not found: {account_id}")
    return account


async def require_savings_account(
    store: RecordStoreInterface,
    account_id: Optional[UUID],
    user_id: str,
) -> Account:
    account = await require_account(store, account_id, user_id, role="Savings account")
    if account.type != AccountType.SAVINGS:
        raise InvalidGoalError(
            f"Account {account.name!r} is not a savings account"
        )
    return account


async def require_contribution(
    store: RecordStoreInterface,
    contribution_id: UUID,
    user_id: str,
) -> SavingsContribution:
    contribution = await store.get_contribution(contribution_id)
    if contribution is None or contribution.user_id != user_id:
        raise ContributionNotFoundError(f"Contribution not found: {contribution_id}")
    return contribution


async def allocated_to_goals(
    store: RecordStoreInterface,
    savings_account_id: UUID,
    user_id: str,
    exclude_goal_id: Optional[UUID] = None,
) -> Decimal:
    """Sum of the goal amounts held in a savings account."""
    goals = await store.list_goals(user_id)
    return sum(
        (
            g.current_amount for g in goals
            if g.savings_account_id == savings_account_id and g.id != exclude_goal_id
        ),
        Decimal("0"),
    )
