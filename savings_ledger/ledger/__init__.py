"""
Ledger package.

The contribution engine and the goal lifecycle manager, plus the
pieces they share: validation, correlation, single-flight guard,
compensation and resync.
"""

from savings_ledger.ledger.compensation import CompensatingSequence
from savings_ledger.ledger.contributions import ContributionEngine
from savings_ledger.ledger.correlation import is_related, related_transactions
from savings_ledger.ledger.errors import (
    AccountNotFoundError,
    CompensationFailedError,
    ConcurrentOperationInProgressError,
    ContributionNotFoundError,
    GoalAlreadyCompletedError,
    GoalNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidGoalError,
    InvalidSourceAccountError,
    LedgerError,
    PartialRefundFailureError,
    SavingsAccountLockedError,
    TargetExceededError,
)
from savings_ledger.ledger.guard import SingleFlight
from savings_ledger.ledger.lifecycle import GoalLifecycleManager
from savings_ledger.ledger.resync import ResyncPlan, plan_resync

__all__ = [
    # Components
    "CompensatingSequence",
    "ContributionEngine",
    "GoalLifecycleManager",
    "SingleFlight",
    # Pure helpers
    "ResyncPlan",
    "is_related",
    "plan_resync",
    "related_transactions",
    # Exceptions
    "AccountNotFoundError",
    "CompensationFailedError",
    "ConcurrentOperationInProgressError",
    "ContributionNotFoundError",
    "GoalAlreadyCompletedError",
    "GoalNotFoundError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidGoalError",
    "InvalidSourceAccountError",
    "LedgerError",
    "PartialRefundFailureError",
    "SavingsAccountLockedError",
    "TargetExceededError",
]
