"""
Ledger Exceptions

One exception per LedgerErrorKind. Validation raises them before any
write; the public operations catch them and turn them into result models.
"""

from savings_ledger.models.ledger import LedgerErrorKind


class LedgerError(Exception):
    """Base exception for ledger rule violations."""

    kind: LedgerErrorKind = LedgerErrorKind.INVALID_GOAL

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidAmountError(LedgerError):
    kind = LedgerErrorKind.INVALID_AMOUNT


class InsufficientBalanceError(LedgerError):
    kind = LedgerErrorKind.INSUFFICIENT_BALANCE


class AccountNotFoundError(LedgerError):
    kind = LedgerErrorKind.ACCOUNT_NOT_FOUND


class GoalNotFoundError(LedgerError):
    kind = LedgerErrorKind.GOAL_NOT_FOUND


class GoalAlreadyCompletedError(LedgerError):
    kind = LedgerErrorKind.GOAL_ALREADY_COMPLETED


class ConcurrentOperationInProgressError(LedgerError):
    kind = LedgerErrorKind.CONCURRENT_OPERATION_IN_PROGRESS


class InvalidSourceAccountError(LedgerError):
    kind = LedgerErrorKind.INVALID_SOURCE_ACCOUNT


class InvalidGoalError(LedgerError):
    kind = LedgerErrorKind.INVALID_GOAL


class TargetExceededError(LedgerError):
    kind = LedgerErrorKind.TARGET_EXCEEDED


class SavingsAccountLockedError(LedgerError):
    kind = LedgerErrorKind.SAVINGS_ACCOUNT_LOCKED


class ContributionNotFoundError(LedgerError):
    kind = LedgerErrorKind.CONTRIBUTION_NOT_FOUND


class CompensationFailedError(LedgerError):
    """
    A write failed and undoing the earlier writes failed too.

    unreverted_steps names every write still in effect.
    """

    kind = LedgerErrorKind.ROLLBACK_FAILED

    def __init__(self, message: str, unreverted_steps: list[str]):
        self.unreverted_steps = unreverted_steps
        super().__init__(message)


class PartialRefundFailureError(CompensationFailedError):
    """Refunds on goal deletion were partly applied and could not be undone."""

    kind = LedgerErrorKind.PARTIAL_REFUND_FAILURE
