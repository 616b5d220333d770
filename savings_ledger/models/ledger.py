"""
Core Data Models for the Savings Ledger

These models define the strict schemas for every record the ledger
reads or writes, and for every request and result crossing its boundary.
They are designed to:
1. Enforce type safety at runtime
2. Keep money in Decimal end to end (no float drift)
3. Be serializable for storage and logging
4. Give callers a structured result instead of an exception

DESIGN DECISION: Results never raise. Each public ledger operation
returns a result model whose error_kind tells the caller exactly which
precondition failed, so the UI can pick its own wording.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Account types known to the ledger. Only SAVINGS can back a goal."""
    CHECKING = "checking"
    SAVINGS = "savings"
    CASH = "cash"
    CREDIT = "credit"
    INVESTMENT = "investment"


class GoalCategory(str, Enum):
    """Supported savings goal categories."""
    VACATION = "vacation"
    EMERGENCY = "emergency"
    HOUSE = "house"
    CAR = "car"
    EDUCATION = "education"
    RETIREMENT = "retirement"
    OTHER = "other"


class TransactionType(str, Enum):
    """Kind of money movement recorded in the transaction history."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class LedgerErrorKind(str, Enum):
    """
    Every way a ledger operation can fail.

    Validation kinds are detected before any mutation.
    STORAGE_FAILURE means a write failed and everything was rolled back.
    ROLLBACK_FAILED and PARTIAL_REFUND_FAILURE mean the rollback itself
    failed; run emergency_resync to heal.
    """
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ACCOUNT_NOT_FOUND = "account_not_found"
    GOAL_NOT_FOUND = "goal_not_found"
    GOAL_ALREADY_COMPLETED = "goal_already_completed"
    CONCURRENT_OPERATION_IN_PROGRESS = "concurrent_operation_in_progress"
    PARTIAL_REFUND_FAILURE = "partial_refund_failure"
    CONSISTENCY_DRIFT = "consistency_drift"
    INVALID_SOURCE_ACCOUNT = "invalid_source_account"
    INVALID_GOAL = "invalid_goal"
    TARGET_EXCEEDED = "target_exceeded"
    SAVINGS_ACCOUNT_LOCKED = "savings_account_locked"
    CONTRIBUTION_NOT_FOUND = "contribution_not_found"
    STORAGE_FAILURE = "storage_failure"
    ROLLBACK_FAILED = "rollback_failed"


# =============================================================================
# RECORDS
# =============================================================================

class Account(BaseModel):
    """
    An account owned by the accounts subsystem.

    CRITICAL: balance is only changed through the store's
    adjust_account_balance, called by the ledger components.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Signed balance"
    )
    color: str = Field(default="#4CAF50", max_length=20)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SavingsGoal(BaseModel):
    """
    A named savings target backed by exactly one savings account.

    Invariant: current_amount equals the sum of the goal's contributions.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    target_date: date
    monthly_contribution: Decimal = Field(..., gt=0)
    category: GoalCategory = GoalCategory.OTHER
    color: str = Field(default="#2196F3", max_length=20)
    icon: str = Field(default="piggy-bank", max_length=50)
    is_completed: bool = False
    savings_account_id: UUID
    contribution_account_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def remaining_amount(self) -> Decimal:
        """Amount still missing to reach the target (never negative)."""
        return max(Decimal("0"), self.target_amount - self.current_amount)

    @property
    def is_target_reached(self) -> bool:
        return self.current_amount >= self.target_amount

    @property
    def progress_percentage(self) -> Decimal:
        return self.current_amount / self.target_amount * 100


class SavingsContribution(BaseModel):
    """
    One discrete transfer of funds into a goal.

    from_account_id is None for the opening contribution that records
    a starting balance already present in the savings account.
    """

    id: UUID = Field(default_factory=uuid4)
    goal_id: UUID
    user_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    date: date
    created_at: datetime = Field(default_factory=datetime.utcnow)
    from_account_id: Optional[UUID] = None


class Transaction(BaseModel):
    """
    A row of the general transaction history.

    The ledger links its rows to contributions through
    parent_transaction_id and a description naming the goal.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    account_id: UUID
    counterparty_account_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    type: TransactionType
    category: str = Field(default="savings", max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    date: date
    created_at: datetime = Field(default_factory=datetime.utcnow)
    parent_transaction_id: Optional[UUID] = None


# =============================================================================
# REQUESTS
# =============================================================================

class CreateGoalData(BaseModel):
    """
    Input for creating a goal.

    monthly_contribution may be omitted; it is then computed from the
    remaining amount and the months left until target_date.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Decimal = Field(..., gt=0)
    target_date: date
    monthly_contribution: Optional[Decimal] = Field(default=None, gt=0)
    category: GoalCategory = GoalCategory.OTHER
    color: str = Field(default="#2196F3", max_length=20)
    icon: str = Field(default="piggy-bank", max_length=50)
    savings_account_id: UUID
    contribution_account_id: Optional[UUID] = None
    initial_amount: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Starting balance already present in the savings account"
    )

    @model_validator(mode="after")
    def validate_accounts(self) -> "CreateGoalData":
        if self.contribution_account_id == self.savings_account_id:
            raise ValueError("Contribution account cannot be the savings account")
        return self


class UpdateGoalData(BaseModel):
    """
    Partial update of a goal. Only fields explicitly set are applied.

    current_amount and is_completed are deliberately absent: they change
    only through contributions, refunds, mark_completed and resync.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    target_amount: Optional[Decimal] = Field(default=None, gt=0)
    target_date: Optional[date] = None
    monthly_contribution: Optional[Decimal] = Field(default=None, gt=0)
    category: Optional[GoalCategory] = None
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=50)
    savings_account_id: Optional[UUID] = None
    contribution_account_id: Optional[UUID] = None

    def changes(self) -> dict:
        """Fields the caller actually provided."""
        return self.model_dump(exclude_unset=True)


# =============================================================================
# RESULTS
# =============================================================================

class LedgerResult(BaseModel):
    """Common shape of every ledger operation result."""

    success: bool
    message: str = ""
    error_kind: Optional[LedgerErrorKind] = None
    correlation_id: Optional[UUID] = None


class ContributionResult(LedgerResult):
    """
    Result of a contribution.

    will_complete is informational only: the goal is never
    auto-completed by the engine.
    """

    contribution_id: Optional[UUID] = None
    amount: Decimal = Decimal("0")
    goal_current_amount: Optional[Decimal] = None
    will_complete: bool = False
    unreverted_steps: list[str] = Field(default_factory=list)


class RefundContributionResult(LedgerResult):
    """Result of reversing a single contribution."""

    contribution_id: Optional[UUID] = None
    refunded_amount: Decimal = Decimal("0")
    returned_to_account_id: Optional[UUID] = None
    goal_current_amount: Optional[Decimal] = None
    unreverted_steps: list[str] = Field(default_factory=list)


class CreateGoalResult(LedgerResult):
    goal_id: Optional[UUID] = None
    monthly_contribution: Optional[Decimal] = None


class UpdateGoalResult(LedgerResult):
    goal: Optional[SavingsGoal] = None


class CompletionResult(LedgerResult):
    already_completed: bool = False


class DeleteGoalResult(LedgerResult):
    """
    What a goal deletion did, so the caller can report it.

    retained_in_savings is the part of the saved amount that could not
    go back to a source account and stays in the savings account.
    """

    goal_deleted: bool = False
    refunded_amount: Decimal = Decimal("0")
    refunded_contributions: int = 0
    retained_in_savings: Decimal = Decimal("0")
    contributions_deleted: int = 0
    transactions_deleted: int = 0
    transactions_failed: int = 0
    contributions_failed: int = 0
    unreverted_steps: list[str] = Field(default_factory=list)


class GoalDrift(BaseModel):
    """Difference between a goal's stored amount and its contributions."""

    goal_id: UUID
    recorded_amount: Decimal
    recomputed_amount: Decimal

    @property
    def delta(self) -> Decimal:
        return self.recomputed_amount - self.recorded_amount


class AccountDrift(BaseModel):
    """Difference between a savings account balance and what its goals require."""

    account_id: UUID
    recorded_balance: Decimal
    expected_balance: Decimal
    non_goal_funds: Decimal

    @property
    def delta(self) -> Decimal:
        return self.expected_balance - self.recorded_balance


class ResyncReport(LedgerResult):
    """Outcome of emergency_resync."""

    dry_run: bool = False
    goals_checked: int = 0
    goal_drifts: list[GoalDrift] = Field(default_factory=list)
    account_drifts: list[AccountDrift] = Field(default_factory=list)
    repaired: bool = False

    @property
    def drift_detected(self) -> bool:
        return bool(self.goal_drifts or self.account_drifts)


class AutoContributionReport(BaseModel):
    processed: int = 0
    errors: list[str] = Field(default_factory=list)


class SavingsStats(BaseModel):
    """Dashboard figures for a user's goals."""

    total_saved: Decimal = Decimal("0")
    total_goals: int = 0
    completed_goals: int = 0
    monthly_contributions: Decimal = Decimal("0")
    progress_percentage: Decimal = Decimal("0")
    upcoming_goals: list[SavingsGoal] = Field(default_factory=list)
