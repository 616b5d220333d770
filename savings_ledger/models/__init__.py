"""
Data Models Package

This package contains all Pydantic models used by the savings ledger.
All data flowing through the ledger must conform to these schemas.
"""

from savings_ledger.models.ledger import (
    Account,
    AccountDrift,
    AccountType,
    AutoContributionReport,
    CompletionResult,
    ContributionResult,
    CreateGoalData,
    CreateGoalResult,
    DeleteGoalResult,
    GoalCategory,
    GoalDrift,
    LedgerErrorKind,
    LedgerResult,
    RefundContributionResult,
    ResyncReport,
    SavingsContribution,
    SavingsGoal,
    SavingsStats,
    Transaction,
    TransactionType,
    UpdateGoalData,
    UpdateGoalResult,
)
from savings_ledger.models.planning import (
    LumpSumImpact,
    ProjectionPoint,
    SavingsSimulation,
    ScenarioComparison,
    TimeToGoal,
)
from savings_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger records
    "Account",
    "AccountType",
    "GoalCategory",
    "SavingsContribution",
    "SavingsGoal",
    "Transaction",
    "TransactionType",
    # Requests
    "CreateGoalData",
    "UpdateGoalData",
    # Results
    "AccountDrift",
    "AutoContributionReport",
    "CompletionResult",
    "ContributionResult",
    "CreateGoalResult",
    "DeleteGoalResult",
    "GoalDrift",
    "LedgerErrorKind",
    "LedgerResult",
    "RefundContributionResult",
    "ResyncReport",
    "SavingsStats",
    "UpdateGoalResult",
    # Planning
    "LumpSumImpact",
    "ProjectionPoint",
    "SavingsSimulation",
    "ScenarioComparison",
    "TimeToGoal",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
