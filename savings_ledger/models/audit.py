"""
Audit Models for the Savings Ledger

Every money movement and lifecycle change is logged for audit purposes.
This provides:
1. Traceability of each transfer between accounts
2. The evidence needed to reconcile after a partial failure
3. Ability to reconstruct what a resync repaired

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each ledger operation has its own success and failure events.
    """
    # Goal lifecycle
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_COMPLETED = "goal_completed"
    GOAL_DELETED = "goal_deleted"

    # Contributions
    CONTRIBUTION_APPLIED = "contribution_applied"
    CONTRIBUTION_REJECTED = "contribution_rejected"
    CONTRIBUTION_REFUNDED = "contribution_refunded"

    # Refund on delete
    GOAL_REFUNDED = "goal_refunded"
    REFUND_FAILED = "refund_failed"

    # Failure handling
    OPERATION_ROLLED_BACK = "operation_rolled_back"
    ROLLBACK_FAILED = "rollback_failed"

    # Resync
    DRIFT_DETECTED = "drift_detected"
    RESYNC_COMPLETED = "resync_completed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'goal', 'contribution', 'account')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - all events of one ledger operation share this
    correlation_id: Optional[UUID] = None

    user_id: Optional[str] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "user_id": self.user_id,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit table.

        Columns in order:
        (event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, user_id, description, details_json, error_code,
         error_message, is_user_action)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type,
            str(self.entity_id) if self.entity_id else None,
            str(self.correlation_id) if self.correlation_id else None,
            self.user_id,
            self.description,
            json.dumps(self.details) if self.details else None,
            self.error_code,
            self.error_message,
            int(self.is_user_action),
        )


def _money(amount: Decimal) -> str:
    return str(amount)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.contribution_applied(...)
        event = AuditEventBuilder.rollback_failed(...)
    """

    @staticmethod
    def goal_created(
        goal_id: UUID,
        name: str,
        target_amount: Decimal,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_CREATED,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Goal created: {name}",
            details={
                "name": name,
                "target_amount": _money(target_amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def goal_updated(
        goal_id: UUID,
        fields: list[str],
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_UPDATED,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Goal updated: {', '.join(fields)}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def goal_completed(
        goal_id: UUID,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_COMPLETED,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description="Goal marked as completed",
            is_user_action=True,
        )

    @staticmethod
    def goal_deleted(
        goal_id: UUID,
        with_refund: bool,
        contributions_deleted: int,
        transactions_deleted: int,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_DELETED,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description="Goal deleted" + (" with refund" if with_refund else ""),
            details={
                "with_refund": with_refund,
                "contributions_deleted": contributions_deleted,
                "transactions_deleted": transactions_deleted,
            },
            is_user_action=True,
        )

    @staticmethod
    def contribution_applied(
        contribution_id: UUID,
        goal_id: UUID,
        amount: Decimal,
        from_account_id: UUID,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTRIBUTION_APPLIED,
            entity_type="contribution",
            entity_id=contribution_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Contribution of {_money(amount)} applied",
            details={
                "goal_id": str(goal_id),
                "amount": _money(amount),
                "from_account_id": str(from_account_id),
            },
            is_user_action=True,
        )

    @staticmethod
    def contribution_rejected(
        goal_id: UUID,
        error_kind: str,
        message: str,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTRIBUTION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Contribution rejected: {error_kind}",
            error_code=error_kind,
            error_message=message,
        )

    @staticmethod
    def contribution_refunded(
        contribution_id: UUID,
        amount: Decimal,
        to_account_id: Optional[UUID],
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTRIBUTION_REFUNDED,
            entity_type="contribution",
            entity_id=contribution_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Contribution of {_money(amount)} reversed",
            details={
                "amount": _money(amount),
                "to_account_id": str(to_account_id) if to_account_id else None,
            },
            is_user_action=True,
        )

    @staticmethod
    def goal_refunded(
        goal_id: UUID,
        refunded_amount: Decimal,
        refunded_contributions: int,
        retained_in_savings: Decimal,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_REFUNDED,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=(
                f"Refunded {_money(refunded_amount)} from "
                f"{refunded_contributions} contributions"
            ),
            details={
                "refunded_amount": _money(refunded_amount),
                "refunded_contributions": refunded_contributions,
                "retained_in_savings": _money(retained_in_savings),
            },
        )

    @staticmethod
    def refund_failed(
        goal_id: UUID,
        error_message: str,
        unreverted_steps: list[str],
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFUND_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description="Refund on delete failed",
            error_message=error_message,
            details={"unreverted_steps": unreverted_steps},
        )

    @staticmethod
    def operation_rolled_back(
        operation: str,
        entity_id: UUID,
        steps_undone: list[str],
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{operation} rolled back after a write failure",
            error_message=error_message,
            details={"steps_undone": steps_undone},
        )

    @staticmethod
    def rollback_failed(
        operation: str,
        entity_id: UUID,
        unreverted_steps: list[str],
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROLLBACK_FAILED,
            severity=AuditSeverity.CRITICAL,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{operation} could not be rolled back",
            error_message=error_message,
            details={"unreverted_steps": unreverted_steps},
        )

    @staticmethod
    def drift_detected(
        entity_type: str,
        entity_id: UUID,
        recorded: Decimal,
        expected: Decimal,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DRIFT_DETECTED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Drift on {entity_type}: {_money(recorded)} != {_money(expected)}",
            details={
                "recorded": _money(recorded),
                "expected": _money(expected),
            },
        )

    @staticmethod
    def resync_completed(
        goals_checked: int,
        goals_repaired: int,
        accounts_repaired: int,
        dry_run: bool,
        user_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESYNC_COMPLETED,
            correlation_id=correlation_id,
            user_id=user_id,
            description=(
                f"Resync checked {goals_checked} goals"
                + (" (dry run)" if dry_run else "")
            ),
            details={
                "goals_checked": goals_checked,
                "goals_repaired": goals_repaired,
                "accounts_repaired": accounts_repaired,
                "dry_run": dry_run,
            },
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
