"""
Audit Logger

DESIGN DECISION: Every ledger operation that moves money or changes a
goal is logged. This provides:
1. Complete traceability of each transfer
2. The unreverted steps after a failed rollback, for manual repair
3. A history of what resync found and fixed

The audit logger:
- Is async to fit the ledger's call chain
- Gracefully handles failures (a failed audit write never fails a transfer)
- Supports correlation IDs to trace all events of one operation
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from savings_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from savings_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit storage backend (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("savings_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_goal_created(
        self,
        goal_id: UUID,
        name: str,
        target_amount: Decimal,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.goal_created(
            goal_id=goal_id,
            name=name,
            target_amount=target_amount,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_goal_updated(
        self,
        goal_id: UUID,
        fields: list[str],
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.goal_updated(
            goal_id=goal_id,
            fields=fields,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_goal_completed(
        self,
        goal_id: UUID,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.goal_completed(
            goal_id=goal_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_goal_deleted(
        self,
        goal_id: UUID,
        with_refund: bool,
        contributions_deleted: int,
        transactions_deleted: int,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.goal_deleted(
            goal_id=goal_id,
            with_refund=with_refund,
            contributions_deleted=contributions_deleted,
            transactions_deleted=transactions_deleted,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_contribution_applied(
        self,
        contribution_id: UUID,
        goal_id: UUID,
        amount: Decimal,
        from_account_id: UUID,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.contribution_applied(
            contribution_id=contribution_id,
            goal_id=goal_id,
            amount=amount,
            from_account_id=from_account_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_contribution_rejected(
        self,
        goal_id: UUID,
        error_kind: str,
        message: str,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.contribution_rejected(
            goal_id=goal_id,
            error_kind=error_kind,
            message=message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_contribution_refunded(
        self,
        contribution_id: UUID,
        amount: Decimal,
        to_account_id: Optional[UUID],
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.contribution_refunded(
            contribution_id=contribution_id,
            amount=amount,
            to_account_id=to_account_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_goal_refunded(
        self,
        goal_id: UUID,
        refunded_amount: Decimal,
        refunded_contributions: int,
        retained_in_savings: Decimal,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.goal_refunded(
            goal_id=goal_id,
            refunded_amount=refunded_amount,
            refunded_contributions=refunded_contributions,
            retained_in_savings=retained_in_savings,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_refund_failed(
        self,
        goal_id: UUID,
        error_message: str,
        unreverted_steps: list[str],
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.refund_failed(
            goal_id=goal_id,
            error_message=error_message,
            unreverted_steps=unreverted_steps,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_rollback(
        self,
        operation: str,
        entity_id: UUID,
        steps_undone: list[str],
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a write failure that was fully compensated."""
        await self.log(AuditEventBuilder.operation_rolled_back(
            operation=operation,
            entity_id=entity_id,
            steps_undone=steps_undone,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_rollback_failed(
        self,
        operation: str,
        entity_id: UUID,
        unreverted_steps: list[str],
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a compensation that left the ledger inconsistent."""
        await self.log(AuditEventBuilder.rollback_failed(
            operation=operation,
            entity_id=entity_id,
            unreverted_steps=unreverted_steps,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_drift(
        self,
        entity_type: str,
        entity_id: UUID,
        recorded: Decimal,
        expected: Decimal,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.drift_detected(
            entity_type=entity_type,
            entity_id=entity_id,
            recorded=recorded,
            expected=expected,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_resync_completed(
        self,
        goals_checked: int,
        goals_repaired: int,
        accounts_repaired: int,
        dry_run: bool,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.resync_completed(
            goals_checked=goals_checked,
            goals_repaired=goals_repaired,
            accounts_repaired=accounts_repaired,
            dry_run=dry_run,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of each ledger operation and pass it
    through every audit event the operation emits.
    """
    return uuid4()
