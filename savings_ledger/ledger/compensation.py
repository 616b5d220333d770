"""
Compensating write sequences.

The record store has no multi-record transactions, so a ledger
operation that writes several records runs them as a sequence of
steps, each registered with its undo action. When a write fails, the
undo actions of the steps already applied run in reverse order.

Undo actions are retried with tenacity before a step is given up on.
A step that still cannot be undone is reported by name, never dropped:
the caller turns it into ROLLBACK_FAILED or PARTIAL_REFUND_FAILURE and
emergency_resync heals the data afterwards.
"""

from typing import Any, Awaitable, Callable, NoReturn, Optional
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from savings_ledger.audit import AuditLogger
from savings_ledger.config import LedgerSettings
from savings_ledger.ledger.errors import CompensationFailedError
from savings_ledger.services.storage import StorageError


logger = structlog.get_logger(__name__)

AsyncAction = Callable[[], Awaitable[Any]]


class CompensatingSequence:
    """
    Ordered writes with reverse-order undo.

    Usage:
        sequence = CompensatingSequence("contribute", goal.id, ...)
        try:
            await sequence.step("debit source", debit, credit_back)
            await sequence.step("record contribution", add, remove)
        except StorageError as e:
            await sequence.unwind(e)
    """

    def __init__(
        self,
        operation: str,
        entity_id: UUID,
        correlation_id: UUID,
        settings: LedgerSettings,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._operation = operation
        self._entity_id = entity_id
        self._correlation_id = correlation_id
        self._settings = settings
        self._audit = audit_logger
        self._undo_stack: list[tuple[str, AsyncAction]] = []

    @property
    def applied_steps(self) -> list[str]:
        return [name for name, _ in self._undo_stack]

    async def step(self, name: str, action: AsyncAction, undo: AsyncAction) -> Any:
        """Run one write. The undo is registered only once the write succeeded."""
        result = await action()
        self._undo_stack.append((name, undo))
        return result

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._settings.compensation_max_attempts),
            wait=wait_exponential(
                multiplier=self._settings.compensation_wait_min_seconds,
                min=self._settings.compensation_wait_min_seconds,
                max=self._settings.compensation_wait_max_seconds,
            ),
            retry=retry_if_exception_type(StorageError),
            reraise=True,
        )

    async def rollback(self) -> list[str]:
        """
        Undo every applied step, newest first.

        Returns the names of the steps that could not be undone.
        Later undo failures do not stop earlier steps from being undone.
        """
        unreverted = []
        while self._undo_stack:
            name, undo = self._undo_stack.pop()
            try:
                async for attempt in self._retrying():
                    with attempt:
                        await undo()
            except StorageError as e:
                logger.error(
                    "compensation_step_failed",
                    operation=self._operation,
                    step=name,
                    error=str(e),
                    correlation_id=str(self._correlation_id),
                )
                unreverted.append(name)
        unreverted.reverse()
        return unreverted

    async def unwind(self, error: StorageError) -> NoReturn:
        """
        Roll back after a failed write and re-raise.

        Raises the original StorageError when everything was undone,
        CompensationFailedError when some writes are still in effect.
        """
        undone = self.applied_steps
        unreverted = await self.rollback()

        if unreverted:
            if self._audit:
                await self._audit.log_rollback_failed(
                    operation=self._operation,
                    entity_id=self._entity_id,
                    unreverted_steps=unreverted,
                    error_message=str(error),
                    correlation_id=self._correlation_id,
                )
            raise CompensationFailedError(
                f"{self._operation} failed and could not be fully rolled back: {error}",
                unreverted,
            ) from error

        if self._audit:
            await self._audit.log_rollback(
                operation=self._operation,
                entity_id=self._entity_id,
                steps_undone=undone,
                error_message=str(error),
                correlation_id=self._correlation_id,
            )
        raise error
