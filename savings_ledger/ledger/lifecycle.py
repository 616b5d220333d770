"""
Goal Lifecycle Manager

Creates, edits, completes and deletes savings goals, and repairs the
ledger when a failed rollback left it inconsistent.

Goal states:
    active --contribute/update--> active
    active --mark_completed-----> completed   (explicit only, no way back)
    any    --delete-------------> gone

DESIGN DECISION: Deletion with refund is all-or-nothing.
Every refund is a step of one compensating sequence, and removing the
goal record is its last step. If any write fails, including the
removal, the refunds already applied are undone; if that undo fails,
the goal is kept and the unreverted steps are reported so nothing
disappears silently.
"""

from contextlib import ExitStack
from datetime import date
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from savings_ledger.audit import AuditLogger, create_correlation_id
from savings_ledger.calculator import add_months, required_monthly_savings, round_cents
from savings_ledger.config import LedgerSettings, get_settings
from savings_ledger.ledger.compensation import CompensatingSequence
from savings_ledger.ledger.contributions import ContributionEngine
from savings_ledger.ledger.correlation import related_transactions
from savings_ledger.ledger.errors import (
    CompensationFailedError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidGoalError,
    InvalidSourceAccountError,
    LedgerError,
    PartialRefundFailureError,
    SavingsAccountLockedError,
)
from savings_ledger.ledger.resync import plan_resync
from savings_ledger.ledger.validation import (
    allocated_to_goals,
    require_account,
    require_goal,
    require_savings_account,
)
from savings_ledger.models.ledger import (
    Account,
    AccountType,
    CompletionResult,
    CreateGoalData,
    CreateGoalResult,
    DeleteGoalResult,
    LedgerErrorKind,
    ResyncReport,
    SavingsContribution,
    SavingsGoal,
    SavingsStats,
    Transaction,
    TransactionType,
    UpdateGoalData,
    UpdateGoalResult,
)
from savings_ledger.services.storage import RecordStoreInterface, StorageError


logger = structlog.get_logger(__name__)

AMOUNT_FIELDS = {"target_amount", "monthly_contribution", "initial_amount"}

# Fields that may be sent but never cleared
REQUIRED_FIELDS = {
    "name",
    "target_amount",
    "target_date",
    "monthly_contribution",
    "category",
    "color",
    "icon",
    "savings_account_id",
}


def _validation_failure(error: ValidationError) -> tuple[LedgerErrorKind, str]:
    """Map a pydantic error on goal input to an error kind and message."""
    fields = {str(e["loc"][0]) for e in error.errors() if e.get("loc")}
    kind = (
        LedgerErrorKind.INVALID_AMOUNT
        if fields & AMOUNT_FIELDS
        else LedgerErrorKind.INVALID_GOAL
    )
    messages = "; ".join(
        f"{'.'.join(str(p) for p in e['loc']) or 'goal'}: {e['msg']}"
        for e in error.errors()
    )
    return kind, messages


class GoalLifecycleManager:
    """
    Owns goal records from creation to deletion.

    Shares the contribution engine's single-flight guard, so no two
    mutating operations run on one goal at the same time.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        engine: Optional[ContributionEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger
        self._engine = engine or ContributionEngine(
            store, audit_logger=self._audit, settings=self._settings
        )
        self._guard = self._engine.guard

    @property
    def engine(self) -> ContributionEngine:
        return self._engine

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(
        self,
        data: Union[CreateGoalData, dict],
        *,
        user_id: str,
        today: Optional[date] = None,
    ) -> CreateGoalResult:
        """
        Create a goal backed by one of the user's savings accounts.

        A missing monthly_contribution is derived from the target date.
        A positive initial_amount must already sit unallocated in the
        savings account; it is recorded as an opening contribution.
        """
        correlation_id = create_correlation_id()

        try:
            if not isinstance(data, CreateGoalData):
                data = CreateGoalData.model_validate(data)
        except ValidationError as e:
            kind, message = _validation_failure(e)
            return CreateGoalResult(
                success=False,
                message=message,
                error_kind=kind,
                correlation_id=correlation_id,
            )

        try:
            return await self._create(
                data,
                user_id=user_id,
                today=today or date.today(),
                correlation_id=correlation_id,
            )
        except LedgerError as e:
            return CreateGoalResult(
                success=False,
                message=e.message,
                error_kind=e.kind,
                correlation_id=correlation_id,
            )
        except StorageError as e:
            return CreateGoalResult(
                success=False,
                message=f"Storage failure, goal not created: {e}",
                error_kind=LedgerErrorKind.STORAGE_FAILURE,
                correlation_id=correlation_id,
            )

    async def _create(
        self,
        data: CreateGoalData,
        *,
        user_id: str,
        today: date,
        correlation_id: UUID,
    ) -> CreateGoalResult:
        savings = await require_savings_account(
            self._store, data.savings_account_id, user_id
        )
        if data.contribution_account_id is not None:
            source = await require_account(
                self._store, data.contribution_account_id, user_id,
                role="Contribution account",
            )
            if source.id == savings.id:
                raise InvalidSourceAccountError(
                    "Contribution account cannot be the savings account"
                )

        monthly = data.monthly_contribution
        if monthly is None:
            monthly = required_monthly_savings(
                data.target_amount, data.initial_amount, data.target_date, today
            )
            if monthly <= 0:
                raise InvalidAmountError(
                    "The initial amount already covers the target; "
                    "set a monthly contribution explicitly"
                )

        initial = data.initial_amount
        if initial > 0:
            allocated = await allocated_to_goals(self._store, savings.id, user_id)
            unallocated = savings.balance - allocated
            if initial > unallocated:
                raise InsufficientBalanceError(
                    f"Savings account has {max(unallocated, Decimal('0'))} unallocated, "
                    f"cannot start the goal with {initial}"
                )

        goal = SavingsGoal(
            user_id=user_id,
            name=data.name,
            target_amount=data.target_amount,
            current_amount=initial,
            target_date=data.target_date,
            monthly_contribution=monthly,
            category=data.category,
            color=data.color,
            icon=data.icon,
            savings_account_id=savings.id,
            contribution_account_id=data.contribution_account_id,
        )

        sequence = self._sequence("create goal", goal.id, correlation_id)
        try:
            await sequence.step(
                "save goal",
                lambda: self._store.save_goal(goal),
                lambda: self._store.delete_goal(goal.id),
            )
            if initial > 0:
                opening = SavingsContribution(
                    goal_id=goal.id,
                    user_id=user_id,
                    amount=initial,
                    date=today,
                )
                await sequence.step(
                    "record opening contribution",
                    lambda: self._store.add_contribution(opening),
                    lambda: self._store.delete_contribution(opening.id),
                )
        except StorageError as e:
            await sequence.unwind(e)

        await self._audit.log_goal_created(
            goal_id=goal.id,
            name=goal.name,
            target_amount=goal.target_amount,
            user_id=user_id,
            correlation_id=correlation_id,
        )

        return CreateGoalResult(
            success=True,
            message=f"Goal {goal.name!r} created",
            correlation_id=correlation_id,
            goal_id=goal.id,
            monthly_contribution=monthly,
        )

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(
        self,
        goal_id: UUID,
        changes: Union[UpdateGoalData, dict],
        *,
        user_id: str,
    ) -> UpdateGoalResult:
        """
        Apply a partial update.

        The savings account can only be changed while the goal is empty,
        since moving funds between savings accounts is not a ledger
        operation.
        """
        correlation_id = create_correlation_id()

        try:
            if not isinstance(changes, UpdateGoalData):
                changes = UpdateGoalData.model_validate(changes)
        except ValidationError as e:
            kind, message = _validation_failure(e)
            return UpdateGoalResult(
                success=False,
                message=message,
                error_kind=kind,
                correlation_id=correlation_id,
            )

        try:
            with self._guard.claim(goal_id):
                return await self._update(
                    goal_id, changes.changes(),
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
        except LedgerError as e:
            return UpdateGoalResult(
                success=False,
                message=e.message,
                error_kind=e.kind,
                correlation_id=correlation_id,
            )
        except StorageError as e:
            return UpdateGoalResult(
                success=False,
                message=f"Storage failure, goal not updated: {e}",
                error_kind=LedgerErrorKind.STORAGE_FAILURE,
                correlation_id=correlation_id,
            )

    async def _update(
        self,
        goal_id: UUID,
        fields: dict,
        *,
        user_id: str,
        correlation_id: UUID,
    ) -> UpdateGoalResult:
        goal = await require_goal(self._store, goal_id, user_id)
        if not fields:
            return UpdateGoalResult(
                success=True,
                message="Nothing to update",
                correlation_id=correlation_id,
                goal=goal,
            )

        cleared = sorted(f for f in REQUIRED_FIELDS if f in fields and fields[f] is None)
        if cleared:
            error = InvalidAmountError if set(cleared) & AMOUNT_FIELDS else InvalidGoalError
            raise error(f"Cannot clear required fields: {', '.join(cleared)}")

        savings_account_id = fields.get("savings_account_id", goal.savings_account_id)
        if savings_account_id != goal.savings_account_id:
            if goal.current_amount > 0:
                raise SavingsAccountLockedError(
                    f"Goal {goal.name!r} holds {goal.current_amount}; "
                    "empty it before changing its savings account"
                )
            await require_savings_account(self._store, savings_account_id, user_id)

        contribution_account_id = fields.get(
            "contribution_account_id", goal.contribution_account_id
        )
        if "contribution_account_id" in fields and contribution_account_id is not None:
            await require_account(
                self._store, contribution_account_id, user_id,
                role="Contribution account",
            )
        if contribution_account_id is not None and contribution_account_id == savings_account_id:
            raise InvalidSourceAccountError(
                "Contribution account cannot be the savings account"
            )

        try:
            updated = SavingsGoal.model_validate({**goal.model_dump(), **fields})
        except ValidationError as e:
            kind, message = _validation_failure(e)
            raise (InvalidAmountError if kind == LedgerErrorKind.INVALID_AMOUNT else InvalidGoalError)(message)

        await self._store.update_goal(updated)
        await self._audit.log_goal_updated(
            goal_id=goal.id,
            fields=sorted(fields),
            user_id=user_id,
            correlation_id=correlation_id,
        )

        return UpdateGoalResult(
            success=True,
            message=f"Goal {updated.name!r} updated",
            correlation_id=correlation_id,
            goal=updated,
        )

    # =========================================================================
    # COMPLETE
    # =========================================================================

    async def mark_completed(self, goal_id: UUID, *, user_id: str) -> CompletionResult:
        """Mark a goal completed. Repeating the call is a successful no-op."""
        correlation_id = create_correlation_id()

        try:
            with self._guard.claim(goal_id):
                goal = await require_goal(self._store, goal_id, user_id)
                if goal.is_completed:
                    return CompletionResult(
                        success=True,
                        message=f"Goal {goal.name!r} was already completed",
                        correlation_id=correlation_id,
                        already_completed=True,
                    )

                await self._store.update_goal(goal.model_copy(update={"is_completed": True}))
                await self._audit.log_goal_completed(
                    goal_id=goal.id,
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
                return CompletionResult(
                    success=True,
                    message=f"Goal {goal.name!r} completed",
                    correlation_id=correlation_id,
                )
        except LedgerError as e:
            return CompletionResult(
                success=False,
                message=e.message,
                error_kind=e.kind,
                correlation_id=correlation_id,
            )
        except StorageError as e:
            return CompletionResult(
                success=False,
                message=f"Storage failure, goal unchanged: {e}",
                error_kind=LedgerErrorKind.STORAGE_FAILURE,
                correlation_id=correlation_id,
            )

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(
        self,
        goal_id: UUID,
        *,
        user_id: str,
        with_refund: bool = False,
        delete_transactions: bool = False,
        refund_date: Optional[date] = None,
    ) -> DeleteGoalResult:
        """
        Delete a goal.

        with_refund: send each contribution back to its source account.
            Opening contributions and contributions whose source is gone
            stay in the savings account.
        delete_transactions: also remove the goal's contributions and
            every correlated transaction. Refund rows are then not
            written, so no trace of the goal remains.
        """
        correlation_id = create_correlation_id()

        try:
            with self._guard.claim(goal_id):
                return await self._delete(
                    goal_id,
                    user_id=user_id,
                    with_refund=with_refund,
                    delete_transactions=delete_transactions,
                    refund_date=refund_date or date.today(),
                    correlation_id=correlation_id,
                )
        except LedgerError as e:
            return DeleteGoalResult(
                success=False,
                message=e.message,
                error_kind=e.kind,
                correlation_id=correlation_id,
                unreverted_steps=getattr(e, "unreverted_steps", []),
            )
        except StorageError as e:
            return DeleteGoalResult(
                success=False,
                message=f"Storage failure, goal not deleted: {e}",
                error_kind=LedgerErrorKind.STORAGE_FAILURE,
                correlation_id=correlation_id,
            )

    async def _plan_refunds(
        self,
        goal: SavingsGoal,
        contributions: list[SavingsContribution],
        savings: Account,
        user_id: str,
    ) -> tuple[list[tuple[SavingsContribution, Account]], Decimal]:
        """Split contributions into (contribution, source) refunds and a retained total."""
        refunds = []
        retained = Decimal("0")
        for contribution in contributions:
            source = None
            if contribution.from_account_id is not None:
                source = await self._store.get_account(contribution.from_account_id)
            if source is None or source.user_id != user_id or source.id == savings.id:
                retained += contribution.amount
            else:
                refunds.append((contribution, source))
        return refunds, retained

    async def _delete(
        self,
        goal_id: UUID,
        *,
        user_id: str,
        with_refund: bool,
        delete_transactions: bool,
        refund_date: date,
        correlation_id: UUID,
    ) -> DeleteGoalResult:
        goal = await require_goal(self._store, goal_id, user_id)
        contributions = await self._store.list_contributions(goal.id)
        result = DeleteGoalResult(success=True, correlation_id=correlation_id)

        if with_refund:
            savings = await require_account(
                self._store, goal.savings_account_id, user_id, role="Savings account"
            )
            refunds, retained = await self._plan_refunds(goal, contributions, savings, user_id)
            total = sum((c.amount for c, _ in refunds), Decimal("0"))

            held = [savings.id] + [source.id for _, source in refunds]
            async with self._guard.hold_accounts(*held):
                savings = await require_account(
                    self._store, savings.id, user_id, role="Savings account"
                )
                if savings.balance < total:
                    raise InsufficientBalanceError(
                        f"Savings account holds {savings.balance}, "
                        f"refunds require {total}"
                    )
                result.goal_deleted = await self._refund_and_remove(
                    goal, savings, refunds,
                    write_rows=not delete_transactions,
                    refund_date=refund_date,
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
            result.refunded_amount = total
            result.refunded_contributions = len(refunds)
            result.retained_in_savings = retained

            await self._audit.log_goal_refunded(
                goal_id=goal.id,
                refunded_amount=total,
                refunded_contributions=len(refunds),
                retained_in_savings=retained,
                user_id=user_id,
                correlation_id=correlation_id,
            )
        else:
            result.retained_in_savings = goal.current_amount
            result.goal_deleted = await self._store.delete_goal(goal.id)

        # The goal is gone from here on, so resync no longer counts its history
        if delete_transactions:
            await self._delete_history(goal, contributions, user_id, result)

        await self._audit.log_goal_deleted(
            goal_id=goal.id,
            with_refund=with_refund,
            contributions_deleted=result.contributions_deleted,
            transactions_deleted=result.transactions_deleted,
            user_id=user_id,
            correlation_id=correlation_id,
        )

        parts = [f"Goal {goal.name!r} deleted"]
        if result.refunded_contributions:
            parts.append(f"{result.refunded_amount} refunded")
        if result.retained_in_savings:
            parts.append(f"{result.retained_in_savings} kept in the savings account")
        if result.transactions_failed or result.contributions_failed:
            parts.append(
                f"{result.transactions_failed + result.contributions_failed} "
                "history records could not be removed"
            )
        result.message = "; ".join(parts)
        return result

    async def _refund_and_remove(
        self,
        goal: SavingsGoal,
        savings: Account,
        refunds: list[tuple[SavingsContribution, Account]],
        *,
        write_rows: bool,
        refund_date: date,
        user_id: str,
        correlation_id: UUID,
    ) -> bool:
        """Refund every contribution, then remove the goal, as one sequence."""
        sequence = self._sequence("delete goal with refund", goal.id, correlation_id)
        emptied = goal.model_copy(update={"current_amount": Decimal("0")})

        try:
            for contribution, source in refunds:
                amount = contribution.amount
                # Bind loop variables now; the undo lambdas run later
                await sequence.step(
                    f"debit savings account {amount} for contribution {contribution.id}",
                    lambda amount=amount: self._store.adjust_account_balance(savings.id, -amount),
                    lambda amount=amount: self._store.adjust_account_balance(savings.id, amount),
                )
                await sequence.step(
                    f"credit {source.name} {amount} for contribution {contribution.id}",
                    lambda s=source, amount=amount: self._store.adjust_account_balance(s.id, amount),
                    lambda s=source, amount=amount: self._store.adjust_account_balance(s.id, -amount),
                )
                if write_rows:
                    row = Transaction(
                        user_id=user_id,
                        account_id=savings.id,
                        counterparty_account_id=source.id,
                        amount=amount,
                        type=TransactionType.TRANSFER,
                        description=f"Refund: {goal.name}",
                        date=refund_date,
                        parent_transaction_id=contribution.id,
                    )
                    await sequence.step(
                        f"record refund transaction for contribution {contribution.id}",
                        lambda row=row: self._store.add_transaction(row),
                        lambda row=row: self._store.delete_transaction(row.id),
                    )
            await sequence.step(
                "empty goal",
                lambda: self._store.update_goal(emptied),
                lambda: self._store.update_goal(goal),
            )
            return await sequence.step(
                "remove goal record",
                lambda: self._store.delete_goal(goal.id),
                lambda: self._store.save_goal(emptied),
            )
        except StorageError as e:
            try:
                await sequence.unwind(e)
            except CompensationFailedError as failure:
                await self._audit.log_refund_failed(
                    goal_id=goal.id,
                    error_message=str(e),
                    unreverted_steps=failure.unreverted_steps,
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
                raise PartialRefundFailureError(
                    f"Refund of {goal.name!r} failed part way and could not be "
                    "rolled back; the goal was kept. Run emergency_resync.",
                    failure.unreverted_steps,
                ) from failure

    async def _delete_history(
        self,
        goal: SavingsGoal,
        contributions: list[SavingsContribution],
        user_id: str,
        result: DeleteGoalResult,
    ) -> None:
        """Remove correlated transactions, then the goal's contributions."""
        transactions = await self._store.list_transactions(user_id)
        for transaction in related_transactions(goal, contributions, transactions):
            try:
                if await self._store.delete_transaction(transaction.id):
                    result.transactions_deleted += 1
            except StorageError as e:
                logger.warning(
                    "transaction_delete_failed",
                    transaction_id=str(transaction.id),
                    goal_id=str(goal.id),
                    error=str(e),
                )
                result.transactions_failed += 1

        for contribution in contributions:
            try:
                if await self._store.delete_contribution(contribution.id):
                    result.contributions_deleted += 1
            except StorageError as e:
                logger.warning(
                    "contribution_delete_failed",
                    contribution_id=str(contribution.id),
                    goal_id=str(goal.id),
                    error=str(e),
                )
                result.contributions_failed += 1

    # =========================================================================
    # RELATED TRANSACTIONS
    # =========================================================================

    async def related_transactions_details(
        self,
        goal_id: UUID,
        *,
        user_id: str,
    ) -> list[Transaction]:
        """Transactions linked to a goal. Unknown goals give []."""
        goal = await self._store.get_goal(goal_id)
        if goal is None or goal.user_id != user_id:
            return []
        contributions = await self._store.list_contributions(goal.id)
        transactions = await self._store.list_transactions(user_id)
        return related_transactions(goal, contributions, transactions)

    async def related_transactions_count(self, goal_id: UUID, *, user_id: str) -> int:
        return len(await self.related_transactions_details(goal_id, user_id=user_id))

    # =========================================================================
    # RESYNC
    # =========================================================================

    async def emergency_resync(
        self,
        *,
        user_id: str,
        dry_run: bool = False,
    ) -> ResyncReport:
        """
        Rebuild goal amounts from contributions and realign savings accounts.

        Safe to run at any time and any number of times. With dry_run,
        only reports the drift.
        """
        correlation_id = create_correlation_id()

        try:
            goal_ids = [g.id for g in await self._store.list_goals(user_id)]
            with ExitStack() as stack:
                for goal_id in goal_ids:
                    stack.enter_context(self._guard.claim(goal_id))
                return await self._resync(
                    user_id=user_id,
                    dry_run=dry_run,
                    correlation_id=correlation_id,
                )
        except LedgerError as e:
            return ResyncReport(
                success=False,
                message=e.message,
                error_kind=e.kind,
                correlation_id=correlation_id,
                dry_run=dry_run,
            )
        except StorageError as e:
            return ResyncReport(
                success=False,
                message=f"Storage failure during resync, run it again: {e}",
                error_kind=LedgerErrorKind.STORAGE_FAILURE,
                correlation_id=correlation_id,
                dry_run=dry_run,
            )

    async def _resync(
        self,
        *,
        user_id: str,
        dry_run: bool,
        correlation_id: UUID,
    ) -> ResyncReport:
        goals = await self._store.list_goals(user_id)
        plan = plan_resync(
            goals,
            await self._store.list_user_contributions(user_id),
            await self._store.list_accounts(user_id, AccountType.SAVINGS),
        )

        for drift in plan.goal_drifts:
            await self._audit.log_drift(
                entity_type="goal",
                entity_id=drift.goal_id,
                recorded=drift.recorded_amount,
                expected=drift.recomputed_amount,
                user_id=user_id,
                correlation_id=correlation_id,
            )
        for drift in plan.account_drifts:
            await self._audit.log_drift(
                entity_type="account",
                entity_id=drift.account_id,
                recorded=drift.recorded_balance,
                expected=drift.expected_balance,
                user_id=user_id,
                correlation_id=correlation_id,
            )

        report = ResyncReport(
            success=True,
            correlation_id=correlation_id,
            dry_run=dry_run,
            goals_checked=plan.goals_checked,
            goal_drifts=plan.goal_drifts,
            account_drifts=plan.account_drifts,
        )

        if plan.is_empty:
            report.message = f"{plan.goals_checked} goals checked, no drift"
        elif dry_run:
            report.success = False
            report.error_kind = LedgerErrorKind.CONSISTENCY_DRIFT
            report.message = (
                f"Drift on {len(plan.goal_drifts)} goals and "
                f"{len(plan.account_drifts)} accounts"
            )
        else:
            goals_by_id = {g.id: g for g in goals}
            for drift in plan.goal_drifts:
                goal = goals_by_id[drift.goal_id]
                await self._store.update_goal(
                    goal.model_copy(update={"current_amount": drift.recomputed_amount})
                )
            for drift in plan.account_drifts:
                await self._store.adjust_account_balance(drift.account_id, drift.delta)
            report.repaired = True
            report.message = (
                f"Repaired {len(plan.goal_drifts)} goals and "
                f"{len(plan.account_drifts)} accounts"
            )

        await self._audit.log_resync_completed(
            goals_checked=plan.goals_checked,
            goals_repaired=len(plan.goal_drifts) if report.repaired else 0,
            accounts_repaired=len(plan.account_drifts) if report.repaired else 0,
            dry_run=dry_run,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return report

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_goal(self, goal_id: UUID, *, user_id: str) -> Optional[SavingsGoal]:
        goal = await self._store.get_goal(goal_id)
        if goal is None or goal.user_id != user_id:
            return None
        return goal

    async def list_goals(
        self,
        *,
        user_id: str,
        include_completed: bool = True,
    ) -> list[SavingsGoal]:
        """Active goals first, each group ordered by target date."""
        goals = await self._store.list_goals(user_id)
        if not include_completed:
            goals = [g for g in goals if not g.is_completed]
        return sorted(goals, key=lambda g: (g.is_completed, g.target_date))

    async def savings_stats(
        self,
        *,
        user_id: str,
        today: Optional[date] = None,
    ) -> SavingsStats:
        today = today or date.today()
        goals = await self._store.list_goals(user_id)
        active = [g for g in goals if not g.is_completed]

        total_saved = sum((g.current_amount for g in goals), Decimal("0"))
        total_target = sum((g.target_amount for g in goals), Decimal("0"))
        progress = (
            round_cents(total_saved / total_target * 100)
            if total_target > 0 else Decimal("0")
        )

        horizon = add_months(today, self._settings.upcoming_goal_window_months)
        upcoming = sorted(
            (g for g in active if g.target_date <= horizon),
            key=lambda g: g.target_date,
        )[: self._settings.upcoming_goal_limit]

        return SavingsStats(
            total_saved=total_saved,
            total_goals=len(goals),
            completed_goals=len(goals) - len(active),
            monthly_contributions=sum(
                (g.monthly_contribution for g in active), Decimal("0")
            ),
            progress_percentage=progress,
            upcoming_goals=upcoming,
        )

    def _sequence(
        self,
        operation: str,
        entity_id: UUID,
        correlation_id: UUID,
    ) -> CompensatingSequence:
        return CompensatingSequence(
            operation=operation,
            entity_id=entity_id,
            correlation_id=correlation_id,
            settings=self._settings,
            audit_logger=self._audit,
        )
