"""
Contribution Engine

Moves money from a source account into a goal's savings account and
keeps four records in step: the two account balances, the contribution,
the goal's current amount, and one transfer row in the transaction
history.

DESIGN DECISION: Validate everything, then write.
All preconditions (amount, goal, accounts, balance, overfunding) are
checked before the first write. The writes then run as a compensating
sequence, so a storage failure leaves either no trace or an explicit
list of unreverted steps.

The engine never marks a goal completed. It reports will_complete and
leaves the decision to the user (see GoalLifecycleManager.mark_completed).
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog

from savings_ledger.audit import AuditLogger, create_correlation_id
from savings_ledger.config import LedgerSettings, get_settings
from savings_ledger.ledger.compensation import CompensatingSequence
from savings_ledger.ledger.errors import (
    AccountNotFoundError,
    GoalAlreadyCompletedError,
    InsufficientBalanceError,
    InvalidSourceAccountError,
    LedgerError,
    TargetExceededError,
)
from savings_ledger.ledger.guard import SingleFlight
from savings_ledger.ledger.validation import (
    parse_amount,
    require_account,
    require_contribution,
    require_goal,
)
from savings_ledger.models.ledger import (
    Account,
    AccountType,
    AutoContributionReport,
    ContributionResult,
    LedgerErrorKind,
    RefundContributionResult,
    SavingsContribution,
    SavingsGoal,
    Transaction,
    TransactionType,
)
from savings_ledger.services.storage import RecordStoreInterface, StorageError


logger = structlog.get_logger(__name__)


class ContributionEngine:
    """
    Applies and reverses contributions.

    Owns the single-flight guard; the lifecycle manager shares it so a
    delete can never interleave with a contribution on the same goal.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        guard: Optional[SingleFlight] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._guard = guard or SingleFlight()
        self._settings = settings or get_settings().ledger

    @property
    def guard(self) -> SingleFlight:
        return self._guard

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

    # =========================================================================
    # CONTRIBUTE
    # =========================================================================

    async def contribute(
        self,
        goal_id: UUID,
        amount: Any,
        source_account_id: Optional[UUID] = None,
        *,
        user_id: str,
        contribution_date: Optional[date] = None,
    ) -> ContributionResult:
        """
        Transfer amount from a source account into the goal.

        The source is, in order: source_account_id, the goal's
        contribution account, or the first non-savings account of the
        user that can cover the amount.
        """
        correlation_id = create_correlation_id()

        try:
            with self._guard.claim(goal_id):
                return await self._contribute(
                    goal_id,
                    amount,
                    source_account_id,
                    user_id=user_id,
                    contribution_date=contribution_date or date.today(),
                    correlation_id=correlation_id,
                )
        except LedgerError as e:
            await self._audit.log_contribution_rejected(
                goal_id=goal_id,
                error_kind=e.kind.value,
                message=e.message,
                user_id=user_id,
                correlation_id=correlation_id,
            )
            return ContributionResult(
                success=False,
                message=e.message,
                error_kind=e.kind,
                correlation_id=correlation_id,
                unreverted_steps=getattr(e, "unreverted_steps", []),
            )
        except StorageError as e:
            logger.warning(
                "contribution_storage_failure",
                goal_id=str(goal_id),
                error=str(e),
                correlation_id=str(correlation_id),
            )
            return ContributionResult(
                success=False,
                message=f"Storage failure, nothing was changed: {e}",
                error_kind=LedgerErrorKind.STORAGE_FAILURE,
                correlation_id=correlation_id,
            )

    async def _contribute(
        self,
        goal_id: UUID,
        raw_amount: Any,
        source_account_id: Optional[UUID],
        *,
        user_id: str,
        contribution_date: date,
        correlation_id: UUID,
    ) -> ContributionResult:
        amount = parse_amount(raw_amount)

        goal = await require_goal(self._store, goal_id, user_id)
        if goal.is_completed:
            raise GoalAlreadyCompletedError(f"Goal {goal.name!r} is already completed")

        source = await self._resolve_source(goal, source_account_id, amount, user_id)
        savings = await require_account(
            self._store, goal.savings_account_id, user_id, role="Savings account"
        )
        if source.id == savings.id:
            raise InvalidSourceAccountError(
                "Source account cannot be the goal's savings account"
            )

        async with self._guard.hold_accounts(source.id, savings.id):
            # Another goal may have drawn on the source while we waited
            source = await require_account(
                self._store, source.id, user_id, role="Source account"
            )
            if source.balance < amount:
                raise InsufficientBalanceError(
                    f"Insufficient balance in {source.name!r}: "
                    f"{source.balance} available, {amount} requested"
                )
            amount = self._apply_overfunding_policy(goal, amount)
            return await self._transfer(
                goal,
                source,
                savings,
                amount,
                user_id=user_id,
                contribution_date=contribution_date,
                correlation_id=correlation_id,
            )

    async def _transfer(
        self,
        goal: SavingsGoal,
        source: Account,
        savings: Account,
        amount: Decimal,
        *,
        user_id: str,
        contribution_date: date,
        correlation_id: UUID,
    ) -> ContributionResult:
        """Apply a validated contribution as one compensating sequence."""
        contribution = SavingsContribution(
            goal_id=goal.id,
            user_id=user_id,
            amount=amount,
            date=contribution_date,
            from_account_id=source.id,
        )
        transfer = Transaction(
            user_id=user_id,
            account_id=source.id,
            counterparty_account_id=savings.id,
            amount=amount,
            type=TransactionType.TRANSFER,
            description=f"Savings: {goal.name}",
            date=contribution_date,
            parent_transaction_id=contribution.id,
        )
        updated_goal = goal.model_copy(
            update={"current_amount": goal.current_amount + amount}
        )

        sequence = self._sequence("contribute", goal.id, correlation_id)
        try:
            await sequence.step(
                "debit source account",
                lambda: self._store.adjust_account_balance(source.id, -amount),
                lambda: self._store.adjust_account_balance(source.id, amount),
            )
            await sequence.step(
                "credit savings account",
                lambda: self._store.adjust_account_balance(savings.id, amount),
                lambda: self._store.adjust_account_balance(savings.id, -amount),
            )
            await sequence.step(
                "record contribution",
                lambda: self._store.add_contribution(contribution),
                lambda: self._store.delete_contribution(contribution.id),
            )
            await sequence.step(
                "update goal amount",
                lambda: self._store.update_goal(updated_goal),
                lambda: self._store.update_goal(goal),
            )
            await sequence.step(
                "record transfer transaction",
                lambda: self._store.add_transaction(transfer),
                lambda: self._store.delete_transaction(transfer.id),
            )
        except StorageError as e:
            await sequence.unwind(e)

        await self._audit.log_contribution_applied(
            contribution_id=contribution.id,
            goal_id=goal.id,
            amount=amount,
            from_account_id=source.id,
            user_id=user_id,
            correlation_id=correlation_id,
        )

        will_complete = updated_goal.is_target_reached
        message = f"Added {amount} to {goal.name!r}"
        if will_complete:
            message += "; target reached, the goal can be marked as completed"

        return ContributionResult(
            success=True,
            message=message,
            correlation_id=correlation_id,
            contribution_id=contribution.id,
            amount=amount,
            goal_current_amount=updated_goal.current_amount,
            will_complete=will_complete,
        )

    async def _resolve_source(
        self,
        goal: SavingsGoal,
        source_account_id: Optional[UUID],
        amount: Decimal,
        user_id: str,
    ) -> Account:
        if source_account_id is not None:
            return await require_account(
                self._store, source_account_id, user_id, role="Source account"
            )
        if goal.contribution_account_id is not None:
            return await require_account(
                self._store, goal.contribution_account_id, user_id, role="Source account"
            )

        candidates = [
            a for a in await self._store.list_accounts(user_id)
            if a.type != AccountType.SAVINGS and a.id != goal.savings_account_id
        ]
        if not candidates:
            raise AccountNotFoundError("No source account available for this contribution")
        for account in candidates:
            if account.balance >= amount:
                return account
        raise InsufficientBalanceError(
            f"No account has a balance of at least {amount}"
        )

    def _apply_overfunding_policy(self, goal: SavingsGoal, amount: Decimal) -> Decimal:
        """
        Amount actually contributed under the configured policy.

        allow: unchanged. reject: refuse amounts beyond the remaining
        target. cap: trim to the remaining target.
        """
        policy = self._settings.overfunding_policy
        remaining = goal.remaining_amount
        if policy == "allow" or amount <= remaining:
            return amount
        if policy == "reject" or remaining <= 0:
            raise TargetExceededError(
                f"Contribution of {amount} exceeds the remaining {remaining} "
                f"for {goal.name!r}"
            )
        return remaining

    # =========================================================================
    # REFUND A SINGLE CONTRIBUTION
    # =========================================================================

    async def refund_contribution(
        self,
        contribution_id: UUID,
        *,
        user_id: str,
        refund_date: Optional[date] = None,
    ) -> RefundContributionResult:
        """
        Reverse one contribution.

        The money goes back to the account it came from. When that
        account no longer exists, or for an opening contribution, the
        money stays in the savings account and only the goal changes.
        """
        correlation_id = create_correlation_id()

        try:
            contribution = await require_contribution(self._store, contribution_id, user_id)
            with self._guard.claim(contribution.goal_id):
                return await self._refund_contribution(
                    contribution,
                    user_id=user_id,
                    refund_date=refund_date or date.today(),
                    correlation_id=correlation_id,
                )
        except LedgerError as e:
            return RefundContributionResult(
                success=False,
                message=e.message,
                error_kind=e.kind,
                correlation_id=correlation_id,
                unreverted_steps=getattr(e, "unreverted_steps", []),
            )
        except StorageError as e:
            return RefundContributionResult(
                success=False,
                message=f"Storage failure, nothing was changed: {e}",
                error_kind=LedgerErrorKind.STORAGE_FAILURE,
                correlation_id=correlation_id,
            )

    async def _refund_contribution(
        self,
        contribution: SavingsContribution,
        *,
        user_id: str,
        refund_date: date,
        correlation_id: UUID,
    ) -> RefundContributionResult:
        goal = await require_goal(self._store, contribution.goal_id, user_id)
        savings = await require_account(
            self._store, goal.savings_account_id, user_id, role="Savings account"
        )
        amount = contribution.amount

        source = None
        if contribution.from_account_id is not None:
            source = await self._store.get_account(contribution.from_account_id)
            if source is not None and (source.user_id != user_id or source.id == savings.id):
                source = None

        if source is None:
            return await self._reverse(
                contribution, goal, savings, None,
                user_id=user_id,
                refund_date=refund_date,
                correlation_id=correlation_id,
            )

        async with self._guard.hold_accounts(savings.id, source.id):
            savings = await require_account(
                self._store, savings.id, user_id, role="Savings account"
            )
            if savings.balance < amount:
                raise InsufficientBalanceError(
                    f"Savings account holds {savings.balance}, cannot return {amount}"
                )
            return await self._reverse(
                contribution, goal, savings, source,
                user_id=user_id,
                refund_date=refund_date,
                correlation_id=correlation_id,
            )

    async def _reverse(
        self,
        contribution: SavingsContribution,
        goal: SavingsGoal,
        savings: Account,
        source: Optional[Account],
        *,
        user_id: str,
        refund_date: date,
        correlation_id: UUID,
    ) -> RefundContributionResult:
        amount = contribution.amount
        updated_goal = goal.model_copy(
            update={"current_amount": max(Decimal("0"), goal.current_amount - amount)}
        )

        sequence = self._sequence("refund contribution", contribution.id, correlation_id)
        try:
            if source is not None:
                cancellation = Transaction(
                    user_id=user_id,
                    account_id=savings.id,
                    counterparty_account_id=source.id,
                    amount=amount,
                    type=TransactionType.TRANSFER,
                    description=f"Cancellation: {goal.name}",
                    date=refund_date,
                    parent_transaction_id=contribution.id,
                )
                await sequence.step(
                    "debit savings account",
                    lambda: self._store.adjust_account_balance(savings.id, -amount),
                    lambda: self._store.adjust_account_balance(savings.id, amount),
                )
                await sequence.step(
                    "credit source account",
                    lambda: self._store.adjust_account_balance(source.id, amount),
                    lambda: self._store.adjust_account_balance(source.id, -amount),
                )
                await sequence.step(
                    "record cancellation transaction",
                    lambda: self._store.add_transaction(cancellation),
                    lambda: self._store.delete_transaction(cancellation.id),
                )
            await sequence.step(
                "update goal amount",
                lambda: self._store.update_goal(updated_goal),
                lambda: self._store.update_goal(goal),
            )
            await sequence.step(
                "delete contribution",
                lambda: self._store.delete_contribution(contribution.id),
                lambda: self._store.add_contribution(contribution),
            )
        except StorageError as e:
            await sequence.unwind(e)

        returned_to = source.id if source is not None else None
        await self._audit.log_contribution_refunded(
            contribution_id=contribution.id,
            amount=amount,
            to_account_id=returned_to,
            user_id=user_id,
            correlation_id=correlation_id,
        )

        if returned_to is None:
            message = f"Removed {amount} from {goal.name!r}; funds stay in the savings account"
        else:
            message = f"Returned {amount} from {goal.name!r} to {source.name!r}"

        return RefundContributionResult(
            success=True,
            message=message,
            correlation_id=correlation_id,
            contribution_id=contribution.id,
            refunded_amount=amount,
            returned_to_account_id=returned_to,
            goal_current_amount=updated_goal.current_amount,
        )

    # =========================================================================
    # BATCH & QUERIES
    # =========================================================================

    async def process_auto_contributions(
        self,
        *,
        user_id: str,
        contribution_date: Optional[date] = None,
    ) -> AutoContributionReport:
        """
        Contribute each active goal's monthly amount from its contribution account.

        One pass, no scheduling. Each goal goes through contribute()
        exactly like a user action; a failure is reported and the
        batch moves on.
        """
        report = AutoContributionReport()
        for goal in await self._store.list_goals(user_id):
            if goal.is_completed or goal.contribution_account_id is None:
                continue
            if goal.monthly_contribution <= 0:
                continue

            result = await self.contribute(
                goal.id,
                goal.monthly_contribution,
                goal.contribution_account_id,
                user_id=user_id,
                contribution_date=contribution_date,
            )
            if result.success:
                report.processed += 1
            else:
                report.errors.append(f"{goal.name}: {result.message}")

        logger.info(
            "auto_contributions_processed",
            user_id=user_id,
            processed=report.processed,
            failed=len(report.errors),
        )
        return report

    async def contribution_history(
        self,
        goal_id: UUID,
        *,
        user_id: str,
    ) -> list[SavingsContribution]:
        """Contributions of a goal, newest first. Unknown goals give []."""
        goal = await self._store.get_goal(goal_id)
        if goal is None or goal.user_id != user_id:
            return []
        contributions = await self._store.list_contributions(goal_id)
        return sorted(
            contributions,
            key=lambda c: (c.date, c.created_at),
            reverse=True,
        )
