"""
Consistency check for goals and their savings accounts.

plan_resync is a pure function of the records. It never reads the
incremental history of operations, so it can double as an oracle in
tests: after any sequence of successful operations the plan is empty.

Rules:
- A goal's current_amount must equal the sum of its contributions.
- A savings account holds its goals' money plus money that belongs to
  no goal. The non-goal part is balance minus the recorded goal amounts
  (never below zero), and the expected balance is that part plus the
  recomputed goal amounts.

Applying a plan and planning again yields an empty plan.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from pydantic import BaseModel, Field

from savings_ledger.models.ledger import (
    Account,
    AccountDrift,
    GoalDrift,
    SavingsContribution,
    SavingsGoal,
)


class ResyncPlan(BaseModel):
    goals_checked: int = 0
    goal_drifts: list[GoalDrift] = Field(default_factory=list)
    account_drifts: list[AccountDrift] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.goal_drifts and not self.account_drifts


def contribution_totals(
    contributions: Iterable[SavingsContribution],
) -> dict[UUID, Decimal]:
    totals: dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
    for contribution in contributions:
        totals[contribution.goal_id] += contribution.amount
    return totals


def plan_resync(
    goals: Iterable[SavingsGoal],
    contributions: Iterable[SavingsContribution],
    accounts: Iterable[Account],
) -> ResyncPlan:
    """Compare stored amounts with what the contributions imply."""
    goals = list(goals)
    totals = contribution_totals(contributions)
    accounts_by_id = {a.id: a for a in accounts}

    plan = ResyncPlan(goals_checked=len(goals))

    for goal in goals:
        recomputed = totals.get(goal.id, Decimal("0"))
        if recomputed != goal.current_amount:
            plan.goal_drifts.append(GoalDrift(
                goal_id=goal.id,
                recorded_amount=goal.current_amount,
                recomputed_amount=recomputed,
            ))

    # Savings accounts in the order their goals appear
    backing: dict[UUID, list[SavingsGoal]] = {}
    for goal in goals:
        backing.setdefault(goal.savings_account_id, []).append(goal)

    for account_id, backed_goals in backing.items():
        account = accounts_by_id.get(account_id)
        if account is None:
            continue
        recorded_total = sum((g.current_amount for g in backed_goals), Decimal("0"))
        recomputed_total = sum(
            (totals.get(g.id, Decimal("0")) for g in backed_goals), Decimal("0")
        )
        non_goal_funds = max(Decimal("0"), account.balance - recorded_total)
        expected = non_goal_funds + recomputed_total
        if expected != account.balance:
            plan.account_drifts.append(AccountDrift(
                account_id=account.id,
                recorded_balance=account.balance,
                expected_balance=expected,
                non_goal_funds=non_goal_funds,
            ))

    return plan
