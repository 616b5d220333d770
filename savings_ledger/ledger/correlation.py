"""
Goal/transaction correlation.

Transactions have no goal_id column, so the ledger links them to goals
with two rules:
1. parent_transaction_id is the id of one of the goal's contributions
2. the description mentions the goal's name (case-insensitive)

Rule 2 is a fuzzy match kept for rows written before parent ids existed,
and for refund rows, which have no contribution parent. A renamed goal
still matches its contribution rows through rule 1.
"""

from typing import Iterable

from savings_ledger.models.ledger import SavingsContribution, SavingsGoal, Transaction


def is_related(
    transaction: Transaction,
    goal: SavingsGoal,
    contribution_ids: set,
) -> bool:
    if transaction.user_id != goal.user_id:
        return False
    if transaction.parent_transaction_id in contribution_ids:
        return True
    return goal.name.lower() in transaction.description.lower()


def related_transactions(
    goal: SavingsGoal,
    contributions: Iterable[SavingsContribution],
    transactions: Iterable[Transaction],
) -> list[Transaction]:
    """Transactions linked to the goal, deduplicated by id, in input order."""
    contribution_ids = {c.id for c in contributions}
    seen = set()
    related = []
    for transaction in transactions:
        if transaction.id in seen:
            continue
        if is_related(transaction, goal, contribution_ids):
            seen.add(transaction.id)
            related.append(transaction)
    return related
