"""
Tests for the goal lifecycle manager.

Create, update, completion, the deletion variants with their refund
and history options, correlated transactions, the emergency resync and
the read-side queries.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from savings_ledger.ledger import plan_resync
from savings_ledger.models.audit import AuditEventType
from savings_ledger.models.ledger import AccountType, LedgerErrorKind

from tests.conftest import TODAY, USER, run


def create(ledger, **fields):
    return run(ledger.manager.create(fields, user_id=USER, today=TODAY))


def update(ledger, goal_id, changes):
    return run(ledger.manager.update(goal_id, changes, user_id=USER))


def delete(ledger, goal_id, **options):
    return run(ledger.manager.delete(goal_id, user_id=USER, refund_date=TODAY, **options))


def plan(ledger):
    store = ledger.store
    return plan_resync(
        run(store.list_goals(USER)),
        run(store.list_user_contributions(USER)),
        run(store.list_accounts(USER)),
    )


class TestCreate:
    """Tests for goal creation."""

    def test_monthly_contribution_is_computed(self, ledger):
        savings = ledger.account("Savings", AccountType.SAVINGS, "0")

        result = create(
            ledger,
            name="Bike",
            target_amount="1200",
            target_date=date(2025, 7, 1),
            savings_account_id=savings.id,
        )

        assert result.success
        assert result.monthly_contribution == Decimal("200.00")
        assert ledger.goal(result.goal_id).monthly_contribution == Decimal("200.00")

    def test_explicit_monthly_contribution_is_kept(self, ledger):
        savings = ledger.account("Savings", AccountType.SAVINGS, "0")
        goal_id = ledger.create_goal(savings, monthly_contribution=Decimal("75"))
        assert ledger.goal(goal_id).monthly_contribution == 75

    def test_initial_amount_becomes_opening_contribution(self, ledger):
        savings = ledger.account("Savings", AccountType.SAVINGS, "500")

        goal_id = ledger.create_goal(savings, initial_amount=Decimal("300"))

        assert ledger.goal(goal_id).current_amount == 300
        recorded = run(ledger.store.list_contributions(goal_id))
        assert len(recorded) == 1
        assert recorded[0].amount == 300
        assert recorded[0].from_account_id is None
        assert ledger.balance(savings.id) == 500
        assert plan(ledger).is_empty

    def test_initial_amount_must_be_unallocated(self, ledger):
        savings = ledger.account("Savings", AccountType.SAVINGS, "500")
        ledger.create_goal(savings, name="First", initial_amount=Decimal("300"))

        result = create(
            ledger,
            name="Second",
            target_amount="1000",
            target_date=date(2025, 12, 31),
            monthly_contribution="50",
            savings_account_id=savings.id,
            initial_amount="300",
        )

        assert result.error_kind == LedgerErrorKind.INSUFFICIENT_BALANCE
        assert len(run(ledger.store.list_goals(USER))) == 1

    def test_initial_amount_covering_target_needs_explicit_monthly(self, ledger):
        savings = ledger.account("Savings", AccountType.SAVINGS, "2000")

        result = create(
            ledger,
            name="Done already",
            target_amount="1000",
            target_date=date(2025, 12, 31),
            savings_account_id=savings.id,
            initial_amount="1000",
        )

        assert result.error_kind == LedgerErrorKind.INVALID_AMOUNT

    def test_savings_account_must_be_a_savings_account(self, ledger):
        checking = ledger.account("Checking", AccountType.CHECKING, "100")

        result = create(
            ledger,
            name="Bike",
            target_amount="500",
            target_date=date(2025, 12, 31),
            monthly_contribution="50",
            savings_account_id=checking.id,
        )

        assert result.error_kind == LedgerErrorKind.INVALID_GOAL

    def test_unknown_accounts(self, ledger):
        savings = ledger.account("Savings", AccountType.SAVINGS, "0")
        base = {
            "name": "Bike",
            "target_amount": "500",
            "target_date": date(2025, 12, 31),
            "monthly_contribution": "50",
        }

        missing_savings = create(ledger, savings_account_id=uuid4(), **base)
        missing_source = create(
            ledger, savings_account_id=savings.id, contribution_account_id=uuid4(), **base
        )

        assert missing_savings.error_kind == LedgerErrorKind.ACCOUNT_NOT_FOUND
        assert missing_source.error_kind == LedgerErrorKind.ACCOUNT_NOT_FOUND

    @pytest.mark.parametrize(
        "fields, kind",
        [
            ({"target_amount": "-5"}, LedgerErrorKind.INVALID_AMOUNT),
            ({"monthly_contribution": "0"}, LedgerErrorKind.INVALID_AMOUNT),
            ({"target_amount": "lots"}, LedgerErrorKind.INVALID_AMOUNT),
            ({"name": ""}, LedgerErrorKind.INVALID_GOAL),
            ({"target_date": "someday"}, LedgerErrorKind.INVALID_GOAL),
        ],
    )
    def test_invalid_input(self, ledger, fields, kind):
        savings = ledger.account("Savings", AccountType.SAVINGS, "0")
        data = {
            "name": "Bike",
            "target_amount": "500",
            "target_date": date(2025, 12, 31),
            "monthly_contribution": "50",
            "savings_account_id": savings.id,
        }
        data.update(fields)

        result = create(ledger, **data)

        assert result.error_kind == kind
        assert run(ledger.store.list_goals(USER)) == []

    def test_creation_is_audited(self, ledger):
        savings = ledger.account("Savings", AccountType.SAVINGS, "0")
        goal_id = ledger.create_goal(savings)

        created = [
            e for e in ledger.audit_storage.events
            if e.event_type == AuditEventType.GOAL_CREATED
        ]
        assert [e.entity_id for e in created] == [goal_id]


class TestUpdate:
    """Tests for partial goal updates."""

    def test_rename(self, funded):
        ledger, _, _, goal_id = funded

        result = update(ledger, goal_id, {"name": "Japan trip"})

        assert result.success
        assert result.goal.name == "Japan trip"
        assert ledger.goal(goal_id).name == "Japan trip"

    def test_empty_update_is_a_no_op(self, funded):
        ledger, _, _, goal_id = funded
        result = update(ledger, goal_id, {})
        assert result.success
        assert result.goal.name == "Vacation"

    def test_required_fields_cannot_be_cleared(self, funded):
        ledger, _, _, goal_id = funded

        assert update(ledger, goal_id, {"name": None}).error_kind == LedgerErrorKind.INVALID_GOAL
        assert (
            update(ledger, goal_id, {"target_amount": None}).error_kind
            == LedgerErrorKind.INVALID_AMOUNT
        )
        assert ledger.goal(goal_id).name == "Vacation"

    def test_invalid_values(self, funded):
        ledger, _, _, goal_id = funded
        assert (
            update(ledger, goal_id, {"target_amount": "-1"}).error_kind
            == LedgerErrorKind.INVALID_AMOUNT
        )
        assert (
            update(ledger, goal_id, {"current_amount": "5"}).error_kind
            == LedgerErrorKind.INVALID_GOAL
        )

    def test_savings_account_locked_while_funded(self, funded):
        ledger, checking, _, goal_id = funded
        other = ledger.account("Other savings", AccountType.SAVINGS, "0")
        ledger.contribute(goal_id, 100, checking.id)

        result = update(ledger, goal_id, {"savings_account_id": other.id})

        assert result.error_kind == LedgerErrorKind.SAVINGS_ACCOUNT_LOCKED

    def test_savings_account_can_move_while_empty(self, funded):
        ledger, checking, _, goal_id = funded
        other = ledger.account("Other savings", AccountType.SAVINGS, "0")

        assert update(ledger, goal_id, {"savings_account_id": other.id}).success
        assert (
            update(ledger, goal_id, {"savings_account_id": checking.id}).error_kind
            == LedgerErrorKind.INVALID_GOAL
        )
        assert ledger.goal(goal_id).savings_account_id == other.id

    def test_contribution_account_rules(self, funded):
        ledger, checking, savings, goal_id = funded

        assert update(ledger, goal_id, {"contribution_account_id": checking.id}).success
        assert (
            update(ledger, goal_id, {"contribution_account_id": savings.id}).error_kind
            == LedgerErrorKind.INVALID_SOURCE_ACCOUNT
        )
        assert (
            update(ledger, goal_id, {"contribution_account_id": uuid4()}).error_kind
            == LedgerErrorKind.ACCOUNT_NOT_FOUND
        )
        assert update(ledger, goal_id, {"contribution_account_id": None}).success
        assert ledger.goal(goal_id).contribution_account_id is None

    def test_unknown_goal(self, ledger):
        assert update(ledger, uuid4(), {"name": "x"}).error_kind == LedgerErrorKind.GOAL_NOT_FOUND


class TestMarkCompleted:
    """Tests for the explicit completion step."""

    def test_is_idempotent(self, funded):
        ledger, _, _, goal_id = funded

        first = run(ledger.manager.mark_completed(goal_id, user_id=USER))
        second = run(ledger.manager.mark_completed(goal_id, user_id=USER))

        assert first.success and not first.already_completed
        assert second.success and second.already_completed
        completed = [
            e for e in ledger.audit_storage.events
            if e.event_type == AuditEventType.GOAL_COMPLETED
        ]
        assert len(completed) == 1

    def test_unknown_goal(self, ledger):
        result = run(ledger.manager.mark_completed(uuid4(), user_id=USER))
        assert result.error_kind == LedgerErrorKind.GOAL_NOT_FOUND


class TestDelete:
    """Tests for the deletion variants."""

    def test_without_refund_keeps_money_and_history(self, funded):
        ledger, checking, savings, goal_id = funded
        ledger.contribute(goal_id, 300, checking.id)

        result = delete(ledger, goal_id)

        assert result.success
        assert result.goal_deleted
        assert result.retained_in_savings == 300
        assert ledger.goal(goal_id) is None
        assert ledger.balance(savings.id) == 300
        assert ledger.balance(checking.id) == 700
        assert len(run(ledger.store.list_contributions(goal_id))) == 1
        assert len(run(ledger.store.list_transactions(USER))) == 1

    def test_with_refund_returns_each_contribution(self, funded):
        ledger, checking, savings, goal_id = funded
        cash = ledger.account("Cash", AccountType.CASH, "500")
        ledger.contribute(goal_id, 100, checking.id)
        ledger.contribute(goal_id, 200, cash.id)

        result = delete(ledger, goal_id, with_refund=True)

        assert result.success
        assert result.refunded_amount == 300
        assert result.refunded_contributions == 2
        assert result.retained_in_savings == 0
        assert ledger.balance(checking.id) == 1000
        assert ledger.balance(cash.id) == 500
        assert ledger.balance(savings.id) == 0
        refund_rows = [
            t for t in run(ledger.store.list_transactions(USER))
            if t.description == "Refund: Vacation"
        ]
        assert len(refund_rows) == 2

    def test_with_refund_and_history_leaves_no_trace(self, funded):
        ledger, checking, savings, goal_id = funded
        ledger.contribute(goal_id, 100, checking.id)
        ledger.contribute(goal_id, 250, checking.id)
        total_before = ledger.total_balance()

        result = delete(ledger, goal_id, with_refund=True, delete_transactions=True)

        assert result.success
        assert result.contributions_deleted == 2
        assert result.transactions_deleted == 2
        assert ledger.total_balance() == total_before
        assert ledger.balance(checking.id) == 1000
        assert ledger.balance(savings.id) == 0
        assert run(ledger.store.list_contributions(goal_id)) == []
        assert run(ledger.store.list_transactions(USER)) == []

    def test_opening_contribution_stays_in_savings(self, ledger):
        checking = ledger.account("Checking", AccountType.CHECKING, "1000")
        savings = ledger.account("Savings", AccountType.SAVINGS, "500")
        goal_id = ledger.create_goal(savings, initial_amount=Decimal("300"))
        ledger.contribute(goal_id, 100, checking.id)

        result = delete(ledger, goal_id, with_refund=True)

        assert result.refunded_amount == 100
        assert result.retained_in_savings == 300
        assert ledger.balance(savings.id) == 500
        assert ledger.balance(checking.id) == 1000

    def test_history_only(self, funded):
        ledger, checking, savings, goal_id = funded
        ledger.contribute(goal_id, 100, checking.id)

        result = delete(ledger, goal_id, delete_transactions=True)

        assert result.success
        assert result.transactions_deleted == 1
        assert ledger.balance(savings.id) == 100
        assert run(ledger.store.list_transactions(USER)) == []

    def test_refund_needs_the_money_in_savings(self, funded):
        ledger, checking, savings, goal_id = funded
        ledger.contribute(goal_id, 300, checking.id)
        run(ledger.store.adjust_account_balance(savings.id, Decimal("-250")))

        result = delete(ledger, goal_id, with_refund=True)

        assert result.error_kind == LedgerErrorKind.INSUFFICIENT_BALANCE
        assert ledger.goal(goal_id) is not None
        assert ledger.balance(checking.id) == 700

    def test_failed_refund_is_rolled_back(self, flaky_funded):
        ledger, checking, savings, goal_id = flaky_funded
        ledger.contribute(goal_id, 100, checking.id)
        ledger.contribute(goal_id, 200, checking.id)
        ledger.store.fail("update_goal")

        result = delete(ledger, goal_id, with_refund=True)

        assert result.error_kind == LedgerErrorKind.STORAGE_FAILURE
        assert ledger.goal(goal_id).current_amount == 300
        assert ledger.balance(checking.id) == 700
        assert ledger.balance(savings.id) == 300
        assert len(run(ledger.store.list_transactions(USER))) == 2
        assert plan(ledger).is_empty

    def test_partial_refund_failure_keeps_the_goal(self, flaky_funded):
        ledger, checking, _, goal_id = flaky_funded
        ledger.contribute(goal_id, 100, checking.id)
        ledger.contribute(goal_id, 200, checking.id)
        # The second refund row fails, then every balance undo fails
        ledger.store.fail("add_transaction", after=1)
        ledger.store.fail("adjust_account_balance", after=4, times=None)

        result = delete(ledger, goal_id, with_refund=True)

        assert not result.success
        assert result.error_kind == LedgerErrorKind.PARTIAL_REFUND_FAILURE
        assert len(result.unreverted_steps) == 4
        assert ledger.goal(goal_id) is not None
        event_types = [e.event_type for e in ledger.audit_storage.events]
        assert AuditEventType.REFUND_FAILED in event_types
        assert AuditEventType.ROLLBACK_FAILED in event_types

    def test_goal_record_failure_rolls_the_refunds_back(self, flaky_funded):
        ledger, checking, savings, goal_id = flaky_funded
        ledger.contribute(goal_id, 100, checking.id)
        total_before = ledger.total_balance()
        ledger.store.fail("delete_goal")

        result = delete(ledger, goal_id, with_refund=True)

        assert result.error_kind == LedgerErrorKind.STORAGE_FAILURE
        assert not result.goal_deleted
        assert ledger.goal(goal_id).current_amount == 100
        assert ledger.balance(checking.id) == 900
        assert ledger.balance(savings.id) == 100
        assert plan(ledger).is_empty

        ledger.store.heal()
        resync = run(ledger.manager.emergency_resync(user_id=USER))
        assert resync.success and not resync.repaired
        assert ledger.total_balance() == total_before

        retry = delete(ledger, goal_id, with_refund=True)
        assert retry.success
        assert ledger.balance(checking.id) == 1000
        assert ledger.balance(savings.id) == 0

    def test_goal_record_failure_without_refund_changes_nothing(self, flaky_funded):
        ledger, checking, savings, goal_id = flaky_funded
        ledger.contribute(goal_id, 100, checking.id)
        ledger.store.fail("delete_goal")

        result = delete(ledger, goal_id, delete_transactions=True)

        assert result.error_kind == LedgerErrorKind.STORAGE_FAILURE
        assert ledger.goal(goal_id).current_amount == 100
        assert len(run(ledger.store.list_contributions(goal_id))) == 1
        assert len(run(ledger.store.list_transactions(USER))) == 1
        assert plan(ledger).is_empty
        assert ledger.balance(savings.id) == 100

    def test_history_failures_are_counted(self, flaky_funded):
        ledger, checking, _, goal_id = flaky_funded
        ledger.contribute(goal_id, 100, checking.id)
        ledger.store.fail("delete_transaction")

        result = delete(ledger, goal_id, delete_transactions=True)

        assert result.success
        assert result.transactions_failed == 1
        assert result.contributions_deleted == 1
        assert "could not be removed" in result.message

    def test_unknown_goal(self, ledger):
        assert delete(ledger, uuid4()).error_kind == LedgerErrorKind.GOAL_NOT_FOUND

    def test_busy_goal_is_not_deleted(self, funded):
        ledger, _, _, goal_id = funded
        with ledger.engine.guard.claim(goal_id):
            result = delete(ledger, goal_id)
        assert result.error_kind == LedgerErrorKind.CONCURRENT_OPERATION_IN_PROGRESS
        assert ledger.goal(goal_id) is not None


class TestRelatedTransactions:
    """Tests for the transaction history of a goal."""

    def test_count_follows_contributions_and_refunds(self, funded):
        ledger, checking, _, goal_id = funded
        ledger.contribute(goal_id, 100, checking.id)
        contribution = ledger.contribute(goal_id, 50, checking.id)
        count = run(ledger.manager.related_transactions_count(goal_id, user_id=USER))
        assert count == 2

        run(ledger.engine.refund_contribution(
            contribution.contribution_id, user_id=USER, refund_date=TODAY
        ))

        count = run(ledger.manager.related_transactions_count(goal_id, user_id=USER))
        assert count == 3

    def test_unknown_goal(self, ledger):
        assert run(ledger.manager.related_transactions_count(uuid4(), user_id=USER)) == 0


class TestEmergencyResync:
    """Tests for detecting and repairing drift."""

    def _corrupt(self, ledger, goal_id, amount):
        goal = ledger.goal(goal_id)
        run(ledger.store.update_goal(goal.model_copy(update={"current_amount": Decimal(amount)})))

    def test_dry_run_reports_without_changing(self, funded):
        ledger, checking, _, goal_id = funded
        ledger.contribute(goal_id, 100, checking.id)
        self._corrupt(ledger, goal_id, "999")

        report = run(ledger.manager.emergency_resync(user_id=USER, dry_run=True))

        assert not report.success
        assert report.error_kind == LedgerErrorKind.CONSISTENCY_DRIFT
        assert report.drift_detected
        assert not report.repaired
        assert ledger.goal(goal_id).current_amount == 999

    def test_reads_only_savings_accounts(self, funded, monkeypatch):
        ledger, checking, _, goal_id = funded
        ledger.contribute(goal_id, 100, checking.id)
        requested_types = []
        list_accounts = ledger.store.list_accounts

        async def recording(user_id, account_type=None):
            requested_types.append(account_type)
            return await list_accounts(user_id, account_type)

        monkeypatch.setattr(ledger.store, "list_accounts", recording)
        report = run(ledger.manager.emergency_resync(user_id=USER))

        assert report.success
        assert requested_types == [AccountType.SAVINGS]

    def test_repair_then_idempotent(self, funded):
        ledger, checking, savings, goal_id = funded
        ledger.contribute(goal_id, 100, checking.id)
        self._corrupt(ledger, goal_id, "999")

        repaired = run(ledger.manager.emergency_resync(user_id=USER))
        again = run(ledger.manager.emergency_resync(user_id=USER))

        assert repaired.success and repaired.repaired
        assert ledger.goal(goal_id).current_amount == 100
        assert ledger.balance(savings.id) == 100
        assert again.success
        assert not again.drift_detected
        assert not again.repaired

    def test_realigns_savings_balance(self, funded):
        ledger, checking, savings, goal_id = funded
        ledger.contribute(goal_id, 100, checking.id)
        # Goal claims 300 and the account holds it, contributions say 100
        self._corrupt(ledger, goal_id, "300")
        run(ledger.store.adjust_account_balance(savings.id, Decimal("200")))

        report = run(ledger.manager.emergency_resync(user_id=USER))

        assert report.repaired
        assert ledger.goal(goal_id).current_amount == 100
        assert ledger.balance(savings.id) == 100
        assert plan(ledger).is_empty

    def test_busy_goal_blocks_resync(self, funded):
        ledger, _, _, goal_id = funded
        with ledger.engine.guard.claim(goal_id):
            report = run(ledger.manager.emergency_resync(user_id=USER))
        assert report.error_kind == LedgerErrorKind.CONCURRENT_OPERATION_IN_PROGRESS


class TestQueries:
    """Tests for goal listing and statistics."""

    def _goals(self, ledger):
        checking = ledger.account("Checking", AccountType.CHECKING, "5000")
        savings = ledger.account("Savings", AccountType.SAVINGS, "0")
        soon = ledger.create_goal(
            savings, name="Soon", target_amount=Decimal("1000"),
            target_date=date(2025, 3, 1), monthly_contribution=Decimal("100"),
        )
        later = ledger.create_goal(
            savings, name="Later", target_amount=Decimal("1000"),
            target_date=date(2025, 12, 31), monthly_contribution=Decimal("50"),
        )
        done = ledger.create_goal(
            savings, name="Done", target_amount=Decimal("2000"),
            target_date=date(2025, 2, 1), monthly_contribution=Decimal("500"),
        )
        ledger.contribute(soon, 250, checking.id)
        ledger.contribute(later, 250, checking.id)
        run(ledger.manager.mark_completed(done, user_id=USER))
        return soon, later, done

    def test_list_goals_active_first_by_date(self, ledger):
        soon, later, done = self._goals(ledger)

        every = run(ledger.manager.list_goals(user_id=USER))
        active = run(ledger.manager.list_goals(user_id=USER, include_completed=False))

        assert [g.id for g in every] == [soon, later, done]
        assert [g.id for g in active] == [soon, later]

    def test_get_goal_hides_other_users(self, ledger):
        soon, _, _ = self._goals(ledger)
        assert run(ledger.manager.get_goal(soon, user_id=USER)).name == "Soon"
        assert run(ledger.manager.get_goal(soon, user_id="intruder")) is None

    def test_savings_stats(self, ledger):
        soon, _, _ = self._goals(ledger)

        stats = run(ledger.manager.savings_stats(user_id=USER, today=TODAY))

        assert stats.total_saved == 500
        assert stats.total_goals == 3
        assert stats.completed_goals == 1
        assert stats.monthly_contributions == 150
        assert stats.progress_percentage == Decimal("12.50")
        assert [g.id for g in stats.upcoming_goals] == [soon]

    def test_stats_without_goals(self, ledger):
        stats = run(ledger.manager.savings_stats(user_id=USER, today=TODAY))
        assert stats.total_goals == 0
        assert stats.progress_percentage == 0
        assert stats.upcoming_goals == []


class TestLedgerInvariants:
    """The ledger stays consistent across a mixed sequence of operations."""

    def test_mixed_operations_keep_ledger_consistent(self, ledger):
        checking = ledger.account("Checking", AccountType.CHECKING, "3000")
        cash = ledger.account("Cash", AccountType.CASH, "800")
        savings = ledger.account("Savings", AccountType.SAVINGS, "400")
        total = ledger.total_balance()

        car = ledger.create_goal(savings, name="Car", initial_amount=Decimal("150"))
        trip = ledger.create_goal(savings, name="Trip", contribution_account_id=cash.id)
        ledger.contribute(car, 200, checking.id)
        refunded = ledger.contribute(car, 75, cash.id)
        ledger.contribute(trip, 120)
        ledger.contribute(trip, 9999, checking.id)
        run(ledger.engine.process_auto_contributions(user_id=USER, contribution_date=TODAY))
        run(ledger.engine.refund_contribution(refunded.contribution_id, user_id=USER))
        update(ledger, trip, {"name": "Road trip"})
        delete(ledger, car, with_refund=True)

        assert ledger.total_balance() == total
        assert plan(ledger).is_empty
        # The opening 150 of the deleted goal never left the savings account
        assert ledger.goal(trip).current_amount == 220
        assert ledger.balance(savings.id) == 400 + 220


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
