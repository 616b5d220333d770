"""Tests for the SQLite record store and audit storage."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from savings_ledger.ledger import plan_resync
from savings_ledger.models.audit import AuditEventBuilder, AuditEventType
from savings_ledger.models.ledger import (
    Account,
    AccountType,
    LedgerErrorKind,
    SavingsContribution,
    SavingsGoal,
    Transaction,
    TransactionType,
)
from savings_ledger.orchestrator import create_storage
from savings_ledger.services.storage import (
    ConnectionError,
    DuplicateError,
    NotFoundError,
    SQLiteAuditStorage,
    SQLiteDatabase,
    SQLiteRecordStore,
)

from tests.conftest import TODAY, USER, Ledger, make_settings, run


@pytest.fixture
def store(tmp_path):
    return SQLiteRecordStore(tmp_path / "ledger.db")


def make_account(account_type=AccountType.CHECKING, balance="100.10", user_id=USER):
    return Account(user_id=user_id, name="Main", type=account_type, balance=Decimal(balance))


def make_goal(savings_id, **fields):
    values = {
        "user_id": USER,
        "name": "Vacation",
        "target_amount": Decimal("1200"),
        "target_date": date(2025, 12, 31),
        "monthly_contribution": Decimal("100"),
        "savings_account_id": savings_id,
    }
    values.update(fields)
    return SavingsGoal(**values)


class TestSQLiteAccounts:
    """Tests for account persistence."""

    def test_round_trip_keeps_exact_decimal(self, store):
        account = make_account(balance="1234.5678")
        run(store.save_account(account))

        loaded = run(store.get_account(account.id))

        assert loaded == account
        assert loaded.balance == Decimal("1234.5678")

    def test_adjust_applies_delta(self, store):
        account = make_account(balance="100.10")
        run(store.save_account(account))

        run(store.adjust_account_balance(account.id, Decimal("-0.10")))
        updated = run(store.adjust_account_balance(account.id, Decimal("50")))

        assert updated.balance == Decimal("150.00")
        assert run(store.get_account(account.id)).balance == Decimal("150.00")

    def test_adjust_unknown_account(self, store):
        with pytest.raises(NotFoundError):
            run(store.adjust_account_balance(uuid4(), Decimal("1")))

    def test_duplicate_id(self, store):
        account = make_account()
        run(store.save_account(account))
        with pytest.raises(DuplicateError):
            run(store.save_account(account))

    def test_list_filters_by_user_and_type(self, store):
        checking = make_account()
        savings = make_account(AccountType.SAVINGS)
        foreign = make_account(user_id="someone-else")
        for account in (checking, savings, foreign):
            run(store.save_account(account))

        assert [a.id for a in run(store.list_accounts(USER))] == [checking.id, savings.id]
        assert [
            a.id for a in run(store.list_accounts(USER, AccountType.SAVINGS))
        ] == [savings.id]

    def test_unknown_account_is_none(self, store):
        assert run(store.get_account(uuid4())) is None

    def test_unreachable_location(self, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")
        database = SQLiteDatabase(blocker / "ledger.db")

        with pytest.raises(ConnectionError):
            database.init_schema()


class TestSQLiteGoals:
    """Tests for goal persistence."""

    def test_save_update_delete(self, store):
        goal = make_goal(uuid4(), contribution_account_id=uuid4())
        run(store.save_goal(goal))
        assert run(store.get_goal(goal.id)) == goal

        changed = goal.model_copy(update={"current_amount": Decimal("12.34"), "is_completed": True})
        run(store.update_goal(changed))
        loaded = run(store.get_goal(goal.id))
        assert loaded.current_amount == Decimal("12.34")
        assert loaded.is_completed is True

        assert run(store.delete_goal(goal.id)) is True
        assert run(store.delete_goal(goal.id)) is False
        assert run(store.get_goal(goal.id)) is None

    def test_update_unknown_goal(self, store):
        with pytest.raises(NotFoundError):
            run(store.update_goal(make_goal(uuid4())))

    def test_list_goals_in_insertion_order(self, store):
        savings_id = uuid4()
        goals = [make_goal(savings_id, name=name) for name in ("A", "B", "C")]
        for goal in goals:
            run(store.save_goal(goal))
        run(store.save_goal(make_goal(savings_id, user_id="someone-else")))

        assert [g.name for g in run(store.list_goals(USER))] == ["A", "B", "C"]


class TestSQLiteHistory:
    """Tests for contributions and transactions."""

    def test_contributions(self, store):
        goal_id = uuid4()
        opening = SavingsContribution(
            goal_id=goal_id, user_id=USER, amount=Decimal("10"), date=TODAY
        )
        regular = SavingsContribution(
            goal_id=goal_id, user_id=USER, amount=Decimal("20"), date=TODAY,
            from_account_id=uuid4(),
        )
        run(store.add_contribution(opening))
        run(store.add_contribution(regular))

        assert run(store.get_contribution(opening.id)).from_account_id is None
        assert [c.id for c in run(store.list_contributions(goal_id))] == [opening.id, regular.id]
        assert len(run(store.list_user_contributions(USER))) == 2

        assert run(store.delete_contribution(opening.id)) is True
        assert [c.id for c in run(store.list_contributions(goal_id))] == [regular.id]

    def test_transactions_filter_by_date(self, store):
        rows = [
            Transaction(
                user_id=USER,
                account_id=uuid4(),
                amount=Decimal("5"),
                type=TransactionType.TRANSFER,
                description=f"Savings: Trip {day}",
                date=date(2025, 1, day),
                parent_transaction_id=uuid4(),
            )
            for day in (1, 10, 20)
        ]
        for row in rows:
            run(store.add_transaction(row))

        window = run(store.list_transactions(
            USER, date_from=date(2025, 1, 5), date_to=date(2025, 1, 15)
        ))

        assert [t.id for t in window] == [rows[1].id]
        assert window[0].parent_transaction_id == rows[1].parent_transaction_id
        assert run(store.delete_transaction(rows[0].id)) is True
        assert len(run(store.list_transactions(USER))) == 2


class TestSQLiteAuditStorage:
    """Tests for the append-only audit table."""

    def test_events_by_correlation_and_entity(self, tmp_path):
        database = SQLiteDatabase(tmp_path / "ledger.db")
        audit = SQLiteAuditStorage(tmp_path / "ledger.db", database=database)
        correlation_id = uuid4()
        goal_id = uuid4()

        run(audit.append_event(AuditEventBuilder.goal_created(
            goal_id=goal_id,
            name="Vacation",
            target_amount=Decimal("1200"),
            user_id=USER,
            correlation_id=correlation_id,
        )))
        run(audit.append_event(AuditEventBuilder.goal_completed(
            goal_id=goal_id, user_id=USER, correlation_id=uuid4(),
        )))

        by_correlation = run(audit.get_events_by_correlation_id(correlation_id))
        by_entity = run(audit.get_events_by_entity("goal", goal_id))
        recent = run(audit.get_recent_events(limit=1))

        assert [e.event_type for e in by_correlation] == [AuditEventType.GOAL_CREATED]
        assert by_correlation[0].details["target_amount"] == "1200"
        assert len(by_entity) == 2
        assert [e.event_type for e in recent] == [AuditEventType.GOAL_COMPLETED]


class TestLedgerOnSQLite:
    """The ledger components over a real database file."""

    def test_contribute_and_delete_with_refund(self, tmp_path):
        store, _ = create_storage("sqlite", tmp_path / "data" / "ledger.db")
        ledger = Ledger(store, make_settings())
        checking = ledger.account("Checking", AccountType.CHECKING, "1000")
        savings = ledger.account("Savings", AccountType.SAVINGS, "0")
        goal_id = ledger.create_goal(savings)

        assert ledger.contribute(goal_id, Decimal("100.25"), checking.id).success
        assert ledger.contribute(goal_id, 5000, checking.id).error_kind == (
            LedgerErrorKind.INSUFFICIENT_BALANCE
        )
        assert ledger.balance(checking.id) == Decimal("899.75")
        assert ledger.goal(goal_id).current_amount == Decimal("100.25")

        result = run(ledger.manager.delete(
            goal_id, user_id=USER, with_refund=True, delete_transactions=True
        ))

        assert result.success
        assert ledger.balance(checking.id) == 1000
        assert ledger.balance(savings.id) == 0
        assert run(store.list_transactions(USER)) == []
        assert plan_resync(
            run(store.list_goals(USER)),
            run(store.list_user_contributions(USER)),
            run(store.list_accounts(USER)),
        ).is_empty
