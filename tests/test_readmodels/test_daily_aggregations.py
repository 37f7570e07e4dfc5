"""
Tests for DailyAggregationEngine: incremental maintenance vs full rebuild
"""
import pytest
from datetime import date
from decimal import Decimal

from fintrack.application.accounts import AccountService
from fintrack.application.categories import CategoryService
from fintrack.application.transactions import TransactionService
from fintrack.domain.errors import ValidationError
from fintrack.infrastructure.db.models import DailyAggregation
from fintrack.infrastructure.db.store import RecordStore
from fintrack.readmodels.daily_aggregations import DailyAggregationEngine, split_amount


def _snapshot(db_session, owner_id):
    rows = (
        db_session.query(DailyAggregation)
        .filter(DailyAggregation.owner_id == owner_id)
        .all()
    )
    return sorted(
        (
            row.day,
            row.category_id or 0,
            Decimal(row.total_income),
            Decimal(row.total_expenses),
            Decimal(row.net_flow),
            row.transaction_count,
        )
        for row in rows
    )


@pytest.fixture
def ledger(db_session, owner_id):
    accounts = AccountService(db_session)
    main = accounts.create_account(owner_id, "Main", "Checking", initial_balance="1000")
    savings = accounts.create_account(owner_id, "Savings", "Savings")
    categories = CategoryService(db_session)
    food = categories.create_category(owner_id, "Food", "Needs")
    salary = categories.create_category(owner_id, "Salary", "Income")
    service = TransactionService(db_session)

    service.post_transaction(owner_id=owner_id, account_id=main.id, amount="3000",
                             transaction_type="income", date=date(2024, 1, 1), category_id=salary.id)
    service.post_transaction(owner_id=owner_id, account_id=main.id, amount="25.50",
                             transaction_type="expense", date=date(2024, 1, 1), category_id=food.id)
    service.post_transaction(owner_id=owner_id, account_id=main.id, amount="14.50",
                             transaction_type="expense", date=date(2024, 1, 1), category_id=food.id)
    service.post_transaction(owner_id=owner_id, account_id=main.id, amount="80",
                             transaction_type="expense", date=date(2024, 1, 3))
    service.post_transfer(owner_id, main.id, savings.id, "200", date(2024, 1, 2))
    return {"main": main, "food": food, "salary": salary}


def test_split_amount():
    assert split_amount(Decimal("10.00")) == (Decimal("10.00"), Decimal("0.00"))
    assert split_amount(Decimal("-4.20")) == (Decimal("0.00"), Decimal("4.20"))


def test_incremental_rows(db_session, owner_id, ledger):
    rows = DailyAggregationEngine(db_session).get_range(owner_id, date(2024, 1, 1), date(2024, 1, 31))

    assert [(r.day, r.category_id) for r in rows] == [
        (date(2024, 1, 1), None),
        (date(2024, 1, 1), ledger["food"].id),
        (date(2024, 1, 1), ledger["salary"].id),
        (date(2024, 1, 3), None),
    ]
    all_day = rows[0]
    assert all_day.total_income == Decimal("3000")
    assert all_day.total_expenses == Decimal("40")
    assert all_day.net_flow == Decimal("2960")
    assert all_day.transaction_count == 3
    food = rows[1]
    assert (food.total_expenses, food.transaction_count) == (Decimal("40"), 2)


def test_transfers_are_not_aggregated(db_session, owner_id, ledger):
    rows = DailyAggregationEngine(db_session).get_range(owner_id, date(2024, 1, 2), date(2024, 1, 2))
    assert rows == []


def test_rebuild_matches_incremental(db_session, owner_id, ledger):
    incremental = _snapshot(db_session, owner_id)

    written = DailyAggregationEngine(db_session).rebuild_for_owner(owner_id)

    assert written == len(incremental)
    assert _snapshot(db_session, owner_id) == incremental


def test_rebuild_is_idempotent(db_session, owner_id, ledger):
    engine = DailyAggregationEngine(db_session)
    engine.rebuild_for_owner(owner_id)
    first = _snapshot(db_session, owner_id)
    engine.rebuild_for_owner(owner_id)
    assert _snapshot(db_session, owner_id) == first


def test_rebuild_repairs_drift(db_session, owner_id, ledger):
    row = db_session.query(DailyAggregation).filter(DailyAggregation.category_id.is_(None)).first()
    expected = _snapshot(db_session, owner_id)
    row.total_income = Decimal("1")
    row.transaction_count = 42
    db_session.commit()

    DailyAggregationEngine(db_session).rebuild_for_owner(owner_id)

    assert _snapshot(db_session, owner_id) == expected


def test_rebuild_after_edit_and_delete(db_session, owner_id, ledger):
    service = TransactionService(db_session)
    txs = service.list_by_owner(owner_id)
    expense = next(tx for tx in txs if tx.amount == Decimal("-80"))
    service.edit_transaction(owner_id, expense.id, date=date(2024, 1, 5))
    income = next(tx for tx in txs if tx.amount == Decimal("3000"))
    service.delete_transaction(owner_id, income.id)

    rows = DailyAggregationEngine(db_session).get_totals(owner_id, date(2024, 1, 1), date(2024, 1, 31))

    assert [(r.day, r.total_income, r.total_expenses) for r in rows] == [
        (date(2024, 1, 1), Decimal("0"), Decimal("40")),
        (date(2024, 1, 5), Decimal("0"), Decimal("80")),
    ]


def test_category_filter_and_totals(db_session, owner_id, ledger):
    engine = DailyAggregationEngine(db_session)

    food_rows = engine.get_range(owner_id, date(2024, 1, 1), date(2024, 1, 31), category_id=ledger["food"].id)
    totals = engine.get_totals(owner_id, date(2024, 1, 1), date(2024, 1, 31))

    assert [r.category_id for r in food_rows] == [ledger["food"].id]
    assert [r.category_id for r in totals] == [None, None]


def test_range_is_owner_scoped(db_session, other_owner_id, ledger):
    assert DailyAggregationEngine(db_session).get_range(other_owner_id, date(2024, 1, 1), date(2024, 12, 31)) == []


def test_range_validation(db_session, owner_id):
    engine = DailyAggregationEngine(db_session)
    with pytest.raises(ValidationError):
        engine.get_range(owner_id, date(2024, 2, 1), date(2024, 1, 1))
    with pytest.raises(ValidationError):
        engine.get_totals(owner_id, date(2024, 2, 1), date(2024, 1, 1))


def test_to_dict(db_session, owner_id, ledger):
    row = DailyAggregationEngine(db_session).get_totals(owner_id, date(2024, 1, 3), date(2024, 1, 3))[0]
    assert row.to_dict() == {
        "day": "2024-01-03",
        "category_id": None,
        "total_income": "0.00",
        "total_expenses": "80.00",
        "net_flow": "-80.00",
        "transaction_count": 1,
    }


def test_all_categories_row_is_unique_per_day(db_session, owner_id):
    """The totals row (category_id NULL) is created once, whatever the number of inserts"""
    store = RecordStore(db_session)
    row = dict(owner_id=owner_id, day=date(2024, 1, 1), category_id=None, category_key=0)

    assert store.insert_if_absent(DailyAggregation, ["owner_id", "day", "category_key"], **row) == 1
    assert store.insert_if_absent(DailyAggregation, ["owner_id", "day", "category_key"], **row) == 0
    assert db_session.query(DailyAggregation).count() == 1
