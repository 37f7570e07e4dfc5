"""
Tests for the recurring income scheduler: due detection, idempotent posting, catch-up
"""
import pytest
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import sessionmaker

from fintrack.application.accounts import AccountService
from fintrack.application.recurring_incomes import RecurringIncomeScheduler, source_key_for
from fintrack.config import get_settings
from fintrack.domain.errors import ConflictError, NotFoundError, ValidationError
from fintrack.infrastructure.db.models import Account, RecurringIncome, Transaction


def _account(db, owner_id, balance="0"):
    return AccountService(db).create_account(owner_id, "Main", "Checking", initial_balance=balance)


def _balance(db, account_id):
    db.expire_all()
    return db.get(Account, account_id).balance


def test_monthly_salary_scenario(db_session, owner_id):
    """$2,000 monthly due 2024-01-01, processed on 2024-01-05: one posting, next 2024-02-01"""
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    item = scheduler.create(owner_id, account.id, "2000", "Salary", "monthly", date(2024, 1, 1))

    summary = scheduler.process_all_due(owner_id, date(2024, 1, 5))

    assert (summary.processed, summary.skipped, summary.errors) == (1, 0, 0)
    db_session.expire_all()
    item = db_session.get(RecurringIncome, item.id)
    assert item.next_occurrence_date == date(2024, 2, 1)
    assert item.last_posted_date == date(2024, 1, 1)
    tx = db_session.query(Transaction).one()
    assert tx.amount == Decimal("2000")
    assert tx.transaction_type == "income"
    assert tx.date == date(2024, 1, 1)
    assert tx.source_key == source_key_for(item.id, date(2024, 1, 1))
    assert _balance(db_session, account.id) == Decimal("2000")

    again = scheduler.process_all_due(owner_id, date(2024, 1, 5))

    assert again.processed == 0
    assert db_session.query(Transaction).count() == 1
    assert _balance(db_session, account.id) == Decimal("2000")


def test_missed_occurrences_are_caught_up(db_session, owner_id):
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    item = scheduler.create(owner_id, account.id, "100", "Side gig", "weekly", date(2024, 1, 1))

    summary = scheduler.process_all_due(owner_id, date(2024, 1, 29))

    assert summary.processed == 5
    dates = sorted(t.date.day for t in db_session.query(Transaction).all())
    assert dates == [1, 8, 15, 22, 29]
    db_session.expire_all()
    assert db_session.get(RecurringIncome, item.id).next_occurrence_date == date(2024, 2, 5)
    assert _balance(db_session, account.id) == Decimal("500")


def test_catch_up_is_bounded(db_session, owner_id, monkeypatch):
    monkeypatch.setattr(get_settings(), "RECURRENCE_MAX_CATCH_UP", 2)
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    scheduler.create(owner_id, account.id, "1", "Daily", "daily", date(2024, 1, 1))

    assert scheduler.process_all_due(owner_id, date(2024, 1, 10)).processed == 2
    assert scheduler.process_all_due(owner_id, date(2024, 1, 10)).processed == 2
    assert db_session.query(Transaction).count() == 4


def test_custom_interval(db_session, owner_id):
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    item = scheduler.create(
        owner_id, account.id, "900", "Quarterly dividend", "custom", date(2024, 1, 15),
        recurrence_interval=3,
    )
    scheduler.process_due(item.id, date(2024, 1, 15))
    db_session.expire_all()
    assert db_session.get(RecurringIncome, item.id).next_occurrence_date == date(2024, 4, 15)


def test_is_due(db_session, owner_id):
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    item = scheduler.create(owner_id, account.id, "10", "x", "daily", date(2024, 1, 5))
    assert not scheduler.is_due(item, date(2024, 1, 4))
    assert scheduler.is_due(item, date(2024, 1, 5))
    scheduler.cancel(owner_id, item.id)
    assert not scheduler.is_due(item, date(2024, 1, 5))


def test_process_due_errors(db_session, owner_id):
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    item = scheduler.create(owner_id, account.id, "10", "x", "daily", date(2024, 1, 5))

    with pytest.raises(ValidationError, match="not due"):
        scheduler.process_due(item.id, date(2024, 1, 4))
    with pytest.raises(NotFoundError):
        scheduler.process_due(9999, date(2024, 1, 4))


def test_cancelled_item_is_never_posted(db_session, owner_id):
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    item = scheduler.create(owner_id, account.id, "10", "x", "daily", date(2024, 1, 1))
    scheduler.cancel(owner_id, item.id)

    assert scheduler.process_all_due(owner_id, date(2024, 2, 1)).processed == 0
    assert db_session.query(Transaction).count() == 0


def test_concurrent_run_loses_with_conflict(file_engine, owner_id):
    """A second runner holding a stale view of the item posts nothing"""
    SessionLocal = sessionmaker(bind=file_engine, autoflush=False)
    first, second = SessionLocal(), SessionLocal()
    try:
        account = _account(first, owner_id)
        item = RecurringIncomeScheduler(first).create(
            owner_id, account.id, "2000", "Salary", "monthly", date(2024, 1, 1)
        )
        stale_runner = RecurringIncomeScheduler(second)
        held = second.get(RecurringIncome, item.id)
        assert stale_runner.is_due(held, date(2024, 1, 5))

        RecurringIncomeScheduler(first).process_due(item.id, date(2024, 1, 5))

        with pytest.raises(ConflictError):
            stale_runner.process_due(item.id, date(2024, 1, 5))

        assert first.query(Transaction).count() == 1
        assert _balance(first, account.id) == Decimal("2000")
    finally:
        first.close()
        second.close()


def test_failing_item_does_not_stop_others(db_session, owner_id):
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    broken = scheduler.create(owner_id, account.id, "10", "broken", "daily", date(2024, 1, 1))
    healthy = scheduler.create(owner_id, account.id, "20", "healthy", "monthly", date(2024, 1, 1))

    # account reference lost outside the scheduler
    db_session.get(RecurringIncome, broken.id).account_id = 999
    db_session.commit()

    summary = scheduler.process_all_due(owner_id, date(2024, 1, 1))

    assert (summary.processed, summary.errors) == (1, 1)
    txs = db_session.query(Transaction).all()
    assert [t.amount for t in txs] == [Decimal("20")]
    db_session.expire_all()
    assert db_session.get(RecurringIncome, broken.id).next_occurrence_date == date(2024, 1, 1)
    assert db_session.get(RecurringIncome, healthy.id).next_occurrence_date == date(2024, 2, 1)


def test_create_validation(db_session, owner_id, other_owner_id):
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    with pytest.raises(ValidationError):
        scheduler.create(owner_id, account.id, "0", "x", "monthly", date(2024, 1, 1))
    with pytest.raises(ValidationError, match="Unknown recurrence type"):
        scheduler.create(owner_id, account.id, "10", "x", "yearly", date(2024, 1, 1))
    with pytest.raises(ValidationError, match="interval"):
        scheduler.create(owner_id, account.id, "10", "x", "custom", date(2024, 1, 1), recurrence_interval=0)
    with pytest.raises(ValidationError, match="Account"):
        scheduler.create(other_owner_id, account.id, "10", "x", "monthly", date(2024, 1, 1))


def test_update_cannot_move_before_last_posting(db_session, owner_id):
    account = _account(db_session, owner_id)
    scheduler = RecurringIncomeScheduler(db_session)
    item = scheduler.create(owner_id, account.id, "10", "x", "monthly", date(2024, 1, 1))
    scheduler.process_due(item.id, date(2024, 1, 1))

    with pytest.raises(ValidationError, match="after the last posted"):
        scheduler.update(owner_id, item.id, next_occurrence_date=date(2024, 1, 1))

    updated = scheduler.update(owner_id, item.id, amount="15", recurrence_type="weekly")
    assert updated.amount == Decimal("15")
    assert updated.recurrence_type == "weekly"
    assert updated.next_occurrence_date == date(2024, 2, 1)
