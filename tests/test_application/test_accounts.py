"""
Tests for account use cases: creation rules, cascading delete, reconciliation
"""
import pytest
from datetime import date
from decimal import Decimal

from fintrack.application.accounts import AccountService
from fintrack.application.recurring_incomes import RecurringIncomeScheduler
from fintrack.application.transactions import TransactionService
from fintrack.domain.errors import NotFoundError, ValidationError
from fintrack.infrastructure.db.models import Account, DailyAggregation, RecurringIncome, Transaction

D = date(2024, 5, 2)


def test_create_account_defaults(db_session, owner_id):
    account = AccountService(db_session).create_account(owner_id, "  Main  ", "Checking")
    assert account.name == "Main"
    assert account.currency == "USD"
    assert account.balance == Decimal("0")
    assert account.initial_balance == Decimal("0")


def test_create_account_balance_starts_at_initial(db_session, owner_id):
    account = AccountService(db_session).create_account(
        owner_id, "Wallet", "Cash", currency="eur", initial_balance="120,50"
    )
    assert account.currency == "EUR"
    assert account.balance == Decimal("120.50")


@pytest.mark.parametrize("kwargs,message", [
    ({"name": "", "account_type": "Checking"}, "name is required"),
    ({"name": "X", "account_type": "Loan"}, "Unknown account type"),
    ({"name": "X", "account_type": "Cash", "currency": "US"}, "Invalid currency"),
    ({"name": "X", "account_type": "Card", "initial_balance": "10"}, "card account"),
    ({"name": "X", "account_type": "Savings", "initial_balance": "-10"}, "savings account"),
])
def test_create_account_validation(db_session, owner_id, kwargs, message):
    with pytest.raises(ValidationError, match=message):
        AccountService(db_session).create_account(owner_id, **kwargs)


def test_get_account_of_other_owner(db_session, owner_id, other_owner_id):
    account = AccountService(db_session).create_account(owner_id, "Main", "Checking")
    with pytest.raises(NotFoundError):
        AccountService(db_session).get_account(other_owner_id, account.id)


def test_update_account_does_not_touch_balance(db_session, owner_id):
    service = AccountService(db_session)
    account = service.create_account(owner_id, "Main", "Checking", initial_balance="10")
    service.update_account(owner_id, account.id, name="Daily", account_type="Cash")
    db_session.expire_all()
    account = db_session.get(Account, account.id)
    assert (account.name, account.account_type, account.balance) == ("Daily", "Cash", Decimal("10"))


def test_delete_account_cascades(db_session, owner_id):
    accounts = AccountService(db_session)
    main = accounts.create_account(owner_id, "Main", "Checking", initial_balance="1000")
    savings = accounts.create_account(owner_id, "Savings", "Savings", initial_balance="0")
    ledger = TransactionService(db_session)
    ledger.post_transaction(
        owner_id=owner_id, account_id=main.id, amount="100",
        transaction_type="expense", date=D,
    )
    ledger.post_transaction(
        owner_id=owner_id, account_id=savings.id, amount="5",
        transaction_type="income", date=D,
    )
    ledger.post_transfer(owner_id, main.id, savings.id, "300", D)
    RecurringIncomeScheduler(db_session).create(
        owner_id, main.id, "2000", "Salary", "monthly", date(2024, 6, 1)
    )

    accounts.delete_account(owner_id, main.id)

    assert db_session.query(Account).filter(Account.id == main.id).count() == 0
    assert db_session.query(RecurringIncome).count() == 0
    remaining = db_session.query(Transaction).all()
    assert [(t.account_id, t.amount) for t in remaining] == [(savings.id, Decimal("5"))]
    db_session.expire_all()
    assert db_session.get(Account, savings.id).balance == Decimal("5")
    totals = db_session.query(DailyAggregation).filter(DailyAggregation.category_id.is_(None)).all()
    assert [(t.total_income, t.total_expenses) for t in totals] == [(Decimal("5"), Decimal("0"))]


def test_reconcile_detects_and_repairs_drift(db_session, owner_id):
    accounts = AccountService(db_session)
    account = accounts.create_account(owner_id, "Main", "Checking", initial_balance="100")
    TransactionService(db_session).post_transaction(
        owner_id=owner_id, account_id=account.id, amount="30",
        transaction_type="expense", date=D,
    )
    assert accounts.reconcile_balance(owner_id, account.id).consistent

    # simulate a write that bypassed the ledger
    db_session.get(Account, account.id).balance = Decimal("999")
    db_session.commit()

    report = accounts.reconcile_balance(owner_id, account.id)
    assert not report.consistent
    assert report.derived == Decimal("70")

    repaired = accounts.reconcile_balance(owner_id, account.id, repair=True)
    assert repaired.stored == Decimal("999")
    db_session.expire_all()
    assert db_session.get(Account, account.id).balance == Decimal("70")


def test_account_view_derives_recurring_incomes(db_session, owner_id):
    accounts = AccountService(db_session)
    account = accounts.create_account(owner_id, "Main", "Checking")
    scheduler = RecurringIncomeScheduler(db_session)
    salary = scheduler.create(owner_id, account.id, "2000", "Salary", "monthly", date(2024, 6, 1))
    bonus = scheduler.create(owner_id, account.id, "100", "Bonus", "weekly", date(2024, 6, 3))
    scheduler.cancel(owner_id, bonus.id)

    view = accounts.get_account_view(owner_id, account.id)

    assert view.account.id == account.id
    assert [item.id for item in view.recurring_incomes] == [salary.id]
