"""
Account API endpoints
"""
from datetime import datetime
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from fintrack.api.deps import get_cache, get_db, get_owner_id
from fintrack.application.accounts import AccountService
from fintrack.application.transactions import TransactionService
from fintrack.api.v1.transactions import TransactionResponse, to_transaction_response
from fintrack.infrastructure.db.models import Account, RecurringIncome


router = APIRouter(prefix="/api/v1/accounts", tags=["accounts"])


# === Request models ===

class CreateAccountRequest(BaseModel):
    name: str
    account_type: str  # Checking, Savings, Cash, Card
    currency: str | None = None
    initial_balance: str = "0"  # Decimal as string


class UpdateAccountRequest(BaseModel):
    name: str | None = None
    account_type: str | None = None


class AccountResponse(BaseModel):
    id: int
    name: str
    account_type: str
    currency: str
    balance: str
    initial_balance: str
    created_at: datetime


class RecurringIncomeSummary(BaseModel):
    id: int
    amount: str
    description: str
    recurrence_type: str
    next_occurrence_date: str


class AccountViewResponse(AccountResponse):
    recurring_incomes: list[RecurringIncomeSummary]


class BalanceReportResponse(BaseModel):
    account_id: int
    stored: str
    derived: str
    consistent: bool


def to_account_response(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        name=account.name,
        account_type=account.account_type,
        currency=account.currency,
        balance=str(account.balance),
        initial_balance=str(account.initial_balance),
        created_at=account.created_at,
    )


def _income_summary(item: RecurringIncome) -> RecurringIncomeSummary:
    return RecurringIncomeSummary(
        id=item.id,
        amount=str(item.amount),
        description=item.description,
        recurrence_type=item.recurrence_type,
        next_occurrence_date=item.next_occurrence_date.isoformat(),
    )


# === Endpoints ===

@router.get("", response_model=list[AccountResponse])
def list_accounts(owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    return [to_account_response(a) for a in AccountService(db).list_accounts(owner_id)]


@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    req: CreateAccountRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """Create an account; balance starts at initial_balance"""
    account = AccountService(db).create_account(
        owner_id=owner_id,
        name=req.name,
        account_type=req.account_type,
        currency=req.currency,
        initial_balance=req.initial_balance,
    )
    return to_account_response(account)


@router.get("/{account_id}", response_model=AccountViewResponse)
def get_account(account_id: int, owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    """Account with its active recurring incomes"""
    view = AccountService(db).get_account_view(owner_id, account_id)
    base = to_account_response(view.account)
    return AccountViewResponse(
        **base.model_dump(),
        recurring_incomes=[_income_summary(item) for item in view.recurring_incomes],
    )


@router.patch("/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: int,
    req: UpdateAccountRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    account = AccountService(db).update_account(
        owner_id, account_id, name=req.name, account_type=req.account_type
    )
    return to_account_response(account)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    account_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Delete the account with its transactions and recurring incomes"""
    AccountService(db, cache=cache).delete_account(owner_id, account_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{account_id}/transactions", response_model=list[TransactionResponse])
def list_account_transactions(
    account_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    transactions = TransactionService(db).list_by_account(owner_id, account_id)
    return [to_transaction_response(tx) for tx in transactions]


@router.post("/{account_id}/reconcile", response_model=BalanceReportResponse)
def reconcile_account(
    account_id: int,
    repair: bool = False,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """Compare stored balance with initial_balance + sum(transactions)"""
    report = AccountService(db).reconcile_balance(owner_id, account_id, repair=repair)
    return BalanceReportResponse(
        account_id=report.account_id,
        stored=str(report.stored),
        derived=str(report.derived),
        consistent=report.consistent,
    )
