"""
Recurring income API endpoints
"""
from datetime import date as date_type
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from fintrack.api.deps import get_cache, get_db, get_owner_id
from fintrack.application.recurring_incomes import RecurringIncomeScheduler
from fintrack.infrastructure.db.models import RecurringIncome


router = APIRouter(prefix="/api/v1/recurring-incomes", tags=["recurring-incomes"])


# === Request models ===

class CreateRecurringIncomeRequest(BaseModel):
    account_id: int
    amount: str  # Decimal as string
    description: str = ""
    recurrence_type: str  # daily, weekly, biweekly, monthly, custom
    next_occurrence_date: date_type
    recurrence_interval: int = 1
    category_id: int | None = None


class UpdateRecurringIncomeRequest(BaseModel):
    account_id: int | None = None
    amount: str | None = None
    description: str | None = None
    recurrence_type: str | None = None
    next_occurrence_date: date_type | None = None
    recurrence_interval: int | None = None
    category_id: int | None = None


class ProcessRequest(BaseModel):
    as_of: date_type | None = None


class RecurringIncomeResponse(BaseModel):
    id: int
    account_id: int
    category_id: int | None = None
    amount: str
    description: str
    recurrence_type: str
    recurrence_interval: int
    next_occurrence_date: date_type
    last_posted_date: date_type | None = None
    is_active: bool


class ProcessSummaryResponse(BaseModel):
    processed: int
    skipped: int
    errors: int


def _to_response(item: RecurringIncome) -> RecurringIncomeResponse:
    return RecurringIncomeResponse(
        id=item.id,
        account_id=item.account_id,
        category_id=item.category_id,
        amount=str(item.amount),
        description=item.description,
        recurrence_type=item.recurrence_type,
        recurrence_interval=item.recurrence_interval,
        next_occurrence_date=item.next_occurrence_date,
        last_posted_date=item.last_posted_date,
        is_active=item.is_active,
    )


# === Endpoints ===

@router.get("", response_model=list[RecurringIncomeResponse])
def list_recurring_incomes(
    include_cancelled: bool = False,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    items = RecurringIncomeScheduler(db).list_for_owner(owner_id, include_cancelled=include_cancelled)
    return [_to_response(item) for item in items]


@router.post("", response_model=RecurringIncomeResponse, status_code=201)
def create_recurring_income(
    req: CreateRecurringIncomeRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    item = RecurringIncomeScheduler(db).create(
        owner_id=owner_id,
        account_id=req.account_id,
        amount=req.amount,
        description=req.description,
        recurrence_type=req.recurrence_type,
        next_occurrence_date=req.next_occurrence_date,
        recurrence_interval=req.recurrence_interval,
        category_id=req.category_id,
    )
    return _to_response(item)


@router.patch("/{item_id}", response_model=RecurringIncomeResponse)
def update_recurring_income(
    item_id: int,
    req: UpdateRecurringIncomeRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    changes = req.model_dump(exclude_unset=True)
    return _to_response(RecurringIncomeScheduler(db).update(owner_id, item_id, **changes))


@router.delete("/{item_id}", response_model=RecurringIncomeResponse)
def cancel_recurring_income(item_id: int, owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    """Cancel: the item stays for history but is never posted again"""
    return _to_response(RecurringIncomeScheduler(db).cancel(owner_id, item_id))


@router.post("/process", response_model=ProcessSummaryResponse)
def process_all_due(
    req: ProcessRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Post every due occurrence as of `as_of` (default: today)"""
    summary = RecurringIncomeScheduler(db, cache=cache).process_all_due(
        owner_id, req.as_of or date_type.today()
    )
    return ProcessSummaryResponse(**summary.to_dict())
