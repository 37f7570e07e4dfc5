"""
Budget API endpoints
"""
from datetime import date as date_type
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from fintrack.api.deps import get_db, get_owner_id
from fintrack.application.budgets import BudgetTracker
from fintrack.infrastructure.db.models import Budget


router = APIRouter(prefix="/api/v1/budgets", tags=["budgets"])


# === Request models ===

class BudgetCategoryRequest(BaseModel):
    category_id: int
    allocated: str  # Decimal as string


class CreateBudgetRequest(BaseModel):
    name: str
    amount: str  # Decimal as string
    budget_type: str  # category / simple
    start_date: date_type
    end_date: date_type
    categories: list[BudgetCategoryRequest] = []
    is_recurring: bool = False
    recurrence_type: str | None = None
    recurrence_interval: int = 1


class BudgetCategoryResponse(BaseModel):
    category_id: int
    allocated: str
    spent: str


class BudgetResponse(BaseModel):
    id: int
    name: str
    amount: str
    budget_type: str
    start_date: date_type
    end_date: date_type
    spent: str
    is_recurring: bool
    recurrence_type: str | None = None
    recurrence_interval: int | None = None
    next_renewal_date: date_type | None = None
    categories: list[BudgetCategoryResponse]


def _to_response(tracker: BudgetTracker, budget: Budget) -> BudgetResponse:
    return BudgetResponse(
        id=budget.id,
        name=budget.name,
        amount=str(budget.amount),
        budget_type=budget.budget_type,
        start_date=budget.start_date,
        end_date=budget.end_date,
        spent=str(budget.spent),
        is_recurring=budget.is_recurring,
        recurrence_type=budget.recurrence_type,
        recurrence_interval=budget.recurrence_interval,
        next_renewal_date=budget.next_renewal_date,
        categories=[
            BudgetCategoryResponse(
                category_id=entry.category_id,
                allocated=str(entry.allocated),
                spent=str(entry.spent),
            )
            for entry in tracker.get_entries(budget.id)
        ],
    )


# === Endpoints ===

@router.get("", response_model=list[BudgetResponse])
def list_budgets(
    today: date_type | None = None,
    start: date_type | None = None,
    end: date_type | None = None,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """All budgets; `today` limits to current ones, `start`+`end` to overlapping ones"""
    tracker = BudgetTracker(db)
    if today is not None:
        budgets = tracker.get_current_budgets(owner_id, today)
    elif start is not None and end is not None:
        budgets = tracker.get_budgets_by_date_range(owner_id, start, end)
    else:
        budgets = tracker.list_budgets(owner_id)
    return [_to_response(tracker, b) for b in budgets]


@router.post("", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
def create_budget(
    req: CreateBudgetRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    tracker = BudgetTracker(db)
    budget = tracker.create_budget(
        owner_id=owner_id,
        name=req.name,
        amount=req.amount,
        budget_type=req.budget_type,
        start_date=req.start_date,
        end_date=req.end_date,
        categories=[c.model_dump() for c in req.categories],
        is_recurring=req.is_recurring,
        recurrence_type=req.recurrence_type,
        recurrence_interval=req.recurrence_interval,
    )
    return _to_response(tracker, budget)


@router.get("/{budget_id}", response_model=BudgetResponse)
def get_budget(budget_id: int, owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    """Budget with spent figures re-derived from the ledger"""
    tracker = BudgetTracker(db)
    tracker.get_budget(owner_id, budget_id)
    return _to_response(tracker, tracker.recompute_spent(budget_id))


@router.post("/{budget_id}/renew", response_model=BudgetResponse)
def renew_budget(
    budget_id: int,
    as_of: date_type | None = None,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    tracker = BudgetTracker(db)
    budget = tracker.get_budget(owner_id, budget_id)
    tracker.renew_recurring_budget(budget_id, as_of or date_type.today())
    return _to_response(tracker, budget)


@router.delete("/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_budget(budget_id: int, owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    BudgetTracker(db).delete_budget(owner_id, budget_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
