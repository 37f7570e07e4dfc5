"""
Aggregation API endpoints (daily totals, dashboard, rebuild)
"""
from datetime import date as date_type
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from fintrack.api.deps import get_cache, get_db, get_owner_id
from fintrack.application.dashboard import DashboardService
from fintrack.readmodels.daily_aggregations import AggregationRow, DailyAggregationEngine


router = APIRouter(prefix="/api/v1/aggregations", tags=["aggregations"])


class AggregationRowResponse(BaseModel):
    day: date_type
    category_id: int | None = None
    total_income: str
    total_expenses: str
    net_flow: str
    transaction_count: int


class RebuildResponse(BaseModel):
    rows_written: int


def _to_response(row: AggregationRow) -> AggregationRowResponse:
    return AggregationRowResponse(
        day=row.day,
        category_id=row.category_id,
        total_income=str(row.total_income),
        total_expenses=str(row.total_expenses),
        net_flow=str(row.net_flow),
        transaction_count=row.transaction_count,
    )


@router.get("", response_model=list[AggregationRowResponse])
def get_range(
    start: date_type,
    end: date_type,
    category_id: int | None = None,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Daily rows in [start, end], day ascending"""
    rows = DailyAggregationEngine(db, cache=cache).get_range(owner_id, start, end, category_id=category_id)
    return [_to_response(row) for row in rows]


@router.get("/totals", response_model=list[AggregationRowResponse])
def get_totals(
    start: date_type,
    end: date_type,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    rows = DailyAggregationEngine(db, cache=cache).get_totals(owner_id, start, end)
    return [_to_response(row) for row in rows]


@router.get("/dashboard")
def get_dashboard(
    timeframe: str = "month",
    today: date_type | None = None,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Current vs previous period for week / month / 6months / year"""
    return DashboardService(db, cache=cache).get_summary(owner_id, timeframe, today).to_dict()


@router.post("/rebuild", response_model=RebuildResponse)
def rebuild(
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Recompute every aggregation row of the owner from the ledger"""
    written = DailyAggregationEngine(db, cache=cache).rebuild_for_owner(owner_id)
    return RebuildResponse(rows_written=written)
