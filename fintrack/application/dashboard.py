"""
Dashboard summaries built from the daily aggregation read path

Never scans raw transactions: every figure comes from
DailyAggregationEngine.get_range / get_totals (optionally cached).
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from fintrack.domain.errors import ValidationError
from fintrack.domain.money import ZERO
from fintrack.domain.recurrence import add_months, last_day_of_month
from fintrack.infrastructure.db.models import Category
from fintrack.readmodels.daily_aggregations import AggregationRow, DailyAggregationEngine

TIMEFRAMES = ("week", "month", "6months", "year")


@dataclass(frozen=True)
class DateRanges:
    current_start: date
    current_end: date
    previous_start: date
    previous_end: date


def get_date_ranges(timeframe: str, today: date) -> DateRanges:
    """
    Current and previous period for a dashboard timeframe.

    week:    Sunday..Saturday containing today, and the week before
    month:   calendar month of today, and the month before
    6months: first day 6 months back .. end of this month, and the 6 months before
    year:    calendar year of today, and the year before
    """
    if timeframe == "week":
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        end = start + timedelta(days=6)
        return DateRanges(start, end, start - timedelta(days=7), end - timedelta(days=7))

    month_start = today.replace(day=1)
    month_end = today.replace(day=last_day_of_month(today.year, today.month))

    if timeframe == "month":
        previous_start = add_months(month_start, -1)
        return DateRanges(month_start, month_end, previous_start, month_start - timedelta(days=1))
    if timeframe == "6months":
        start = add_months(month_start, -6)
        return DateRanges(start, month_end, add_months(month_start, -12), start - timedelta(days=1))
    if timeframe == "year":
        return DateRanges(
            date(today.year, 1, 1), date(today.year, 12, 31),
            date(today.year - 1, 1, 1), date(today.year - 1, 12, 31),
        )
    raise ValidationError(f"Unknown timeframe {timeframe!r}, expected one of: {', '.join(TIMEFRAMES)}")


@dataclass
class PeriodTotals:
    income: Decimal = ZERO
    expenses: Decimal = ZERO
    transaction_count: int = 0

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses

    def to_dict(self) -> dict:
        return {
            "income": str(self.income),
            "expenses": str(self.expenses),
            "net": str(self.net),
            "transaction_count": self.transaction_count,
        }


def _sum_rows(rows: list[AggregationRow]) -> PeriodTotals:
    totals = PeriodTotals()
    for row in rows:
        totals.income += row.total_income
        totals.expenses += row.total_expenses
        totals.transaction_count += row.transaction_count
    return totals


@dataclass
class DashboardSummary:
    timeframe: str
    ranges: DateRanges
    current: PeriodTotals
    previous: PeriodTotals
    expenses_by_category: list[dict] = field(default_factory=list)
    daily: list[AggregationRow] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "timeframe": self.timeframe,
            "current_start": self.ranges.current_start.isoformat(),
            "current_end": self.ranges.current_end.isoformat(),
            "previous_start": self.ranges.previous_start.isoformat(),
            "previous_end": self.ranges.previous_end.isoformat(),
            "current": self.current.to_dict(),
            "previous": self.previous.to_dict(),
            "expenses_by_category": self.expenses_by_category,
            "daily": [row.to_dict() for row in self.daily],
        }


class DashboardService:
    def __init__(self, db: Session, cache=None):
        self.db = db
        self.aggregations = DailyAggregationEngine(db, cache=cache)

    def get_summary(self, owner_id: int, timeframe: str = "month", today: Optional[date] = None) -> DashboardSummary:
        ranges = get_date_ranges(timeframe, today or date.today())

        current_days = self.aggregations.get_totals(owner_id, ranges.current_start, ranges.current_end)
        previous_days = self.aggregations.get_totals(owner_id, ranges.previous_start, ranges.previous_end)
        rows = self.aggregations.get_range(owner_id, ranges.current_start, ranges.current_end)

        by_category: dict[int, Decimal] = {}
        for row in rows:
            if row.category_id is None or not row.total_expenses:
                continue
            by_category[row.category_id] = by_category.get(row.category_id, ZERO) + row.total_expenses

        names = {}
        if by_category:
            for category in self.db.query(Category).filter(Category.id.in_(list(by_category))).all():
                names[category.id] = (category.name, category.main_category)

        breakdown = [
            {
                "category_id": category_id,
                "name": names.get(category_id, ("", ""))[0],
                "main_category": names.get(category_id, ("", ""))[1],
                "total": str(total),
            }
            for category_id, total in sorted(by_category.items(), key=lambda kv: (-kv[1], kv[0]))
        ]

        return DashboardSummary(
            timeframe=timeframe,
            ranges=ranges,
            current=_sum_rows(current_days),
            previous=_sum_rows(previous_days),
            expenses_by_category=breakdown,
            daily=current_days,
        )
