"""
DailyAggregationEngine - maintains the daily_aggregations read model

Two maintenance strategies with the same steady state:
- apply_transaction_delta: O(1) per freshly inserted transaction
- rebuild_for_owner: drop the owner's rows and recompute from the ledger

get_range is the only read path for dashboards and reports.

Transfer legs are not aggregated: they move money between the owner's own
accounts and would otherwise show up as both income and expense.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from fintrack.domain.errors import ValidationError
from fintrack.domain.money import ZERO
from fintrack.domain.transaction import TransactionType
from fintrack.infrastructure.db.models import DailyAggregation, Transaction
from fintrack.infrastructure.db.store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationRow:
    """Immutable snapshot of one daily_aggregations row"""
    owner_id: int
    day: date
    category_id: Optional[int]
    total_income: Decimal
    total_expenses: Decimal
    net_flow: Decimal
    transaction_count: int

    @classmethod
    def from_model(cls, row: DailyAggregation) -> "AggregationRow":
        return cls(
            owner_id=row.owner_id,
            day=row.day,
            category_id=row.category_id,
            total_income=Decimal(row.total_income),
            total_expenses=Decimal(row.total_expenses),
            net_flow=Decimal(row.net_flow),
            transaction_count=row.transaction_count,
        )

    def to_dict(self) -> dict:
        return {
            "day": self.day.isoformat(),
            "category_id": self.category_id,
            "total_income": str(self.total_income),
            "total_expenses": str(self.total_expenses),
            "net_flow": str(self.net_flow),
            "transaction_count": self.transaction_count,
        }


def split_amount(amount: Decimal) -> tuple[Decimal, Decimal]:
    """Signed ledger amount -> (income, expenses), both non-negative."""
    if amount > 0:
        return amount, ZERO
    return ZERO, -amount


@dataclass
class _Totals:
    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO
    transaction_count: int = 0

    def add(self, amount: Decimal) -> None:
        income, expenses = split_amount(amount)
        self.total_income += income
        self.total_expenses += expenses
        self.transaction_count += 1

    @property
    def net_flow(self) -> Decimal:
        return self.total_income - self.total_expenses


def category_key(category_id: Optional[int]) -> int:
    """Non-null form of category_id used in the unique key (0 = all categories)."""
    return category_id if category_id is not None else 0


def _is_aggregated(tx: Transaction) -> bool:
    return tx.transaction_type != TransactionType.TRANSFER.value


class DailyAggregationEngine:
    """
    Owner of DailyAggregation rows

    Args:
        db: SQLAlchemy session
        cache: optional AggregationCache placed in front of get_range;
            invalidated on every rebuild
    """

    def __init__(self, db: Session, cache=None):
        self.db = db
        self.store = RecordStore(db)
        self.cache = cache

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def apply_transaction_delta(self, tx: Transaction) -> None:
        """
        Add a freshly inserted transaction to its (day, category) and
        (day, all) rows, creating them on first use.

        Both steps are single SQL statements (insert-if-absent, then
        `col = col + delta`), so concurrent posts to the same key all count.
        Joins the caller's atomic batch and never commits. Must not be used
        for edits or deletes (the old contribution is unknown here).
        """
        if not _is_aggregated(tx):
            return

        income, expenses = split_amount(Decimal(tx.amount))
        keys = [None]
        if tx.category_id is not None:
            keys.append(tx.category_id)

        for category_id in keys:
            key = category_key(category_id)
            self.store.insert_if_absent(
                DailyAggregation,
                ["owner_id", "day", "category_key"],
                owner_id=tx.owner_id,
                day=tx.date,
                category_id=category_id,
                category_key=key,
                total_income=ZERO,
                total_expenses=ZERO,
                net_flow=ZERO,
                transaction_count=0,
            )
            self.store.increment_where(
                DailyAggregation,
                [
                    DailyAggregation.owner_id == tx.owner_id,
                    DailyAggregation.day == tx.date,
                    DailyAggregation.category_key == key,
                ],
                total_income=income,
                total_expenses=expenses,
                net_flow=income - expenses,
                transaction_count=1,
            )

    def rebuild_for_owner(self, owner_id: int) -> int:
        """
        Replace every aggregation row of the owner with totals recomputed
        from the full transaction history.

        Returns:
            Number of rows written
        """
        groups: dict[tuple[date, Optional[int]], _Totals] = defaultdict(_Totals)

        with self.store.atomic():
            removed = self.store.delete_where(
                DailyAggregation, DailyAggregation.owner_id == owner_id
            )
            transactions = self.store.query(
                Transaction,
                Transaction.owner_id == owner_id,
                Transaction.transaction_type != TransactionType.TRANSFER.value,
            )
            for tx in transactions:
                amount = Decimal(tx.amount)
                groups[(tx.date, None)].add(amount)
                if tx.category_id is not None:
                    groups[(tx.date, tx.category_id)].add(amount)

            for (day, category_id), totals in groups.items():
                self.db.add(DailyAggregation(
                    owner_id=owner_id,
                    day=day,
                    category_id=category_id,
                    category_key=category_key(category_id),
                    total_income=totals.total_income,
                    total_expenses=totals.total_expenses,
                    net_flow=totals.net_flow,
                    transaction_count=totals.transaction_count,
                ))
            self.db.flush()

        self.invalidate(owner_id)
        logger.info(
            f"Rebuilt daily aggregations for owner {owner_id}: "
            f"{len(transactions)} transactions, {removed} rows removed, {len(groups)} rows written"
        )
        return len(groups)

    def invalidate(self, owner_id: int) -> None:
        if self.cache is not None:
            self.cache.invalidate(owner_id)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_range(
        self,
        owner_id: int,
        start: date,
        end: date,
        category_id: Optional[int] = None,
    ) -> list[AggregationRow]:
        """
        Aggregation rows with start <= day <= end, day ascending.

        Without category_id both the all-categories rows and the
        per-category rows are returned (all-categories row first within a day).
        """
        if start > end:
            raise ValidationError("start must be <= end")
        if self.cache is None:
            return self._load_range(owner_id, start, end, category_id)
        key = ("range", owner_id, start, end, category_id)
        return self.cache.get_or_load(
            key, lambda: self._load_range(owner_id, start, end, category_id)
        )

    def get_totals(self, owner_id: int, start: date, end: date) -> list[AggregationRow]:
        """Only the all-categories rows of the range."""
        if start > end:
            raise ValidationError("start must be <= end")
        if self.cache is None:
            return self._load_totals(owner_id, start, end)
        key = ("totals", owner_id, start, end, None)
        return self.cache.get_or_load(key, lambda: self._load_totals(owner_id, start, end))

    def _base_query(self, owner_id: int, start: date, end: date):
        return (
            self.db.query(DailyAggregation)
            .filter(
                DailyAggregation.owner_id == owner_id,
                DailyAggregation.day >= start,
                DailyAggregation.day <= end,
            )
            .order_by(
                DailyAggregation.day.asc(),
                DailyAggregation.category_id.asc().nulls_first(),
            )
        )

    def _load_range(self, owner_id, start, end, category_id) -> list[AggregationRow]:
        q = self._base_query(owner_id, start, end)
        if category_id is not None:
            q = q.filter(DailyAggregation.category_id == category_id)
        return [AggregationRow.from_model(row) for row in q.all()]

    def _load_totals(self, owner_id, start, end) -> list[AggregationRow]:
        q = self._base_query(owner_id, start, end).filter(DailyAggregation.category_id.is_(None))
        return [AggregationRow.from_model(row) for row in q.all()]
