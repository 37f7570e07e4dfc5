"""
Budget Tracker - budgets, derived spent figures and recurring renewal

`spent` (budget total and per-entry) is never written from outside: it is
re-derived from expense transactions in [start_date, end_date] whenever
budgets are read (recompute_spent and the list queries) and after every
renewal.
"""
import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from fintrack.application.recurring_incomes import ProcessSummary
from fintrack.config import get_settings
from fintrack.domain.budget import BudgetType, parse_budget_type
from fintrack.domain.errors import NotFoundError, ValidationError
from fintrack.domain.money import ZERO, parse_positive_amount, to_decimal
from fintrack.domain.recurrence import (
    next_occurrence, parse_recurrence_type, shift_period, validate_interval,
)
from fintrack.domain.transaction import TransactionType
from fintrack.infrastructure.db.models import Budget, BudgetCategory, Category, Transaction, utcnow
from fintrack.infrastructure.db.store import RecordStore

logger = logging.getLogger(__name__)


class BudgetTracker:
    def __init__(self, db: Session):
        self.db = db
        self.store = RecordStore(db)

    # ------------------------------------------------------------------
    # CRUD / queries
    # ------------------------------------------------------------------

    def create_budget(
        self,
        owner_id: int,
        name: str,
        amount,
        budget_type,
        start_date: date,
        end_date: date,
        categories: Optional[list[dict]] = None,
        is_recurring: bool = False,
        recurrence_type=None,
        recurrence_interval: int = 1,
    ) -> Budget:
        """
        Create a budget and derive its spent figures.

        Args:
            categories: for category budgets, [{"category_id": .., "allocated": ..}, ...]
            is_recurring: renew the window by recurrence_type once it ends

        Returns:
            The stored budget
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Budget name is required")
        total = parse_positive_amount(amount)
        btype = parse_budget_type(budget_type)
        if start_date > end_date:
            raise ValidationError("start_date must be <= end_date")

        entries = []
        if btype is BudgetType.CATEGORY:
            if not categories:
                raise ValidationError("A category budget needs at least one category allocation")
            seen = set()
            for item in categories:
                category_id = item.get("category_id")
                category = self.store.get(Category, category_id) if category_id is not None else None
                if category is None or category.owner_id != owner_id:
                    raise ValidationError(f"Category #{category_id} not found")
                if category_id in seen:
                    raise ValidationError(f"Category #{category_id} is allocated twice")
                seen.add(category_id)
                allocated = to_decimal(item.get("allocated", "0"))
                if allocated < 0:
                    raise ValidationError("Allocated amount cannot be negative")
                entries.append((category_id, allocated))
        elif categories:
            raise ValidationError("A simple budget has no category allocations")

        rtype = None
        interval = None
        next_renewal = None
        if is_recurring:
            rtype = parse_recurrence_type(recurrence_type)
            interval = validate_interval(rtype, recurrence_interval)
            next_renewal = next_occurrence(rtype, start_date, interval)

        with self.store.atomic():
            budget = self.store.put(Budget(
                owner_id=owner_id,
                name=name,
                amount=total,
                budget_type=btype.value,
                start_date=start_date,
                end_date=end_date,
                spent=ZERO,
                is_recurring=bool(is_recurring),
                recurrence_type=rtype.value if rtype else None,
                recurrence_interval=interval,
                next_renewal_date=next_renewal,
            ))
            for category_id, allocated in entries:
                self.store.put(BudgetCategory(
                    budget_id=budget.id,
                    category_id=category_id,
                    allocated=allocated,
                    spent=ZERO,
                ))
            self._derive_spent(budget)

        logger.info(f"Created {btype.value} budget #{budget.id} for owner {owner_id}: {total} ({start_date}..{end_date})")
        return budget

    def get_budget(self, owner_id: int, budget_id: int) -> Budget:
        budget = self.store.get(Budget, budget_id)
        if budget is None or budget.owner_id != owner_id:
            raise NotFoundError(f"Budget #{budget_id} not found")
        return budget

    def get_entries(self, budget_id: int) -> list[BudgetCategory]:
        return self.store.query(
            BudgetCategory, BudgetCategory.budget_id == budget_id, order_by=[BudgetCategory.id.asc()]
        )

    def list_budgets(self, owner_id: int) -> list[Budget]:
        budgets = self.store.query(
            Budget, Budget.owner_id == owner_id, order_by=[Budget.start_date.desc(), Budget.id.desc()]
        )
        return self._with_current_spent(budgets)

    def get_current_budgets(self, owner_id: int, today: date) -> list[Budget]:
        """Budgets whose window contains `today`."""
        budgets = self.store.query(
            Budget,
            Budget.owner_id == owner_id,
            Budget.start_date <= today,
            Budget.end_date >= today,
            order_by=[Budget.start_date.asc(), Budget.id.asc()],
        )
        return self._with_current_spent(budgets)

    def get_budgets_by_date_range(self, owner_id: int, start: date, end: date) -> list[Budget]:
        """Budgets whose window overlaps [start, end]."""
        if start > end:
            raise ValidationError("start must be <= end")
        budgets = self.store.query(
            Budget,
            Budget.owner_id == owner_id,
            Budget.start_date <= end,
            Budget.end_date >= start,
            order_by=[Budget.start_date.asc(), Budget.id.asc()],
        )
        return self._with_current_spent(budgets)

    def delete_budget(self, owner_id: int, budget_id: int) -> None:
        budget = self.get_budget(owner_id, budget_id)
        with self.store.atomic():
            self.store.delete_where(BudgetCategory, BudgetCategory.budget_id == budget_id)
            self.store.delete(budget)
        logger.info(f"Deleted budget #{budget_id} for owner {owner_id}")

    # ------------------------------------------------------------------
    # Derived spent
    # ------------------------------------------------------------------

    def recompute_spent(self, budget_id: int) -> Budget:
        """
        Re-derive spent from the expense transactions in the budget window.

        Category budget: per entry, expenses of that category; budget spent is
        the sum of the entries. Simple budget: every expense in the window.
        """
        budget = self.store.get(Budget, budget_id)
        if budget is None:
            raise NotFoundError(f"Budget #{budget_id} not found")
        with self.store.atomic():
            self._derive_spent(budget)
        return budget

    def _with_current_spent(self, budgets: list[Budget]) -> list[Budget]:
        if budgets:
            with self.store.atomic():
                for budget in budgets:
                    self._derive_spent(budget)
        return budgets

    def _derive_spent(self, budget: Budget) -> None:
        rows = (
            self.db.query(Transaction.category_id, func.coalesce(func.sum(Transaction.amount), 0))
            .filter(
                Transaction.owner_id == budget.owner_id,
                Transaction.transaction_type == TransactionType.EXPENSE.value,
                Transaction.date >= budget.start_date,
                Transaction.date <= budget.end_date,
            )
            .group_by(Transaction.category_id)
            .all()
        )
        by_category: dict[Optional[int], Decimal] = defaultdict(lambda: ZERO)
        for category_id, total in rows:
            # expense amounts are negative in the ledger
            by_category[category_id] = -Decimal(str(total)).quantize(ZERO)

        if budget.budget_type == BudgetType.CATEGORY.value:
            spent = ZERO
            for entry in self.get_entries(budget.id):
                entry.spent = by_category.get(entry.category_id, ZERO)
                spent += entry.spent
            budget.spent = spent
        else:
            budget.spent = sum(by_category.values(), ZERO)
        budget.updated_at = utcnow()
        self.db.flush()

    # ------------------------------------------------------------------
    # Renewal
    # ------------------------------------------------------------------

    def renew_recurring_budget(self, budget_id: int, as_of: date) -> bool:
        """
        Move a recurring budget to the period containing `as_of`.

        When as_of >= next_renewal_date the window and next_renewal_date are
        advanced (as many periods as needed), spent is reset and re-derived
        for the new window. Allocations are untouched.

        Returns:
            True if the budget was renewed
        """
        budget = self.store.get(Budget, budget_id)
        if budget is None:
            raise NotFoundError(f"Budget #{budget_id} not found")
        if not budget.is_recurring or budget.next_renewal_date is None or as_of < budget.next_renewal_date:
            return False

        rtype = parse_recurrence_type(budget.recurrence_type)
        interval = budget.recurrence_interval or 1
        start, end = budget.start_date, budget.end_date
        next_renewal = budget.next_renewal_date
        limit = get_settings().RECURRENCE_MAX_CATCH_UP
        periods = 0
        while next_renewal <= as_of and periods < limit:
            start, end = shift_period(start, end, rtype, interval)
            next_renewal = next_occurrence(rtype, start, interval)
            periods += 1

        with self.store.atomic():
            budget.start_date = start
            budget.end_date = end
            budget.next_renewal_date = next_renewal
            budget.spent = ZERO
            for entry in self.get_entries(budget.id):
                entry.spent = ZERO
            self.db.flush()
            self._derive_spent(budget)

        logger.info(
            f"Renewed budget #{budget_id} by {periods} period(s): {start}..{end}, next renewal {next_renewal}"
        )
        return True

    def renew_all_due(self, owner_id: int, as_of: date) -> ProcessSummary:
        summary = ProcessSummary()
        due = self.store.query(
            Budget,
            Budget.owner_id == owner_id,
            Budget.is_recurring.is_(True),
            Budget.next_renewal_date <= as_of,
        )
        for budget_id in [b.id for b in due]:
            try:
                if self.renew_recurring_budget(budget_id, as_of):
                    summary.processed += 1
                else:
                    summary.skipped += 1
            except Exception:
                summary.errors += 1
                logger.exception(f"Failed to renew budget #{budget_id}")
        return summary


def owners_with_due_budgets(db: Session, as_of: date) -> list[int]:
    rows = (
        db.query(Budget.owner_id)
        .filter(Budget.is_recurring.is_(True), Budget.next_renewal_date <= as_of)
        .distinct()
        .all()
    )
    return [row[0] for row in rows]
