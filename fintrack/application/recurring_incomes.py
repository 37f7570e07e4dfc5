"""
Recurring income scheduler

States per item: Scheduled -> Due -> Posted -> Scheduled(next), terminal Cancelled.

Posting an occurrence is idempotent:
- the income transaction carries source_key "recurring-income:{id}:{occurrence}"
  (unique in transactions)
- next_occurrence_date is advanced with a compare-and-set on its previous value
Both writes go into the same atomic batch, so a concurrent run either posts
the occurrence itself or loses with ConflictError and posts nothing.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from fintrack.application.transactions import TransactionService
from fintrack.config import get_settings
from fintrack.domain.errors import ConflictError, NotFoundError, ValidationError
from fintrack.domain.money import parse_positive_amount
from fintrack.domain.recurrence import next_occurrence, parse_recurrence_type, validate_interval
from fintrack.domain.transaction import TransactionEntry, TransactionType
from fintrack.infrastructure.db.models import Account, Category, RecurringIncome, Transaction, utcnow
from fintrack.infrastructure.db.store import RecordStore

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "amount", "description", "recurrence_type", "recurrence_interval",
    "next_occurrence_date", "category_id", "account_id",
})


@dataclass
class ProcessSummary:
    """Outcome of a batch run; conflicts (lost races) count as skipped"""
    processed: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {"processed": self.processed, "skipped": self.skipped, "errors": self.errors}


def source_key_for(item_id: int, occurrence: date) -> str:
    return f"recurring-income:{item_id}:{occurrence.isoformat()}"


class RecurringIncomeScheduler:
    """
    Owner of RecurringIncome records

    Args:
        db: SQLAlchemy session
        cache: optional AggregationCache, passed through to the ledger
    """

    def __init__(self, db: Session, cache=None):
        self.db = db
        self.store = RecordStore(db)
        self.ledger = TransactionService(db, cache=cache)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(
        self,
        owner_id: int,
        account_id: int,
        amount,
        description: str,
        recurrence_type,
        next_occurrence_date: date,
        recurrence_interval: int = 1,
        category_id: Optional[int] = None,
    ) -> RecurringIncome:
        magnitude = parse_positive_amount(amount)
        rtype = parse_recurrence_type(recurrence_type)
        interval = validate_interval(rtype, recurrence_interval)
        if not isinstance(next_occurrence_date, date):
            raise ValidationError("next_occurrence_date is required")
        self._check_references(owner_id, account_id, category_id)

        with self.store.atomic():
            item = self.store.put(RecurringIncome(
                owner_id=owner_id,
                account_id=account_id,
                category_id=category_id,
                amount=magnitude,
                description=(description or "").strip(),
                recurrence_type=rtype.value,
                recurrence_interval=interval,
                next_occurrence_date=next_occurrence_date,
                is_active=True,
            ))

        logger.info(
            f"Scheduled recurring income #{item.id} for owner {owner_id}: "
            f"{magnitude} {rtype.value}, first on {next_occurrence_date}"
        )
        return item

    def get(self, owner_id: int, item_id: int) -> RecurringIncome:
        item = self.store.get(RecurringIncome, item_id)
        if item is None or item.owner_id != owner_id:
            raise NotFoundError(f"Recurring income #{item_id} not found")
        return item

    def list_for_owner(self, owner_id: int, include_cancelled: bool = False) -> list[RecurringIncome]:
        filters = [RecurringIncome.owner_id == owner_id]
        if not include_cancelled:
            filters.append(RecurringIncome.is_active.is_(True))
        return self.store.query(
            RecurringIncome,
            *filters,
            order_by=[RecurringIncome.next_occurrence_date.asc(), RecurringIncome.id.asc()],
        )

    def update(self, owner_id: int, item_id: int, **changes) -> RecurringIncome:
        """
        Change a scheduled item. Already posted transactions are not touched.

        next_occurrence_date may not be moved to or before the last posted
        occurrence.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        item = self.get(owner_id, item_id)
        if not item.is_active:
            raise ValidationError("Cancelled recurring income cannot be updated")

        rtype = parse_recurrence_type(changes.get("recurrence_type", item.recurrence_type))
        interval = validate_interval(rtype, changes.get("recurrence_interval", item.recurrence_interval))
        magnitude = parse_positive_amount(changes["amount"]) if "amount" in changes else None
        next_date = changes.get("next_occurrence_date", item.next_occurrence_date)
        if item.last_posted_date is not None and next_date <= item.last_posted_date:
            raise ValidationError("next_occurrence_date must be after the last posted occurrence")
        self._check_references(
            owner_id,
            changes.get("account_id", item.account_id),
            changes.get("category_id", item.category_id),
        )

        with self.store.atomic():
            if magnitude is not None:
                item.amount = magnitude
            if "description" in changes:
                item.description = (changes["description"] or "").strip()
            if "account_id" in changes:
                item.account_id = changes["account_id"]
            if "category_id" in changes:
                item.category_id = changes["category_id"]
            item.recurrence_type = rtype.value
            item.recurrence_interval = interval
            item.next_occurrence_date = next_date
            item.updated_at = utcnow()
            self.db.flush()
        return item

    def cancel(self, owner_id: int, item_id: int) -> RecurringIncome:
        """Terminal state: a cancelled item is never posted again."""
        item = self.get(owner_id, item_id)
        with self.store.atomic():
            item.is_active = False
            item.updated_at = utcnow()
            self.db.flush()
        logger.info(f"Cancelled recurring income #{item_id} for owner {owner_id}")
        return item

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    @staticmethod
    def is_due(item: RecurringIncome, as_of: date) -> bool:
        return bool(item.is_active) and item.next_occurrence_date <= as_of

    def process_due(self, item_id: int, as_of: date) -> Transaction:
        """
        Post the item's current occurrence and advance it by one interval.

        Returns:
            The posted income transaction, dated at the occurrence date

        Raises:
            NotFoundError: unknown item
            ValidationError: item is cancelled or not due as of `as_of`
            ConflictError: another run already posted this occurrence
        """
        item = self.store.get(RecurringIncome, item_id)
        if item is None:
            raise NotFoundError(f"Recurring income #{item_id} not found")
        if not self.is_due(item, as_of):
            raise ValidationError(f"Recurring income #{item_id} is not due as of {as_of}")

        occurrence = item.next_occurrence_date
        rtype = parse_recurrence_type(item.recurrence_type)
        following = next_occurrence(rtype, occurrence, item.recurrence_interval or 1)
        entry = TransactionEntry.from_input(
            owner_id=item.owner_id,
            account_id=item.account_id,
            category_id=item.category_id,
            transaction_type=TransactionType.INCOME,
            amount=item.amount,
            occurred_on=occurrence,
            description=item.description,
        )
        owner_id = item.owner_id

        with self.store.atomic():
            advanced = self.store.compare_and_set(
                RecurringIncome,
                item_id,
                {"next_occurrence_date": occurrence, "is_active": True},
                next_occurrence_date=following,
                last_posted_date=occurrence,
                updated_at=utcnow(),
            )
            if advanced != 1:
                raise ConflictError(f"Recurring income #{item_id} occurrence {occurrence} was already processed")
            tx = self.ledger.stage_transaction(entry, source_key=source_key_for(item_id, occurrence))

        self.ledger.aggregations.invalidate(owner_id)
        logger.info(
            f"Posted recurring income #{item_id} occurrence {occurrence} as transaction #{tx.id}, "
            f"next on {following}"
        )
        return tx

    def process_all_due(self, owner_id: int, as_of: date) -> ProcessSummary:
        """
        Post every due occurrence of the owner's active items, catching up
        missed periods one transaction per occurrence.

        A failing item is logged and counted; the remaining items still run.
        """
        summary = ProcessSummary()
        limit = get_settings().RECURRENCE_MAX_CATCH_UP
        due = self.store.query(
            RecurringIncome,
            RecurringIncome.owner_id == owner_id,
            RecurringIncome.is_active.is_(True),
            RecurringIncome.next_occurrence_date <= as_of,
            order_by=[RecurringIncome.next_occurrence_date.asc(), RecurringIncome.id.asc()],
        )

        for item_id in [item.id for item in due]:
            posted = 0
            try:
                while posted < limit:
                    item = self.store.get(RecurringIncome, item_id)
                    if item is None or not self.is_due(item, as_of):
                        break
                    self.process_due(item_id, as_of)
                    posted += 1
                else:
                    logger.warning(
                        f"Recurring income #{item_id} hit the catch-up limit ({limit}), "
                        f"remaining occurrences are left for the next run"
                    )
            except ConflictError:
                summary.skipped += 1
                logger.warning(f"Recurring income #{item_id} was processed concurrently, skipped")
            except Exception:
                summary.errors += 1
                logger.exception(f"Failed to process recurring income #{item_id}")
            summary.processed += posted

        if due:
            logger.info(
                f"Recurring incomes for owner {owner_id} as of {as_of}: "
                f"{summary.processed} posted, {summary.skipped} skipped, {summary.errors} errors"
            )
        return summary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_references(self, owner_id: int, account_id: int, category_id: Optional[int]) -> None:
        account = self.store.get(Account, account_id)
        if account is None or account.owner_id != owner_id:
            raise ValidationError(f"Account #{account_id} not found")
        if category_id is not None:
            category = self.store.get(Category, category_id)
            if category is None or category.owner_id != owner_id:
                raise ValidationError(f"Category #{category_id} not found")


def owners_with_due_incomes(db: Session, as_of: date) -> list[int]:
    rows = (
        db.query(RecurringIncome.owner_id)
        .filter(RecurringIncome.is_active.is_(True), RecurringIncome.next_occurrence_date <= as_of)
        .distinct()
        .all()
    )
    return [row[0] for row in rows]
