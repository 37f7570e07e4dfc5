"""
Ledger use cases - the only code path that mutates transactions and
account balances

Every mutation changes the transaction record and the account balance in one
atomic batch. Balances move through the store's atomic increment, never
read-modify-write, so concurrent posts on one account cannot lose updates.

Aggregation maintenance:
- post: incremental update inside the same batch
- edit / delete: full rebuild for the owner after the batch commits
"""
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from fintrack.domain.errors import ConflictError, NotFoundError, ValidationError
from fintrack.domain.money import parse_positive_amount
from fintrack.domain.transaction import (
    TransactionEntry, TransactionType, parse_transaction_type, signed_amount,
)
from fintrack.infrastructure.db.models import Account, Category, Transaction, utcnow
from fintrack.infrastructure.db.store import RecordStore
from fintrack.readmodels.daily_aggregations import DailyAggregationEngine

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "amount", "transaction_type", "account_id", "category_id",
    "date", "description", "notes", "payment_method",
})
TRANSFER_EDITABLE_FIELDS = frozenset({"amount", "date", "description", "notes", "payment_method"})


def _text_changes(changes: dict) -> dict:
    values = {}
    if "description" in changes:
        values["description"] = (changes["description"] or "").strip()
    if "notes" in changes:
        values["notes"] = changes["notes"]
    if "payment_method" in changes:
        values["payment_method"] = changes["payment_method"] or ""
    return values


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            raise ValidationError(f"Invalid date: {value!r}") from None
    raise ValidationError("Transaction date is required")


class TransactionService:
    """
    Ledger Service

    Args:
        db: SQLAlchemy session
        cache: optional AggregationCache; invalidated for the owner after
            every committed write
    """

    def __init__(self, db: Session, cache=None):
        self.db = db
        self.store = RecordStore(db)
        self.aggregations = DailyAggregationEngine(db, cache=cache)

    # ------------------------------------------------------------------
    # Post
    # ------------------------------------------------------------------

    def post_transaction(
        self,
        owner_id: int,
        account_id: int,
        amount,
        transaction_type,
        date: date,
        category_id: Optional[int] = None,
        description: str = "",
        notes: Optional[str] = None,
        payment_method: str = "",
        source_key: Optional[str] = None,
    ) -> Transaction:
        """
        Post an income or expense

        Args:
            owner_id: owner of the account
            account_id: account to debit / credit
            amount: entered magnitude (> 0, at most 2 decimal places)
            transaction_type: "income" or "expense"
            date: occurrence date
            category_id: optional category, must belong to the owner
            source_key: idempotency key for system-posted entries

        Returns:
            The stored transaction (amount is signed)

        Raises:
            ValidationError: bad amount / type / reference
            ConflictError: source_key already used
            StorageError: the batch could not be committed
        """
        entry = TransactionEntry.from_input(
            owner_id=owner_id,
            account_id=account_id,
            category_id=category_id,
            transaction_type=transaction_type,
            amount=amount,
            occurred_on=date,
            description=description,
            notes=notes,
            payment_method=payment_method,
        )

        with self.store.atomic():
            tx = self.stage_transaction(entry, source_key=source_key)

        self.aggregations.invalidate(owner_id)
        logger.info(
            f"Posted {entry.transaction_type.value} #{tx.id} for owner {owner_id}: "
            f"{entry.amount} on account {account_id} ({entry.date})"
        )
        return tx

    def stage_transaction(self, entry: TransactionEntry, source_key: Optional[str] = None) -> Transaction:
        """
        Write the transaction, its balance effect and its aggregation delta
        without committing.

        Must be called inside `store.atomic()`; the caller owns the batch.
        """
        self._get_account(entry.owner_id, entry.account_id)
        if entry.category_id is not None:
            self._check_category(entry.owner_id, entry.category_id)

        tx = self.store.put(Transaction(
            owner_id=entry.owner_id,
            account_id=entry.account_id,
            category_id=entry.category_id,
            transaction_type=entry.transaction_type.value,
            amount=entry.amount,
            date=entry.date,
            description=entry.description,
            notes=entry.notes,
            payment_method=entry.payment_method,
            source_key=source_key,
        ))
        self._apply_balance(entry.account_id, entry.amount)
        self.aggregations.apply_transaction_delta(tx)
        return tx

    def post_transfer(
        self,
        owner_id: int,
        from_account_id: int,
        to_account_id: int,
        amount,
        date: date,
        description: str = "",
        notes: Optional[str] = None,
        payment_method: str = "",
    ) -> tuple[Transaction, Transaction]:
        """
        Move money between two accounts of the owner as two linked legs
        (-amount / +amount) committed together.

        Returns:
            (outgoing leg, incoming leg)
        """
        magnitude = parse_positive_amount(amount)
        occurred_on = _as_date(date)
        if from_account_id == to_account_id:
            raise ValidationError("Transfer source and destination must differ")

        source = self._get_account(owner_id, from_account_id)
        target = self._get_account(owner_id, to_account_id)
        if source.currency != target.currency:
            raise ValidationError("Transfers between accounts in different currencies are not supported")

        group = str(uuid.uuid4())
        description = (description or "").strip()

        with self.store.atomic():
            legs = []
            for account_id, leg_amount in ((from_account_id, -magnitude), (to_account_id, magnitude)):
                legs.append(self.store.put(Transaction(
                    owner_id=owner_id,
                    account_id=account_id,
                    category_id=None,
                    transaction_type=TransactionType.TRANSFER.value,
                    amount=leg_amount,
                    date=occurred_on,
                    description=description,
                    notes=notes,
                    payment_method=payment_method or "",
                    transfer_group=group,
                )))
                self._apply_balance(account_id, leg_amount)

        self.aggregations.invalidate(owner_id)
        logger.info(
            f"Posted transfer {group} for owner {owner_id}: "
            f"{magnitude} from account {from_account_id} to {to_account_id}"
        )
        return legs[0], legs[1]

    # ------------------------------------------------------------------
    # Edit / delete
    # ------------------------------------------------------------------

    def edit_transaction(self, owner_id: int, transaction_id: int, **changes) -> Transaction:
        """
        Correct a posted transaction in place.

        The balance moves by new_signed - old_signed (or is reversed on the
        old account and applied on the new one when the account changes),
        atomically with the record update. Aggregation is rebuilt afterwards
        because the day or category may have changed.

        Raises:
            NotFoundError: unknown transaction
            ValidationError: unsupported field or invalid value
            ConflictError: the transaction changed since it was read
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        tx = self.get_transaction(owner_id, transaction_id)
        if tx.transaction_type == TransactionType.TRANSFER.value:
            return self._edit_transfer(owner_id, tx, changes)

        new_type = parse_transaction_type(changes.get("transaction_type", tx.transaction_type))
        if new_type is TransactionType.TRANSFER:
            raise ValidationError("An income or expense cannot be turned into a transfer")

        old_signed = Decimal(tx.amount)
        magnitude = parse_positive_amount(changes["amount"]) if "amount" in changes else abs(old_signed)
        new_signed = signed_amount(magnitude, new_type)

        old_account_id = tx.account_id
        new_account_id = changes.get("account_id", old_account_id)
        if new_account_id != old_account_id:
            old_account = self._get_account(owner_id, old_account_id)
            new_account = self._get_account(owner_id, new_account_id)
            if old_account.currency != new_account.currency:
                raise ValidationError("Cannot move a transaction to an account in another currency")

        if "category_id" in changes and changes["category_id"] is not None:
            self._check_category(owner_id, changes["category_id"])
        new_date = _as_date(changes["date"]) if "date" in changes else tx.date

        values = {
            "transaction_type": new_type.value,
            "amount": new_signed,
            "account_id": new_account_id,
            "date": new_date,
            "updated_at": utcnow(),
        }
        if "category_id" in changes:
            values["category_id"] = changes["category_id"]
        values.update(_text_changes(changes))

        with self.store.atomic():
            # The row must still hold the amount and account the delta was computed from
            self._guarded_update(tx, {"amount": old_signed, "account_id": old_account_id}, values)
            if new_account_id == old_account_id:
                delta = new_signed - old_signed
                if delta:
                    self._apply_balance(old_account_id, delta)
            else:
                self._apply_balance(old_account_id, -old_signed)
                self._apply_balance(new_account_id, new_signed)

        logger.info(f"Edited transaction #{transaction_id} for owner {owner_id}: {old_signed} -> {new_signed}")
        self.aggregations.rebuild_for_owner(owner_id)
        return tx

    def _edit_transfer(self, owner_id: int, tx: Transaction, changes: dict) -> Transaction:
        unsupported = set(changes) - TRANSFER_EDITABLE_FIELDS
        if unsupported:
            raise ValidationError(
                f"Transfer legs only allow editing {', '.join(sorted(TRANSFER_EDITABLE_FIELDS))}; "
                f"delete and re-post the transfer to change {', '.join(sorted(unsupported))}"
            )
        magnitude = parse_positive_amount(changes["amount"]) if "amount" in changes else None
        new_date = _as_date(changes["date"]) if "date" in changes else None

        legs = self._transfer_legs(tx)
        with self.store.atomic():
            for leg in legs:
                old_signed = Decimal(leg.amount)
                values = {"updated_at": utcnow()}
                values.update(_text_changes(changes))
                if new_date is not None:
                    values["date"] = new_date
                new_signed = old_signed
                if magnitude is not None:
                    new_signed = magnitude if old_signed > 0 else -magnitude
                    values["amount"] = new_signed
                self._guarded_update(leg, {"amount": old_signed}, values)
                if new_signed != old_signed:
                    self._apply_balance(leg.account_id, new_signed - old_signed)

        self.aggregations.invalidate(owner_id)
        logger.info(f"Edited transfer {tx.transfer_group} for owner {owner_id}")
        return tx

    def delete_transaction(self, owner_id: int, transaction_id: int) -> None:
        """
        Delete a transaction and reverse its balance effect atomically,
        then rebuild the owner's aggregation. Deleting one leg of a transfer
        deletes both legs.

        Raises:
            NotFoundError: unknown transaction
            ConflictError: the transaction changed since it was read
        """
        tx = self.get_transaction(owner_id, transaction_id)
        legs = self._transfer_legs(tx) if tx.transfer_group else [tx]

        with self.store.atomic():
            for leg in legs:
                amount, account_id = Decimal(leg.amount), leg.account_id
                removed = self.store.delete_where(
                    Transaction,
                    Transaction.id == leg.id,
                    Transaction.amount == leg.amount,
                    Transaction.account_id == account_id,
                )
                if removed != 1:
                    raise ConflictError(
                        f"Transaction #{leg.id} was changed or removed concurrently, reload and retry"
                    )
                self._apply_balance(account_id, -amount)

        logger.info(f"Deleted transaction #{transaction_id} for owner {owner_id} ({len(legs)} leg(s))")
        self.aggregations.rebuild_for_owner(owner_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_transaction(self, owner_id: int, transaction_id: int) -> Transaction:
        tx = self.store.get(Transaction, transaction_id)
        if tx is None or tx.owner_id != owner_id:
            raise NotFoundError(f"Transaction #{transaction_id} not found")
        return tx

    def list_by_owner(self, owner_id: int, limit: Optional[int] = None) -> list[Transaction]:
        return self.store.query(
            Transaction,
            Transaction.owner_id == owner_id,
            order_by=[Transaction.date.desc(), Transaction.id.desc()],
            limit=limit,
        )

    def list_recent(self, owner_id: int, limit: int = 5) -> list[Transaction]:
        return self.list_by_owner(owner_id, limit=limit)

    def list_by_account(self, owner_id: int, account_id: int) -> list[Transaction]:
        account = self.store.get(Account, account_id)
        if account is None or account.owner_id != owner_id:
            raise NotFoundError(f"Account #{account_id} not found")
        return self.store.query(
            Transaction,
            Transaction.account_id == account_id,
            order_by=[Transaction.date.desc(), Transaction.id.desc()],
        )

    def list_by_date_range(self, owner_id: int, start: date, end: date) -> list[Transaction]:
        """Transactions with start <= date <= end (inclusive)."""
        start, end = _as_date(start), _as_date(end)
        if start > end:
            raise ValidationError("start must be <= end")
        return self.store.query(
            Transaction,
            Transaction.owner_id == owner_id,
            Transaction.date >= start,
            Transaction.date <= end,
            order_by=[Transaction.date.desc(), Transaction.id.desc()],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_account(self, owner_id: int, account_id: int) -> Account:
        account = self.store.get(Account, account_id)
        if account is None or account.owner_id != owner_id:
            raise ValidationError(f"Account #{account_id} not found")
        return account

    def _check_category(self, owner_id: int, category_id: int) -> None:
        category = self.store.get(Category, category_id)
        if category is None or category.owner_id != owner_id:
            raise ValidationError(f"Category #{category_id} not found")

    def _transfer_legs(self, tx: Transaction) -> list[Transaction]:
        return self.store.query(
            Transaction,
            Transaction.transfer_group == tx.transfer_group,
            order_by=[Transaction.id.asc()],
        )

    def _guarded_update(self, tx: Transaction, expected: dict, values: dict) -> None:
        """Write `values` to tx only if `expected` still matches the stored row."""
        if self.store.compare_and_set(Transaction, tx.id, expected, **values) != 1:
            raise ConflictError(f"Transaction #{tx.id} was changed concurrently, reload and retry")

    def _apply_balance(self, account_id: int, delta: Decimal) -> None:
        updated = self.store.increment(Account, account_id, "balance", delta, updated_at=utcnow())
        if updated != 1:
            raise ConflictError(f"Account #{account_id} disappeared during the update")
