"""
Transaction domain entity: the single place where user-entered
(magnitude, type) pairs become the canonical signed amount.

Sign convention (same as account balances):
- INCOME: +amount
- EXPENSE: -amount
- TRANSFER: -amount on the outgoing leg, +amount on the incoming leg
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from fintrack.domain.errors import ValidationError
from fintrack.domain.money import parse_positive_amount


class TransactionType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


def parse_transaction_type(value) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(value)
    except ValueError:
        raise ValidationError(f"Unknown transaction type {value!r}") from None


def signed_amount(magnitude: Decimal, transaction_type: TransactionType) -> Decimal:
    """
    Convert an entered magnitude into the signed ledger amount.

    Transfers are posted as two legs by the ledger, so a bare TRANSFER
    here is rejected.
    """
    if transaction_type is TransactionType.INCOME:
        return magnitude
    if transaction_type is TransactionType.EXPENSE:
        return -magnitude
    if transaction_type is TransactionType.TRANSFER:
        raise ValidationError("Transfers are posted as two legs, use post_transfer")
    raise ValueError(f"unhandled transaction type: {transaction_type}")

@dataclass(frozen=True)
class TransactionEntry:
    """
    A validated transaction as entered by the user, before it is stored.

    `amount` is already signed.
    """
    owner_id: int
    account_id: int
    category_id: Optional[int]
    transaction_type: TransactionType
    amount: Decimal
    date: date
    description: str
    notes: Optional[str] = None
    payment_method: str = ""

    @classmethod
    def from_input(
        cls,
        owner_id: int,
        account_id: int,
        category_id: Optional[int],
        transaction_type,
        amount,
        occurred_on: date,
        description: str = "",
        notes: Optional[str] = None,
        payment_method: str = "",
    ) -> "TransactionEntry":
        tx_type = parse_transaction_type(transaction_type)
        magnitude = parse_positive_amount(amount)
        if isinstance(occurred_on, datetime):
            occurred_on = occurred_on.date()
        if not isinstance(occurred_on, date):
            raise ValidationError("Transaction date is required")
        return cls(
            owner_id=owner_id,
            account_id=account_id,
            category_id=category_id,
            transaction_type=tx_type,
            amount=signed_amount(magnitude, tx_type),
            date=occurred_on,
            description=(description or "").strip(),
            notes=notes,
            payment_method=payment_method or "",
        )
