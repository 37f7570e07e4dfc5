"""
Account domain types
"""
from enum import Enum

from fintrack.domain.errors import ValidationError


class AccountType(str, Enum):
    """
    Account kinds. The string values are persisted and must not change.

    - Checking: everyday bank account
    - Savings: savings / deposit account
    - Cash: physical wallet
    - Card: credit card (balance usually <= 0)
    """
    CHECKING = "Checking"
    SAVINGS = "Savings"
    CASH = "Cash"
    CARD = "Card"


def parse_account_type(value) -> AccountType:
    if isinstance(value, AccountType):
        return value
    try:
        return AccountType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in AccountType)
        raise ValidationError(f"Unknown account type {value!r}, expected one of: {allowed}") from None


def validate_currency(code: str) -> str:
    """Currency codes are three upper-case letters (ISO 4217)."""
    code = (code or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Invalid currency code: {code!r}")
    return code
