"""
Budget domain types
"""
from enum import Enum

from fintrack.domain.errors import ValidationError


class BudgetType(str, Enum):
    """
    - category: allocations per category, spent tracked per entry
    - simple: one total amount, spent counts every expense in range
    """
    CATEGORY = "category"
    SIMPLE = "simple"


def parse_budget_type(value) -> BudgetType:
    if isinstance(value, BudgetType):
        return value
    try:
        return BudgetType(value)
    except ValueError:
        raise ValidationError(f"Unknown budget type {value!r}") from None
