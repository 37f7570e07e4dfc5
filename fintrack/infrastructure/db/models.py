"""
SQLAlchemy ORM models (ledger tables + materialized aggregation)

Field names and the string values of account_type / transaction_type /
recurrence_type / budget_type are the storage contract.
"""
from decimal import Decimal
from datetime import date as date_type, datetime
from sqlalchemy import (
    String, Integer, Text, TIMESTAMP, Date, Boolean, Numeric,
    ForeignKey, UniqueConstraint, Index, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from fintrack.infrastructure.db.session import Base


def utcnow() -> datetime:
    return datetime.utcnow()


MONEY = Numeric(precision=20, scale=2)


class Account(Base):
    """
    Account with a derived balance

    balance == initial_balance + sum(transactions.amount) for this account.
    Only ledger operations write `balance`.
    """
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(16), nullable=False)  # Checking, Savings, Cash, Card
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default="USD")
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, server_default="0")
    initial_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class MainCategory(Base):
    """
    Owner-defined top-level group (Needs, Wants, ...). Categories refer to
    it by name through Category.main_category.
    """
    __tablename__ = "main_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(32), nullable=False)
    icon: Mapped[str] = mapped_column(String(64), nullable=False, server_default="")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_main_category_owner_name"),
    )


class Category(Base):
    """Spending / income category owned by a user"""
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    main_category: Mapped[str] = mapped_column(String(32), nullable=False)  # MainCategory.name of the same owner
    icon: Mapped[str] = mapped_column(String(64), nullable=False, server_default="")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_category_owner_name"),
    )


class Transaction(Base):
    """
    Ledger entry. `amount` is signed: negative for expenses and for the
    outgoing leg of a transfer.
    """
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    transaction_type: Mapped[str] = mapped_column(String(16), nullable=False)  # expense, income, transfer
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False, server_default="")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(64), nullable=False, server_default="")

    # Both legs of a transfer share the same group id
    transfer_group: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    # Idempotency key for system-posted entries (recurring income)
    source_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_transactions_owner_date", "owner_id", "date"),
    )


class DailyAggregation(Base):
    """
    Materialized per-day totals. category_id IS NULL marks the
    all-categories row for the day.

    category_key mirrors category_id with 0 for the all-categories row so the
    unique key also covers that row.
    """
    __tablename__ = "daily_aggregations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    day: Mapped[date_type] = mapped_column(Date, nullable=False)
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    category_key: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0", default=0)

    total_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False, server_default="0")
    total_expenses: Mapped[Decimal] = mapped_column(MONEY, nullable=False, server_default="0")
    net_flow: Mapped[Decimal] = mapped_column(MONEY, nullable=False, server_default="0")
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "day", "category_key", name="uq_daily_aggregation_key"),
        Index("ix_daily_aggregations_owner_day", "owner_id", "day"),
    )


class RecurringIncome(Base):
    """Canonical store of recurring income schedules"""
    __tablename__ = "recurring_incomes"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)  # positive magnitude
    description: Mapped[str] = mapped_column(String(500), nullable=False, server_default="")
    recurrence_type: Mapped[str] = mapped_column(String(16), nullable=False)  # daily, weekly, biweekly, monthly, custom
    recurrence_interval: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    next_occurrence_date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    last_posted_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true", default=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class Budget(Base):
    """Budget header; per-category allocations live in budget_categories"""
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    budget_type: Mapped[str] = mapped_column(String(16), nullable=False)  # category, simple
    start_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    end_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    spent: Mapped[Decimal] = mapped_column(MONEY, nullable=False, server_default="0", default=Decimal("0"))

    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false", default=False)
    recurrence_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    recurrence_interval: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_renewal_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class BudgetCategory(Base):
    """Allocation of a category budget; `spent` is derived from transactions"""
    __tablename__ = "budget_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    budget_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    allocated: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    spent: Mapped[Decimal] = mapped_column(MONEY, nullable=False, server_default="0", default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("budget_id", "category_id", name="uq_budget_category"),
    )
