"""create ledger tables

Revision ID: 3f9c2a7d1b40
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d1b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(precision=20, scale=2)


def _timestamps():
    return [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('account_type', sa.String(16), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('initial_balance', MONEY, nullable=False, server_default='0'),
        *_timestamps(),
    )

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('main_category', sa.String(32), nullable=False),
        sa.Column('icon', sa.String(64), nullable=False, server_default=''),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('owner_id', 'name', name='uq_category_owner_name'),
    )

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), nullable=False, index=True),
        sa.Column('account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('category_id', sa.Integer(), nullable=True, index=True),
        sa.Column('transaction_type', sa.String(16), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('description', sa.String(500), nullable=False, server_default=''),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_method', sa.String(64), nullable=False, server_default=''),
        sa.Column('transfer_group', sa.String(36), nullable=True, index=True),
        sa.Column('source_key', sa.String(255), nullable=True, unique=True),
        *_timestamps(),
    )
    op.create_index('ix_transactions_owner_date', 'transactions', ['owner_id', 'date'])

    op.create_table(
        'daily_aggregations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), nullable=False, index=True),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('total_income', MONEY, nullable=False, server_default='0'),
        sa.Column('total_expenses', MONEY, nullable=False, server_default='0'),
        sa.Column('net_flow', MONEY, nullable=False, server_default='0'),
        sa.Column('transaction_count', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('owner_id', 'day', 'category_id', name='uq_daily_aggregation_key'),
    )
    op.create_index('ix_daily_aggregations_owner_day', 'daily_aggregations', ['owner_id', 'day'])

    op.create_table(
        'recurring_incomes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), nullable=False, index=True),
        sa.Column('account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('description', sa.String(500), nullable=False, server_default=''),
        sa.Column('recurrence_type', sa.String(16), nullable=False),
        sa.Column('recurrence_interval', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('next_occurrence_date', sa.Date(), nullable=False, index=True),
        sa.Column('last_posted_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        *_timestamps(),
    )

    op.create_table(
        'budgets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('budget_type', sa.String(16), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('spent', MONEY, nullable=False, server_default='0'),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('recurrence_type', sa.String(16), nullable=True),
        sa.Column('recurrence_interval', sa.Integer(), nullable=True),
        sa.Column('next_renewal_date', sa.Date(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'budget_categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('budget_id', sa.Integer(), sa.ForeignKey('budgets.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('allocated', MONEY, nullable=False),
        sa.Column('spent', MONEY, nullable=False, server_default='0'),
        sa.UniqueConstraint('budget_id', 'category_id', name='uq_budget_category'),
    )


def downgrade() -> None:
    op.drop_table('budget_categories')
    op.drop_table('budgets')
    op.drop_table('recurring_incomes')
    op.drop_index('ix_daily_aggregations_owner_day', table_name='daily_aggregations')
    op.drop_table('daily_aggregations')
    op.drop_index('ix_transactions_owner_date', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('categories')
    op.drop_table('accounts')
