"""add main categories and aggregation category key

Revision ID: 8b1e4c2f9a63
Revises: 3f9c2a7d1b40
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b1e4c2f9a63'
down_revision: Union[str, None] = '3f9c2a7d1b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'main_categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(32), nullable=False),
        sa.Column('icon', sa.String(64), nullable=False, server_default=''),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('owner_id', 'name', name='uq_main_category_owner_name'),
    )
    # Existing owners keep the groups their categories already use
    op.execute(
        "INSERT INTO main_categories (owner_id, name) "
        "SELECT DISTINCT owner_id, main_category FROM categories"
    )

    op.add_column(
        'daily_aggregations',
        sa.Column('category_key', sa.Integer(), nullable=False, server_default='0'),
    )
    op.execute("UPDATE daily_aggregations SET category_key = COALESCE(category_id, 0)")
    op.drop_constraint('uq_daily_aggregation_key', 'daily_aggregations', type_='unique')
    op.create_unique_constraint(
        'uq_daily_aggregation_key', 'daily_aggregations', ['owner_id', 'day', 'category_key']
    )


def downgrade() -> None:
    op.drop_constraint('uq_daily_aggregation_key', 'daily_aggregations', type_='unique')
    op.create_unique_constraint(
        'uq_daily_aggregation_key', 'daily_aggregations', ['owner_id', 'day', 'category_id']
    )
    op.drop_column('daily_aggregations', 'category_key')
    op.drop_table('main_categories')
