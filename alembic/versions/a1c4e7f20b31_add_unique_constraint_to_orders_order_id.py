"""Add unique constraint to orders.order_id

Run scripts/resolve_duplicates.py first; the index cannot be created while
duplicate order ids exist.

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2026-10-18 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f20b31'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.drop_index(op.f('ix_orders_order_id'), table_name='orders')
    op.create_index(
        op.f('ix_orders_order_id'),
        'orders',
        ['order_id'],
        unique=True,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_orders_order_id'), table_name='orders')
    op.create_index(
        op.f('ix_orders_order_id'),
        'orders',
        ['order_id'],
        unique=False,
    )
