"""Initial schema with orders, catalog, users, kv_entries and outbox tables

Revision ID: 3f1c9a7d2e40
Revises:
Create Date: 2026-10-19 09:12:31.204518

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2e40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('is_operator', sa.Boolean(), nullable=False, comment='May manage orders and pay for customers'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'user_meta',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('meta_key', sa.String(length=191), nullable=False),
        sa.Column('meta_value', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'meta_key', name='uq_user_meta_key')
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=False, comment='Parent product for variations, 0 otherwise'),
        sa.Column('product_type', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('purchasable', sa.Boolean(), nullable=False),
        sa.Column('in_stock', sa.Boolean(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='publish or trash'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_products_parent_id'), 'products', ['parent_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False, comment='order or subscription'),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('cart_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_orders_kind_status', 'orders', ['kind', 'status'])
    op.create_index(op.f('ix_orders_status'), 'orders', ['status'])
    op.create_index(op.f('ix_orders_customer_id'), 'orders', ['customer_id'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('item_type', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variation_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('total', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('variation_attributes', sa.JSON(), nullable=True),
        sa.Column('item_meta', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_order_items_order_id'), 'order_items', ['order_id'])

    op.create_table(
        'order_meta',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('meta_key', sa.String(length=191), nullable=False),
        sa.Column('meta_value', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'meta_key', name='uq_order_meta_key')
    )
    # Token lookup by keyed hash goes through this index
    op.create_index('idx_order_meta_lookup', 'order_meta', ['meta_key', 'meta_value'])

    op.create_table(
        'order_notes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('note', sa.Text(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_order_notes_order_id'), 'order_notes', ['order_id'])

    op.create_table(
        'kv_entries',
        sa.Column('key', sa.String(length=191), nullable=False),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('expires_at', sa.BigInteger(), nullable=False, comment='Expiry as epoch seconds'),
        sa.PrimaryKeyConstraint('key')
    )
    op.create_index(op.f('ix_kv_entries_expires_at'), 'kv_entries', ['expires_at'])

    op.create_table(
        'outbox',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('aggregate_id', sa.Integer(), nullable=False, comment='Order id'),
        sa.Column('message_type', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_outbox_unprocessed', 'outbox', ['created_at'], postgresql_where=sa.text('processed_at IS NULL'))


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_outbox_unprocessed', table_name='outbox')
    op.drop_table('outbox')
    op.drop_index(op.f('ix_kv_entries_expires_at'), table_name='kv_entries')
    op.drop_table('kv_entries')
    op.drop_index(op.f('ix_order_notes_order_id'), table_name='order_notes')
    op.drop_table('order_notes')
    op.drop_index('idx_order_meta_lookup', table_name='order_meta')
    op.drop_table('order_meta')
    op.drop_index(op.f('ix_order_items_order_id'), table_name='order_items')
    op.drop_table('order_items')
    op.drop_index(op.f('ix_orders_customer_id'), table_name='orders')
    op.drop_index(op.f('ix_orders_status'), table_name='orders')
    op.drop_index('idx_orders_kind_status', table_name='orders')
    op.drop_table('orders')
    op.drop_index(op.f('ix_products_parent_id'), table_name='products')
    op.drop_table('products')
    op.drop_table('user_meta')
    op.drop_table('users')
