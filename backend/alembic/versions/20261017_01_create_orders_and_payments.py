"""create users, orders, order_items and payments

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '20261017_01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    tables = set(sa.inspect(bind).get_table_names())

    # Tables may already exist when the app bootstrapped them with create_all
    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('email', sa.String(), nullable=False),
            sa.Column('password', sa.String(), nullable=False),
            sa.Column('first_name', sa.String(), nullable=False),
            sa.Column('last_name', sa.String(), nullable=False),
            sa.Column(
                'user_type',
                sa.Enum('BUYER', 'SELLER', 'ADMIN', name='usertype'),
                nullable=False,
            ),
            sa.Column('is_active', sa.Boolean(), nullable=True),
            *_timestamps(),
        )
        op.create_index('ix_users_id', 'users', ['id'])
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    if 'orders' not in tables:
        op.create_table(
            'orders',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
            sa.Column('total_commission', sa.Numeric(12, 2), nullable=False),
            sa.Column('currency', sa.String(3), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('payment_status', sa.String(), nullable=False),
            sa.Column('payment_method', sa.String(), nullable=True),
            *_timestamps(),
        )
        op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
        op.create_index('ix_orders_status', 'orders', ['status'])

    if 'order_items' not in tables:
        op.create_table(
            'order_items',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('product_id', sa.String(), nullable=False),
            sa.Column('seller_store_id', sa.String(), nullable=False),
            sa.Column('product_name', sa.String(), nullable=True),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
            sa.Column('item_total', sa.Numeric(12, 2), nullable=False),
            sa.Column('commission_amount', sa.Numeric(12, 2), nullable=False),
            sa.Column('item_status', sa.String(), nullable=False),
            *_timestamps(),
        )
        op.create_index('ix_order_items_id', 'order_items', ['id'])
        op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
        op.create_index('ix_order_items_seller_store_id', 'order_items', ['seller_store_id'])

    if 'payments' not in tables:
        op.create_table(
            'payments',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('payment_method', sa.String(), nullable=False),
            sa.Column('provider_reference', sa.String(), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('amount', sa.Numeric(12, 2), nullable=False),
            sa.Column('currency', sa.String(3), nullable=False),
            sa.Column('metadata', sa.JSON(), nullable=True),
            *_timestamps(),
        )
        op.create_index('ix_payments_id', 'payments', ['id'])
        # One live payment record per order
        op.create_index('ix_payments_order_id', 'payments', ['order_id'], unique=True)
        op.create_index('ix_payments_provider_reference', 'payments', ['provider_reference'])


def downgrade() -> None:
    bind = op.get_bind()
    tables = set(sa.inspect(bind).get_table_names())
    for table in ('payments', 'order_items', 'orders', 'users'):
        if table in tables:
            op.drop_table(table)
    if bind.dialect.name == 'postgresql':
        op.execute("DROP TYPE IF EXISTS usertype")
