"""create_fulfillment_tables

Revision ID: 4c1e2b7a9d10
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4c1e2b7a9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create orders table
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_code', sa.String(length=32), nullable=False, comment='对外订单号 ORD-XXXXXX'),
        sa.Column('buyer_id', sa.String(length=64), nullable=False, comment='买家账号ID'),
        sa.Column('payment_method', sa.String(length=32), nullable=False, comment='bkash/nagad/stripe/cash_on_delivery'),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='pending', comment='支付状态'),
        sa.Column('fulfillment_status', sa.String(length=20), nullable=False, server_default='pending', comment='履约状态'),
        sa.Column('subtotal', sa.Numeric(precision=15, scale=2), nullable=False, comment='商品小计'),
        sa.Column('discount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='优惠金额'),
        sa.Column('total', sa.Numeric(precision=15, scale=2), nullable=False, comment='应付金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='BDT', comment='货币代码 ISO-4217'),
        sa.Column('shipping_address', sa.JSON(), nullable=True, comment='收货地址'),
        sa.Column('payment_reference', sa.String(length=200), nullable=True, comment='完成支付的网关流水号'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.PrimaryKeyConstraint('id'),
        comment='订单表'
    )
    op.create_index('ix_orders_id', 'orders', ['id'], unique=False)
    op.create_index('ix_orders_order_code', 'orders', ['order_code'], unique=True)
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)
    op.create_index('ix_orders_fulfillment_status', 'orders', ['fulfillment_status'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)
    op.create_index('ix_orders_buyer_created', 'orders', ['buyer_id', 'created_at'], unique=False)

    # Create order_lines table
    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False, comment='physical/digital'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('content_key', sa.String(length=500), nullable=True, comment='数字内容在存储中的 key'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='订单行，价格与标题为下单时快照'
    )
    op.create_index('ix_order_lines_id', 'order_lines', ['id'], unique=False)
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'], unique=False)
    op.create_index('ix_order_lines_product_id', 'order_lines', ['product_id'], unique=False)

    # Create payment_transactions table
    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False, comment='支付方式'),
        sa.Column('correlation_id', sa.String(length=200), nullable=False, comment='网关侧支付ID'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='initiated', comment='initiated/verified/failed'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=True, comment='网关上报金额'),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('outcome', sa.String(length=20), nullable=True, comment='终态时订单支付状态缓存'),
        sa.Column('raw_payload', sa.JSON(), nullable=True, comment='回调原文快照（审计）'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'correlation_id', name='uq_payment_transactions_provider_correlation'),
        comment='支付流水，(provider, correlation_id) 唯一'
    )
    op.create_index('ix_payment_transactions_id', 'payment_transactions', ['id'], unique=False)
    op.create_index('ix_payment_transactions_order_id', 'payment_transactions', ['order_id'], unique=False)
    op.create_index('ix_payment_transactions_status', 'payment_transactions', ['status'], unique=False)
    op.create_index('ix_payment_transactions_created_at', 'payment_transactions', ['created_at'], unique=False)
    op.create_index('ix_payment_transactions_status_created', 'payment_transactions', ['status', 'created_at'], unique=False)

    # Create access_grants table
    op.create_table(
        'access_grants',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('token', sa.String(length=64), nullable=False, comment='不可猜测的访问令牌'),
        sa.Column('buyer_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('issue_seq', sa.Integer(), nullable=False, server_default='0', comment='0 为首次签发，重签递增'),
        sa.Column('content_key', sa.String(length=500), nullable=True),
        sa.Column('bound_fingerprint', sa.String(length=64), nullable=True),
        sa.Column('bound_origin', sa.String(length=64), nullable=True),
        sa.Column('bound_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('issued_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_by', sa.String(length=64), nullable=True),
        sa.Column('last_access_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('access_count', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'product_id', 'issue_seq', name='uq_access_grants_order_product_seq'),
        comment='电子书访问授权'
    )
    op.create_index('ix_access_grants_id', 'access_grants', ['id'], unique=False)
    op.create_index('ix_access_grants_token', 'access_grants', ['token'], unique=True)
    op.create_index('ix_access_grants_buyer_id', 'access_grants', ['buyer_id'], unique=False)
    op.create_index('ix_access_grants_order_id', 'access_grants', ['order_id'], unique=False)
    op.create_index('ix_access_grants_expires_at', 'access_grants', ['expires_at'], unique=False)
    op.create_index('ix_access_grants_buyer_revoked', 'access_grants', ['buyer_id', 'revoked'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_access_grants_buyer_revoked', table_name='access_grants')
    op.drop_index('ix_access_grants_expires_at', table_name='access_grants')
    op.drop_index('ix_access_grants_order_id', table_name='access_grants')
    op.drop_index('ix_access_grants_buyer_id', table_name='access_grants')
    op.drop_index('ix_access_grants_token', table_name='access_grants')
    op.drop_index('ix_access_grants_id', table_name='access_grants')
    op.drop_table('access_grants')

    op.drop_index('ix_payment_transactions_status_created', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_created_at', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_status', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_order_id', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_id', table_name='payment_transactions')
    op.drop_table('payment_transactions')

    op.drop_index('ix_order_lines_product_id', table_name='order_lines')
    op.drop_index('ix_order_lines_order_id', table_name='order_lines')
    op.drop_index('ix_order_lines_id', table_name='order_lines')
    op.drop_table('order_lines')

    op.drop_index('ix_orders_buyer_created', table_name='orders')
    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_fulfillment_status', table_name='orders')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_buyer_id', table_name='orders')
    op.drop_index('ix_orders_order_code', table_name='orders')
    op.drop_index('ix_orders_id', table_name='orders')
    op.drop_table('orders')
