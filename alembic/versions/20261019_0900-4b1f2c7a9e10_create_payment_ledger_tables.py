"""create_payment_ledger_tables

Revision ID: 4b1f2c7a9e10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '4b1f2c7a9e10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=36), nullable=False, comment='内部支付ID (UUID)'),
        sa.Column('organization_id', sa.String(length=100), nullable=False, comment='租户/组织ID'),
        sa.Column('user_id', sa.String(length=100), nullable=False, comment='用户ID'),
        sa.Column('order_id', sa.String(length=100), nullable=True, comment='业务订单ID，直接支付时为空'),
        sa.Column('gateway', sa.String(length=30), nullable=False, comment='支付网关: flow/mercadopago/paypal/nowpayments'),
        sa.Column('gateway_transaction_id', sa.String(length=200), nullable=True, comment='网关交易ID'),
        sa.Column('gateway_payment_intent_id', sa.String(length=200), nullable=True, comment='网关支付意图ID (订单/偏好/发票)'),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False, comment='支付金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='支付状态: pending/succeeded/failed/refunded'),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='元数据'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.UniqueConstraint('gateway', 'gateway_payment_intent_id', name='uq_payments_gateway_intent'),
    )
    op.create_index('ix_payments_gateway_transaction', 'payments', ['gateway', 'gateway_transaction_id'])
    op.create_index('ix_payments_org_created', 'payments', ['organization_id', 'created_at'])
    op.create_index('ix_payments_organization_id', 'payments', ['organization_id'])
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('gateway', sa.String(length=30), nullable=False, comment='支付网关'),
        sa.Column('gateway_event_id', sa.String(length=200), nullable=False, comment='网关通知ID'),
        sa.Column('event_type', sa.String(length=100), nullable=False, comment='网关事件类型'),
        sa.Column('payment_id', sa.String(length=36), nullable=True, comment='关联支付ID'),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default='false', comment='是否已处理'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True, comment='处理时间'),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='原始/派生载荷'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='接收时间'),
        sa.PrimaryKeyConstraint('id', name='pk_webhook_events'),
        sa.UniqueConstraint('gateway', 'gateway_event_id', name='uq_webhook_events_gateway_event'),
    )
    op.create_index('ix_webhook_events_payment_id', 'webhook_events', ['payment_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=100), nullable=False),
        sa.Column('organization_id', sa.String(length=100), nullable=True, comment='租户/组织ID'),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='pending', comment='订单状态'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
    )
    op.create_index('ix_orders_organization_id', 'orders', ['organization_id'])


def downgrade() -> None:
    op.drop_index('ix_orders_organization_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_webhook_events_payment_id', table_name='webhook_events')
    op.drop_table('webhook_events')

    for index in (
        'ix_payments_status',
        'ix_payments_order_id',
        'ix_payments_user_id',
        'ix_payments_organization_id',
        'ix_payments_org_created',
        'ix_payments_gateway_transaction',
    ):
        op.drop_index(index, table_name='payments')
    op.drop_table('payments')
