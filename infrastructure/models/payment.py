"""
支付账本数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Boolean, Column, Integer, String, Numeric, DateTime, JSON,
    Index, UniqueConstraint,
)
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, comment="内部支付ID (UUID)")

    # 归属信息
    organization_id = Column(String(100), nullable=False, index=True, comment="租户/组织ID")
    user_id = Column(String(100), nullable=False, index=True, comment="用户ID")
    order_id = Column(String(100), nullable=True, index=True, comment="业务订单ID，直接支付时为空")

    # 网关信息
    gateway = Column(String(30), nullable=False, comment="支付网关: flow/mercadopago/paypal/nowpayments")
    gateway_transaction_id = Column(String(200), nullable=True, comment="网关交易ID")
    gateway_payment_intent_id = Column(String(200), nullable=True, comment="网关支付意图ID (订单/偏好/发票)")

    # 金额信息（使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=18, scale=2), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False, comment="货币代码 ISO-4217")

    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="支付状态: pending/succeeded/failed/refunded"
    )
    extra_metadata = Column("metadata", JSON, nullable=True, comment="元数据")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间")

    __table_args__ = (
        UniqueConstraint("gateway", "gateway_payment_intent_id", name="uq_payments_gateway_intent"),
        Index("ix_payments_gateway_transaction", "gateway", "gateway_transaction_id"),
        Index("ix_payments_org_created", "organization_id", "created_at"),
    )

    def __repr__(self):
        return f"<Payment(id={self.id}, gateway={self.gateway}, status={self.status})>"


class WebhookEventModel(Base):
    """webhook 幂等记录表，(gateway, gateway_event_id) 唯一"""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    gateway = Column(String(30), nullable=False, comment="支付网关")
    gateway_event_id = Column(String(200), nullable=False, comment="网关通知ID")
    event_type = Column(String(100), nullable=False, comment="网关事件类型")
    payment_id = Column(String(36), nullable=True, index=True, comment="关联支付ID")
    processed = Column(Boolean, nullable=False, default=False, comment="是否已处理")
    processed_at = Column(DateTime(timezone=True), nullable=True, comment="处理时间")
    extra_metadata = Column("metadata", JSON, nullable=True, comment="原始/派生载荷")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="接收时间")

    __table_args__ = (
        UniqueConstraint("gateway", "gateway_event_id", name="uq_webhook_events_gateway_event"),
    )

    def __repr__(self):
        return f"<WebhookEvent(gateway={self.gateway}, id={self.gateway_event_id}, processed={self.processed})>"


class OrderModel(Base):
    """订单表（履约只读写 status）"""
    __tablename__ = "orders"

    id = Column(String(100), primary_key=True)
    organization_id = Column(String(100), nullable=True, index=True, comment="租户/组织ID")
    status = Column(String(30), nullable=False, default="pending", comment="订单状态")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
