"""
支付领域实体 - 支付账本聚合根与 webhook 事件记录
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
import uuid

from domain.common.exceptions import DomainValidationException


class PaymentStatus(str, Enum):
    """规范化支付状态（所有网关状态最终映射到这四个值）"""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class GatewayType(str, Enum):
    """支持的支付网关（封闭集合，新增网关需同时新增适配器）"""
    FLOW = "flow"
    MERCADOPAGO = "mercadopago"
    PAYPAL = "paypal"
    NOWPAYMENTS = "nowpayments"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Payment:
    """
    支付聚合根 - 财务审计记录

    业务规则：
    1. 金额必须大于0
    2. gateway_payment_intent_id 在同一网关内唯一，是 webhook 回查的关联键
    3. 只能通过状态更新修改，永不删除
    """

    organization_id: str
    user_id: str
    gateway: GatewayType
    amount: Decimal
    currency: str  # ISO-4217
    status: PaymentStatus = PaymentStatus.PENDING
    order_id: Optional[str] = None
    id: str = field(default_factory=_new_id)
    gateway_transaction_id: Optional[str] = None
    gateway_payment_intent_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """初始化后验证"""
        if self.amount <= 0:
            raise DomainValidationException(
                f"支付金额必须大于0: {self.amount}",
                field="amount"
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"无效的货币代码: {self.currency}",
                field="currency"
            )
        self.currency = self.currency.upper()
        self.gateway = GatewayType(self.gateway)
        self.status = PaymentStatus(self.status)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.metadata is None:
            self.metadata = {}

    def is_final_status(self) -> bool:
        """检查是否为终态"""
        return self.status in (
            PaymentStatus.SUCCEEDED,
            PaymentStatus.FAILED,
            PaymentStatus.REFUNDED,
        )

    def accepts_status(self, status: PaymentStatus) -> bool:
        """
        状态回退保护：

        1. 终态支付不会被迟到的 pending 通知覆盖
        2. refunded 为吸收态，只接受 refunded（乱序到达的 succeeded 不会复活已退款支付）
        3. 其余转换（含 succeeded -> refunded、failed -> succeeded）均允许
        """
        status = PaymentStatus(status)
        if self.status == PaymentStatus.REFUNDED:
            return status == PaymentStatus.REFUNDED
        if status == PaymentStatus.PENDING and self.is_final_status():
            return False
        return True


@dataclass
class WebhookEventRecord:
    """webhook 幂等记录，(gateway, gateway_event_id) 全局唯一"""

    gateway: GatewayType
    gateway_event_id: str
    event_type: str
    payment_id: Optional[str] = None
    processed: bool = False
    processed_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.gateway = GatewayType(self.gateway)
        self.processed_at = _ensure_utc(self.processed_at)
        self.created_at = _ensure_utc(self.created_at)
        if self.metadata is None:
            self.metadata = {}
