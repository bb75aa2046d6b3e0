"""
支付仓储接口 - 定义支付账本数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

from .entity import Payment, PaymentStatus, WebhookEventRecord


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """根据ID获取支付"""
        pass

    @abstractmethod
    async def get_by_gateway_payment_intent_id(
        self,
        intent_id: str,
        gateway: Optional[str] = None,
    ) -> Optional[Payment]:
        """根据网关意图ID获取支付（可选限定网关）"""
        pass

    @abstractmethod
    async def get_by_gateway_transaction_id(
        self,
        transaction_id: str,
        gateway: Optional[str] = None,
    ) -> Optional[Payment]:
        """根据网关交易ID获取支付（退款等只携带交易ID的通知）"""
        pass

    @abstractmethod
    async def update_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        *,
        gateway_transaction_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        gateway_payment_intent_id: Optional[str] = None,
    ) -> Payment:
        """部分更新：仅写入提供的可选字段，总是刷新 updated_at"""
        pass


class WebhookEventRepository(ABC):
    """webhook 幂等记录仓储"""

    @abstractmethod
    async def get(self, gateway: str, gateway_event_id: str) -> Optional[WebhookEventRecord]:
        pass

    @abstractmethod
    async def add(self, record: WebhookEventRecord) -> WebhookEventRecord:
        """插入记录；唯一约束冲突时抛出 WebhookEventAlreadyRecordedException"""
        pass

    @abstractmethod
    async def mark_processed(self, gateway: str, gateway_event_id: str) -> bool:
        """标记为已处理，返回是否找到记录"""
        pass


class OrderRepository(ABC):
    """订单仓储（仅履约所需的最小接口）"""

    @abstractmethod
    async def mark_completed(self, order_id: str) -> bool:
        """将订单置为 completed，返回订单是否存在"""
        pass
