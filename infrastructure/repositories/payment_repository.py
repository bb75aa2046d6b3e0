"""
支付账本仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import (
    PaymentNotFoundException,
    WebhookEventAlreadyRecordedException,
)
from domain.payment.entity import (
    GatewayType,
    Payment,
    PaymentStatus,
    WebhookEventRecord,
)
from domain.payment.repository import (
    OrderRepository,
    PaymentRepository,
    WebhookEventRepository,
)
from infrastructure.models.payment import OrderModel, PaymentModel, WebhookEventModel


logger = get_logger(__name__)

ORDER_COMPLETED = "completed"


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            organization_id=model.organization_id,
            user_id=model.user_id,
            order_id=model.order_id,
            gateway=GatewayType(model.gateway),
            gateway_transaction_id=model.gateway_transaction_id,
            gateway_payment_intent_id=model.gateway_payment_intent_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            metadata=dict(model.extra_metadata or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            organization_id=entity.organization_id,
            user_id=entity.user_id,
            order_id=entity.order_id,
            gateway=entity.gateway.value,
            gateway_transaction_id=entity.gateway_transaction_id,
            gateway_payment_intent_id=entity.gateway_payment_intent_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            extra_metadata=entity.metadata,
            created_at=entity.created_at or datetime.now(timezone.utc),
            updated_at=entity.updated_at or datetime.now(timezone.utc),
        )

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录（约束冲突等持久化错误直接上抛）"""
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            gateway=db_payment.gateway,
            order_id=db_payment.order_id,
            organization_id=db_payment.organization_id,
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """根据ID获取支付"""
        db_payment = await self.session.get(PaymentModel, payment_id)
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_gateway_payment_intent_id(
        self,
        intent_id: str,
        gateway: Optional[str] = None,
    ) -> Optional[Payment]:
        """根据网关意图ID获取支付"""
        query = select(PaymentModel).where(PaymentModel.gateway_payment_intent_id == intent_id)
        if gateway is not None:
            query = query.where(PaymentModel.gateway == GatewayType(gateway).value)
        result = await self.session.execute(query.order_by(PaymentModel.created_at.desc()).limit(1))
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_gateway_transaction_id(
        self,
        transaction_id: str,
        gateway: Optional[str] = None,
    ) -> Optional[Payment]:
        """根据网关交易ID获取支付（命中 ix_payments_gateway_transaction 索引）"""
        query = select(PaymentModel).where(PaymentModel.gateway_transaction_id == transaction_id)
        if gateway is not None:
            query = query.where(PaymentModel.gateway == GatewayType(gateway).value)
        result = await self.session.execute(query.order_by(PaymentModel.created_at.desc()).limit(1))
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def update_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        *,
        gateway_transaction_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        gateway_payment_intent_id: Optional[str] = None,
    ) -> Payment:
        """部分更新支付状态"""
        db_payment = await self.session.get(PaymentModel, payment_id)
        if db_payment is None:
            raise PaymentNotFoundException(payment_id)

        previous = db_payment.status
        db_payment.status = PaymentStatus(status).value
        if gateway_transaction_id is not None:
            db_payment.gateway_transaction_id = gateway_transaction_id
        if metadata is not None:
            db_payment.extra_metadata = metadata
        if gateway_payment_intent_id is not None:
            db_payment.gateway_payment_intent_id = gateway_payment_intent_id
        db_payment.updated_at = datetime.now(timezone.utc)

        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_status_updated",
            payment_id=payment_id,
            previous_status=previous,
            status=db_payment.status,
        )
        return self._to_entity(db_payment)


class SQLAlchemyWebhookEventRepository(WebhookEventRepository):
    """webhook 幂等记录仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WebhookEventModel) -> WebhookEventRecord:
        return WebhookEventRecord(
            id=model.id,
            gateway=GatewayType(model.gateway),
            gateway_event_id=model.gateway_event_id,
            event_type=model.event_type,
            payment_id=model.payment_id,
            processed=bool(model.processed),
            processed_at=model.processed_at,
            metadata=dict(model.extra_metadata or {}),
            created_at=model.created_at,
        )

    async def get(self, gateway: str, gateway_event_id: str) -> Optional[WebhookEventRecord]:
        result = await self.session.execute(
            select(WebhookEventModel).where(
                WebhookEventModel.gateway == GatewayType(gateway).value,
                WebhookEventModel.gateway_event_id == gateway_event_id,
            )
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def add(self, record: WebhookEventRecord) -> WebhookEventRecord:
        model = WebhookEventModel(
            gateway=record.gateway.value,
            gateway_event_id=record.gateway_event_id,
            event_type=record.event_type,
            payment_id=record.payment_id,
            processed=False,
            extra_metadata=record.metadata,
            created_at=datetime.now(timezone.utc),
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            logger.info(
                "webhook_event_insert_conflict",
                gateway=record.gateway.value,
                gateway_event_id=record.gateway_event_id,
            )
            raise WebhookEventAlreadyRecordedException(
                record.gateway.value, record.gateway_event_id
            ) from exc
        await self.session.refresh(model)
        return self._to_entity(model)

    async def mark_processed(self, gateway: str, gateway_event_id: str) -> bool:
        result = await self.session.execute(
            update(WebhookEventModel)
            .where(
                WebhookEventModel.gateway == GatewayType(gateway).value,
                WebhookEventModel.gateway_event_id == gateway_event_id,
            )
            .values(processed=True, processed_at=datetime.now(timezone.utc))
        )
        return (result.rowcount or 0) > 0


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储（履约）"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def mark_completed(self, order_id: str) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(status=ORDER_COMPLETED, updated_at=datetime.now(timezone.utc))
        )
        return (result.rowcount or 0) > 0
