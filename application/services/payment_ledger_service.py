"""
支付账本应用服务（application/services）- 支付记录与 webhook 幂等记录的持久化操作

每个操作是围绕 Unit of Work 的一层薄事务封装；并发安全完全依赖
(gateway, gateway_event_id) 唯一约束，而非进程内锁。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Optional

from core.logging_config import get_logger
from domain.common.exceptions import WebhookEventAlreadyRecordedException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    GatewayType,
    Payment,
    PaymentStatus,
    WebhookEventRecord,
)


logger = get_logger(__name__)


class PaymentLedgerService:
    """支付账本服务"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def create_payment(
        self,
        *,
        organization_id: str,
        user_id: str,
        gateway: GatewayType | str,
        amount: Decimal,
        currency: str,
        status: PaymentStatus | str = PaymentStatus.PENDING,
        order_id: Optional[str] = None,
        gateway_payment_intent_id: Optional[str] = None,
        gateway_transaction_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Payment:
        """插入一条支付记录；持久化失败直接上抛，绝不吞掉。"""
        payment = Payment(
            organization_id=organization_id,
            user_id=user_id,
            gateway=GatewayType(gateway),
            amount=Decimal(str(amount)),
            currency=currency,
            status=PaymentStatus(status),
            order_id=order_id,
            gateway_payment_intent_id=gateway_payment_intent_id,
            gateway_transaction_id=gateway_transaction_id,
            metadata=metadata or {},
        )
        async with self._uow_factory() as uow:
            return await uow.payment_repository.create(payment)

    async def update_payment_status(
        self,
        payment_id: str,
        status: PaymentStatus | str,
        gateway_transaction_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        gateway_payment_intent_id: Optional[str] = None,
    ) -> Payment:
        """部分更新：仅写入提供的可选字段，总是刷新 updated_at。"""
        async with self._uow_factory() as uow:
            return await uow.payment_repository.update_status(
                payment_id,
                PaymentStatus(status),
                gateway_transaction_id=gateway_transaction_id,
                metadata=metadata,
                gateway_payment_intent_id=gateway_payment_intent_id,
            )

    async def get_payment_by_id(self, payment_id: str) -> Optional[Payment]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.payment_repository.get_by_id(payment_id)

    async def get_payment_by_gateway_payment_intent_id(
        self,
        intent_id: str,
        gateway: GatewayType | str | None = None,
    ) -> Optional[Payment]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.payment_repository.get_by_gateway_payment_intent_id(
                intent_id,
                GatewayType(gateway).value if gateway is not None else None,
            )

    async def get_payment_by_gateway_transaction_id(
        self,
        transaction_id: str,
        gateway: GatewayType | str | None = None,
    ) -> Optional[Payment]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.payment_repository.get_by_gateway_transaction_id(
                transaction_id,
                GatewayType(gateway).value if gateway is not None else None,
            )

    async def _get_webhook_event(self, gateway: GatewayType, gateway_event_id: str) -> Optional[WebhookEventRecord]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.webhook_event_repository.get(gateway.value, gateway_event_id)

    async def record_webhook_event(
        self,
        gateway: GatewayType | str,
        gateway_event_id: str,
        event_type: str,
        payment_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        幂等闸门：返回 True 表示该事件已处理过，调用方必须跳过所有副作用。

        已存在记录时直接返回其 processed 标记且不插入；并发插入冲突时
        重新读取已存在的记录，按重复投递处理。
        """
        gateway = GatewayType(gateway)
        existing = await self._get_webhook_event(gateway, gateway_event_id)
        if existing is not None:
            logger.info(
                "webhook_event_duplicate",
                gateway=gateway.value,
                gateway_event_id=gateway_event_id,
                processed=existing.processed,
            )
            return existing.processed

        record = WebhookEventRecord(
            gateway=gateway,
            gateway_event_id=gateway_event_id,
            event_type=event_type,
            payment_id=payment_id,
            metadata=metadata or {},
        )
        try:
            async with self._uow_factory() as uow:
                await uow.webhook_event_repository.add(record)
        except WebhookEventAlreadyRecordedException:
            existing = await self._get_webhook_event(gateway, gateway_event_id)
            if existing is None:
                raise
            return existing.processed

        logger.info(
            "webhook_event_recorded",
            gateway=gateway.value,
            gateway_event_id=gateway_event_id,
            event_type=event_type,
            payment_id=payment_id,
        )
        return False

    async def mark_webhook_event_as_processed(self, gateway: GatewayType | str, gateway_event_id: str) -> None:
        """标记已处理；失败只记录日志，不影响 webhook 处理结果（效果已生效）。"""
        gateway = GatewayType(gateway)
        try:
            async with self._uow_factory() as uow:
                found = await uow.webhook_event_repository.mark_processed(gateway.value, gateway_event_id)
        except Exception:
            logger.error(
                "webhook_mark_processed_failed",
                gateway=gateway.value,
                gateway_event_id=gateway_event_id,
                exc_info=True,
            )
            return
        if not found:
            logger.warning(
                "webhook_mark_processed_missing",
                gateway=gateway.value,
                gateway_event_id=gateway_event_id,
            )

    async def fulfill_order(self, order_id: str) -> bool:
        """将订单置为已完成；订单不存在时记录日志而不抛出。"""
        async with self._uow_factory() as uow:
            found = await uow.order_repository.mark_completed(order_id)
        if not found:
            logger.warning("order_fulfillment_order_missing", order_id=order_id)
            return False
        logger.info("order_fulfilled", order_id=order_id)
        return True
