"""
Payment application service orchestrating a gateway adapter and the ledger.

Outbound: create the provider intent, then persist it. Inbound: authenticate
and normalise the webhook, gate it on idempotency, resolve the payment and its
owning organization, then apply the status change and fulfillment.
"""
from __future__ import annotations

from typing import Optional

from application.dtos.payments import (
    CreatePaymentIntent,
    PaymentIntentResponse,
    WebhookEvent,
    WebhookOutcome,
    WebhookRequest,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.payment_ledger_service import PaymentLedgerService
from core.logging_config import get_logger
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.events import PaymentEvent, event_for_status


logger = get_logger(__name__)


class PaymentService:
    def __init__(self, gateway: PaymentGateway, ledger: PaymentLedgerService) -> None:
        self._gateway = gateway
        self._ledger = ledger
        self.domain_events: list[PaymentEvent] = []

    async def aclose(self) -> None:
        await self._gateway.aclose()

    async def create_payment_intent(self, req: CreatePaymentIntent) -> tuple[Payment, PaymentIntentResponse]:
        intent = await self._gateway.create_payment_intent(req)
        payment = await self._ledger.create_payment(
            organization_id=req.organization_id,
            user_id=req.user_id,
            gateway=self._gateway.gateway,
            amount=req.amount,
            currency=req.currency,
            status=intent.status,
            order_id=req.order_id,
            gateway_payment_intent_id=intent.gateway_payment_intent_id,
            metadata={
                "redirect_url": intent.redirect_url,
                "preference_id": intent.preference_id,
            },
        )
        logger.info(
            "checkout_initiated",
            payment_id=payment.id,
            gateway=payment.gateway.value,
            gateway_payment_intent_id=intent.gateway_payment_intent_id,
        )
        return payment, intent

    def _outcome(self, event: WebhookEvent, *, payment: Optional[Payment] = None, **kwargs) -> WebhookOutcome:
        return WebhookOutcome(
            gateway=event.gateway,
            gateway_event_id=event.gateway_event_id,
            type=event.type,
            status=event.status,
            payment_id=payment.id if payment else None,
            **kwargs,
        )

    async def handle_webhook(self, request: WebhookRequest) -> WebhookOutcome:
        event = await self._gateway.process_webhook_event(request)
        log = logger.bind(gateway=event.gateway.value, gateway_event_id=event.gateway_event_id)

        payment: Optional[Payment] = None
        if event.gateway_payment_intent_id:
            payment = await self._ledger.get_payment_by_gateway_payment_intent_id(
                event.gateway_payment_intent_id, event.gateway
            )
        # Refund/capture notifications may only reference the provider transaction
        if payment is None and event.gateway_transaction_id:
            payment = await self._ledger.get_payment_by_gateway_transaction_id(
                event.gateway_transaction_id, event.gateway
            )

        already_processed = await self._ledger.record_webhook_event(
            event.gateway,
            event.gateway_event_id,
            event.type,
            payment.id if payment else None,
            event.model_dump(mode="json"),
        )
        if already_processed:
            return self._outcome(event, payment=payment, duplicate=True, message="duplicate")

        if payment is None:
            log.warning(
                "webhook_payment_not_found",
                gateway_payment_intent_id=event.gateway_payment_intent_id,
                gateway_transaction_id=event.gateway_transaction_id,
            )
            await self._ledger.mark_webhook_event_as_processed(event.gateway, event.gateway_event_id)
            return self._outcome(event, message="payment_not_found")

        # The ledger row owns the tenant; the event's organization is only a cross-check.
        if event.organization_id and event.organization_id != payment.organization_id:
            log.error(
                "webhook_organization_mismatch",
                payment_id=payment.id,
                payment_organization_id=payment.organization_id,
                event_organization_id=event.organization_id,
            )
            await self._ledger.mark_webhook_event_as_processed(event.gateway, event.gateway_event_id)
            return self._outcome(event, payment=payment, message="organization_mismatch")

        if not payment.accepts_status(event.status):
            log.info("payment_status_regression_ignored", payment_id=payment.id, current_status=payment.status.value)
            await self._ledger.mark_webhook_event_as_processed(event.gateway, event.gateway_event_id)
            return self._outcome(event, payment=payment, message="stale_status")

        previous_status = payment.status
        metadata = {
            **payment.metadata,
            "last_webhook": {
                "gateway_event_id": event.gateway_event_id,
                "type": event.type,
                "status": event.status.value,
                "amount": str(event.amount),
                "currency": event.currency,
            },
        }
        payment = await self._ledger.update_payment_status(
            payment.id,
            event.status,
            gateway_transaction_id=event.gateway_transaction_id,
            metadata=metadata,
        )

        raised: list[str] = []
        event_cls = event_for_status(event.status)
        if event_cls is not None and previous_status != event.status:
            domain_event = event_cls(
                payment_id=payment.id,
                gateway=payment.gateway.value,
                organization_id=payment.organization_id,
                order_id=payment.order_id,
                gateway_transaction_id=payment.gateway_transaction_id,
            )
            self.domain_events.append(domain_event)
            raised.append(type(domain_event).__name__)

        if event.status == PaymentStatus.SUCCEEDED and previous_status != PaymentStatus.SUCCEEDED and payment.order_id:
            await self._ledger.fulfill_order(payment.order_id)

        await self._ledger.mark_webhook_event_as_processed(event.gateway, event.gateway_event_id)
        log.info(
            "webhook_applied",
            payment_id=payment.id,
            previous_status=previous_status.value,
            status=payment.status.value,
        )
        return self._outcome(event, payment=payment, applied=True, message="applied", domain_events=raised)
