"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import (
    CreatePaymentIntent,
    PaymentIntentResponse,
    WebhookEvent,
    WebhookRequest,
)
from domain.payment.entity import GatewayType, PaymentStatus


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations are async, hold no mutable state besides an HTTP client,
    and perform no retries.
    """

    gateway: GatewayType

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResponse: ...

    async def process_webhook_event(self, request: WebhookRequest) -> WebhookEvent: ...

    def map_status(self, provider_status: str) -> PaymentStatus: ...

    async def aclose(self) -> None: ...
