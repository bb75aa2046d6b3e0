"""
MercadoPago adapter (regional checkout gateway, LATAM).

Uses the official synchronous SDK, executed in a worker thread via anyio.
Notifications are thin pings (topic + id): the payment itself is always
re-fetched with the access token, so only fetched data is trusted.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

import anyio
import mercadopago

from core.settings import PaymentSettings
from application.dtos.payments import (
    CreatePaymentIntent,
    PaymentIntentResponse,
    WebhookEvent,
    WebhookRequest,
)
from domain.payment.entity import GatewayType
from infrastructure.external.payments.base import (
    BasePaymentClient,
    format_amount,
    to_decimal,
)
from infrastructure.external.payments.exceptions import (
    PaymentSignatureError,
    WebhookPayloadError,
    WebhookUnhandledEventError,
)
from infrastructure.external.payments.signatures import verify_mercadopago_signature

PAYMENT_TOPIC = "payment"


class MercadoPagoClient(BasePaymentClient):
    gateway = GatewayType.MERCADOPAGO
    display_name = "MercadoPago"

    def __init__(self, settings: Optional[PaymentSettings] = None, *, sdk: Any = None, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self._sdk = sdk

    def _get_sdk(self) -> Any:
        if self._sdk is None:
            cfg = self._settings.mercadopago
            if cfg.sandbox_mode:
                token = self._require(cfg.sandbox_access_token or cfg.access_token, "MERCADOPAGO__SANDBOX_ACCESS_TOKEN")
            else:
                token = self._require(cfg.access_token, "MERCADOPAGO__ACCESS_TOKEN")
            self._sdk = mercadopago.SDK(token)
        return self._sdk

    async def _call(self, fn: Callable[..., dict], *args: Any, operation: str, log_request: Any = None) -> dict:
        """Run one SDK call off the event loop and unwrap its {status, response} envelope."""
        try:
            result = await anyio.to_thread.run_sync(lambda: fn(*args))
        except Exception as exc:  # SDK raises transport errors from requests
            raise self._provider_error(str(exc) or exc.__class__.__name__, operation=operation, request=log_request) from exc
        status = int((result or {}).get("status") or 0)
        body = (result or {}).get("response") or {}
        if not 200 <= status < 300:
            message, code = self._sdk_error(body)
            raise self._provider_error(
                message or f"HTTP {status}",
                operation=operation,
                status_code=status or None,
                provider_code=code,
                response_body=body,
                request=log_request,
            )
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _sdk_error(body: Any) -> tuple[Optional[str], Optional[str]]:
        if not isinstance(body, dict):
            return (str(body) if body else None), None
        code = body.get("error")
        causes = body.get("cause") or []
        if isinstance(causes, list) and causes and isinstance(causes[0], dict):
            code = causes[0].get("code") or code
        return body.get("message") or body.get("error"), (str(code) if code is not None else None)

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResponse:  # type: ignore[override]
        sdk = self._get_sdk()
        cfg = self._settings.mercadopago
        base = self._public_url("")
        reference = req.order_id or f"direct-{req.organization_id}-{req.user_id}"
        preference: dict[str, Any] = {
            "items": [
                {
                    "id": reference,
                    "title": req.description or (f"Order {req.order_id}" if req.order_id else "Direct payment"),
                    "quantity": 1,
                    "unit_price": float(format_amount(req.amount, req.currency)),
                    "currency_id": req.currency,
                }
            ],
            "back_urls": {
                "success": f"{base}/payments/return/success",
                "failure": f"{base}/payments/return/failure",
                "pending": f"{base}/payments/return/pending",
            },
            "external_reference": reference,
            "notification_url": f"{base}/api/v1/payments/webhooks/mercadopago",
            "metadata": {
                "user_id": req.user_id,
                "organization_id": req.organization_id,
                "order_id": req.order_id,
            },
        }
        # auto_return is rejected by the API for non-https back URLs
        if base.startswith("https://"):
            preference["auto_return"] = "approved"
        if cfg.statement_descriptor:
            preference["statement_descriptor"] = cfg.statement_descriptor

        body = await self._call(
            sdk.preference().create,
            preference,
            operation="payment_intent",
            log_request={"external_reference": reference, "amount": str(req.amount), "currency": req.currency},
        )
        preference_id = body.get("id")
        init_point = body.get("sandbox_init_point") if cfg.sandbox_mode else None
        init_point = init_point or body.get("init_point")
        if not preference_id or not init_point:
            raise self._provider_error(
                "response missing id or init_point",
                operation="payment_intent",
                response_body=body,
            )
        self._log(
            "payment_intent_created",
            preference_id=preference_id,
            external_reference=reference,
            organization_id=req.organization_id,
        )
        return PaymentIntentResponse(
            status=self.map_status("pending"),
            gateway_payment_intent_id=str(preference_id),
            approval_url=init_point,
            preference_id=str(preference_id),
        )

    @staticmethod
    def _notification(request: WebhookRequest) -> tuple[Optional[str], Optional[str], dict[str, Any]]:
        try:
            payload = request.json_body() if request.body else {}
        except ValueError:
            payload = {}
        payload = payload if isinstance(payload, dict) else {}
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        topic = request.query.get("topic") or request.query.get("type") or payload.get("type") or payload.get("topic")
        resource_id = request.query.get("id") or request.query.get("data.id") or data.get("id") or payload.get("id")
        return topic, (str(resource_id) if resource_id not in (None, "") else None), payload

    def _verify_signature(self, request: WebhookRequest, resource_id: str) -> None:
        cfg = self._settings.mercadopago
        x_signature = request.header("x-signature")
        if not cfg.webhook_secret or not x_signature:
            return
        valid = verify_mercadopago_signature(
            x_signature,
            request.header("x-request-id"),
            request.query.get("data.id") or resource_id,
            cfg.webhook_secret,
            tolerance_seconds=self._settings.webhook.tolerance_seconds,
        )
        if not valid:
            self._log("webhook_signature_invalid", resource_id=resource_id)
            raise PaymentSignatureError(provider=self.display_name)

    async def _resolve_preference_id(self, sdk: Any, payment: dict[str, Any]) -> Optional[str]:
        if payment.get("preference_id"):
            return str(payment["preference_id"])
        order = payment.get("order") or {}
        merchant_order_id = order.get("id") if isinstance(order, dict) else None
        if not merchant_order_id:
            return None
        merchant_order = await self._call(sdk.merchant_order().get, merchant_order_id, operation="merchant_order_lookup")
        preference_id = merchant_order.get("preference_id")
        return str(preference_id) if preference_id else None

    async def process_webhook_event(self, request: WebhookRequest) -> WebhookEvent:  # type: ignore[override]
        topic, resource_id, payload = self._notification(request)
        missing = [name for name, value in (("topic", topic), ("id", resource_id)) if not value]
        if missing:
            raise WebhookPayloadError(missing, provider=self.display_name)
        if topic != PAYMENT_TOPIC:
            raise WebhookUnhandledEventError(topic, provider=self.display_name)
        self._verify_signature(request, resource_id)

        sdk = self._get_sdk()
        payment = await self._call(sdk.payment().get, resource_id, operation="payment_lookup")
        if not payment.get("status"):
            raise self._provider_error(
                f"payment {resource_id} has no status",
                operation="payment_lookup",
                response_body=payment,
            )
        preference_id = await self._resolve_preference_id(sdk, payment)
        metadata = payment.get("metadata") or {}
        transaction_id = str(payment.get("id") or resource_id)
        provider_status = str(payment["status"])

        return WebhookEvent(
            gateway=self.gateway,
            gateway_event_id=f"{topic}-{transaction_id}-{provider_status}",
            type=str(payload.get("action") or topic),
            status=self.map_status(provider_status),
            gateway_transaction_id=transaction_id,
            gateway_payment_intent_id=preference_id,
            amount=to_decimal(payment.get("transaction_amount")),
            currency=payment.get("currency_id") or "",
            order_id=metadata.get("order_id") or None,
            organization_id=metadata.get("organization_id") or None,
            metadata={
                "notification": {"topic": topic, "id": resource_id},
                "status_detail": payment.get("status_detail"),
                "external_reference": payment.get("external_reference"),
                "payment_method_id": payment.get("payment_method_id"),
                "payer_email": (payment.get("payer") or {}).get("email"),
            },
        )
