"""
NOWPayments adapter (crypto gateway): hosted invoices plus signed IPN callbacks.

The IPN signature (HMAC-SHA512, `x-nowpayments-sig`) covers the raw body, so it
is checked on the untouched bytes before the JSON is parsed.
"""
from __future__ import annotations

import re
import time
from typing import Optional

from application.dtos.payments import (
    CreatePaymentIntent,
    PaymentIntentResponse,
    WebhookEvent,
    WebhookRequest,
)
from core.logging_config import get_logger
from domain.payment.entity import GatewayType, PaymentStatus
from infrastructure.external.payments.base import (
    BasePaymentClient,
    format_amount,
    to_decimal,
)
from infrastructure.external.payments.exceptions import (
    PaymentSignatureError,
    WebhookPayloadError,
)
from infrastructure.external.payments.signatures import verify_nowpayments_signature

NOWPAYMENTS_PRODUCTION_URL = "https://api.nowpayments.io/v1"
NOWPAYMENTS_SANDBOX_URL = "https://api-sandbox.nowpayments.io/v1"
SIGNATURE_HEADER = "x-nowpayments-sig"
PARTIALLY_PAID = "partially_paid"
_ORG_ORDER_RE = re.compile(r"^ORG-(?P<org>.+)-(?P<ts>\d+)$")

logger = get_logger(__name__)


class NowPaymentsClient(BasePaymentClient):
    gateway = GatewayType.NOWPAYMENTS
    display_name = "NOWPayments"

    @property
    def api_url(self) -> str:
        return NOWPAYMENTS_SANDBOX_URL if self._settings.nowpayments.sandbox_mode else NOWPAYMENTS_PRODUCTION_URL

    def _api_key(self) -> str:
        cfg = self._settings.nowpayments
        if cfg.sandbox_mode:
            return self._require(cfg.sandbox_api_key, "NOWPAYMENTS__SANDBOX_API_KEY")
        return self._require(cfg.api_key, "NOWPAYMENTS__API_KEY")

    @staticmethod
    def direct_order_id(organization_id: str) -> str:
        return f"ORG-{organization_id}-{int(time.time() * 1000)}"

    @staticmethod
    def organization_from_order_id(order_id: Optional[str]) -> Optional[str]:
        match = _ORG_ORDER_RE.match(order_id or "")
        return match.group("org") if match else None

    def map_status(self, provider_status: str) -> PaymentStatus:
        # Funds moved but not settled in full; stays pending until reconciled
        if str(provider_status or "").strip().lower() == PARTIALLY_PAID:
            logger.warning("payment_partially_paid", gateway=self.gateway.value)
        return super().map_status(provider_status)

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResponse:  # type: ignore[override]
        api_key = self._api_key()
        order_id = req.order_id or self.direct_order_id(req.organization_id)
        body = {
            "price_amount": float(format_amount(req.amount, req.currency)),
            "price_currency": req.currency.lower(),
            "order_id": order_id,
            "order_description": req.description or self._settings.nowpayments.order_description,
            "ipn_callback_url": self._public_url("/api/v1/payments/webhooks/nowpayments"),
            "success_url": self._public_url("/payments/return/success"),
            "cancel_url": self._public_url("/payments/return/cancel"),
        }
        data = await self._request_json(
            "POST",
            f"{self.api_url}/invoice",
            operation="payment_intent",
            headers={"x-api-key": api_key, "Content-Type": "application/json"},
            json=body,
            log_request=body,
        )
        data = data if isinstance(data, dict) else {}
        invoice_id, invoice_url = data.get("id"), data.get("invoice_url")
        if not invoice_id or not invoice_url:
            raise self._provider_error(
                "response missing id or invoice_url",
                operation="payment_intent",
                response_body=data,
                request=body,
            )
        self._log(
            "payment_intent_created",
            invoice_id=invoice_id,
            order_id=order_id,
            organization_id=req.organization_id,
        )
        return PaymentIntentResponse(
            status=self.map_status("waiting"),
            gateway_payment_intent_id=str(invoice_id),
            invoice_url=invoice_url,
        )

    async def process_webhook_event(self, request: WebhookRequest) -> WebhookEvent:  # type: ignore[override]
        secret = self._require(self._settings.nowpayments.ipn_secret, "NOWPAYMENTS__IPN_SECRET")
        signature = request.header(SIGNATURE_HEADER)
        if not signature:
            raise PaymentSignatureError("missing signature header", provider=self.display_name)
        if not verify_nowpayments_signature(request.body, signature, secret):
            self._log("webhook_signature_invalid")
            raise PaymentSignatureError(provider=self.display_name)

        try:
            ipn = request.json_body()
        except ValueError as exc:
            raise WebhookPayloadError(["body"], provider=self.display_name, message="malformed JSON body") from exc
        ipn = ipn if isinstance(ipn, dict) else {}
        self._require_fields(ipn, "payment_id", "payment_status")

        payment_id = str(ipn["payment_id"])
        provider_status = str(ipn["payment_status"])
        order_id = ipn.get("order_id")
        organization_id = self.organization_from_order_id(order_id)
        invoice_id = ipn.get("invoice_id")
        return WebhookEvent(
            gateway=self.gateway,
            gateway_event_id=f"{payment_id}-{provider_status}",
            type=f"payment.{provider_status}",
            status=self.map_status(provider_status),
            gateway_transaction_id=payment_id,
            gateway_payment_intent_id=str(invoice_id) if invoice_id else payment_id,
            amount=to_decimal(ipn.get("price_amount")),
            currency=ipn.get("price_currency") or "",
            order_id=None if organization_id else (str(order_id) if order_id else None),
            organization_id=organization_id,
            metadata={
                "pay_currency": ipn.get("pay_currency"),
                "pay_amount": ipn.get("pay_amount"),
                "pay_address": ipn.get("pay_address"),
                "actually_paid": ipn.get("actually_paid"),
                "outcome_amount": ipn.get("outcome_amount"),
                "outcome_currency": ipn.get("outcome_currency"),
                "order_id": order_id,
            },
        )
