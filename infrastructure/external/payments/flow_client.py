"""
Flow adapter (card/transfer gateway, Chile).

Every outgoing request is a form signed with HMAC-SHA256 over the sorted
`key+value` params; confirmations arrive as a signed form POST and are
verified the same way before any field is trusted.
"""
from __future__ import annotations

import uuid
from typing import Any, Optional

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
)
from infrastructure.external.payments.signatures import (
    FLOW_SIGNATURE_PARAM,
    flow_sign,
    verify_flow_signature,
)

FLOW_PRODUCTION_URL = "https://www.flow.cl/api"
FLOW_SANDBOX_URL = "https://sandbox.flow.cl/api"
ORDER_PREFIX = "order_"
DIRECT_PREFIX = "direct_"


class FlowClient(BasePaymentClient):
    gateway = GatewayType.FLOW
    display_name = "Flow"

    def _credentials(self) -> tuple[str, str]:
        cfg = self._settings.flow
        if cfg.sandbox_mode:
            api_key = self._require(cfg.sandbox_api_key or cfg.api_key, "FLOW__SANDBOX_API_KEY")
            secret = self._require(cfg.sandbox_secret_key or cfg.secret_key, "FLOW__SANDBOX_SECRET_KEY")
        else:
            api_key = self._require(cfg.api_key, "FLOW__API_KEY")
            secret = self._require(cfg.secret_key, "FLOW__SECRET_KEY")
        return api_key, secret

    def _secret(self) -> str:
        return self._credentials()[1]

    @property
    def api_url(self) -> str:
        cfg = self._settings.flow
        if cfg.api_url:
            return cfg.api_url.rstrip("/")
        return FLOW_SANDBOX_URL if cfg.sandbox_mode else FLOW_PRODUCTION_URL

    @staticmethod
    def commerce_order(order_id: Optional[str]) -> str:
        if order_id:
            return f"{ORDER_PREFIX}{order_id}"
        return f"{DIRECT_PREFIX}{uuid.uuid4().hex}"

    @staticmethod
    def order_id_from_commerce_order(commerce_order: Optional[str]) -> Optional[str]:
        if commerce_order and commerce_order.startswith(ORDER_PREFIX):
            return commerce_order[len(ORDER_PREFIX):] or None
        return None

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResponse:  # type: ignore[override]
        api_key, secret = self._credentials()
        commerce_order = self.commerce_order(req.order_id)
        params: dict[str, Any] = {
            "apiKey": api_key,
            "commerceOrder": commerce_order,
            "subject": req.description or (f"Pago orden {req.order_id}" if req.order_id else "Pago directo"),
            "currency": req.currency,
            "amount": format_amount(req.amount, req.currency),
            "email": self._settings.flow.default_email,
            "urlConfirmation": self._public_url("/api/v1/payments/webhooks/flow"),
            "urlReturn": self._public_url("/payments/return"),
        }
        params[FLOW_SIGNATURE_PARAM] = flow_sign(params, secret)
        log_params = {k: v for k, v in params.items() if k not in ("apiKey", FLOW_SIGNATURE_PARAM)}

        data = await self._request_json(
            "POST",
            f"{self.api_url}/payment/create",
            operation="payment_intent",
            data=params,
            log_request=log_params,
        )
        data = data if isinstance(data, dict) else {}
        token, url = data.get("token"), data.get("url")
        if not token or not url:
            raise self._provider_error(
                "response missing token or url",
                operation="payment_intent",
                response_body=data,
                request=log_params,
            )
        intent_id = str(data.get("flowOrder") or token)
        self._log(
            "payment_intent_created",
            commerce_order=commerce_order,
            gateway_payment_intent_id=intent_id,
            organization_id=req.organization_id,
        )
        return PaymentIntentResponse(
            status=self.map_status("pending"),
            gateway_payment_intent_id=intent_id,
            approval_url=f"{url}?token={token}",
            client_secret=str(token),
        )

    async def process_webhook_event(self, request: WebhookRequest) -> WebhookEvent:  # type: ignore[override]
        try:
            fields = request.form()
        except UnicodeDecodeError as exc:
            raise WebhookPayloadError(["body"], provider=self.display_name, message="malformed form body") from exc
        self._require_fields(fields, "token", "status", FLOW_SIGNATURE_PARAM)
        if not verify_flow_signature(fields, self._secret()):
            self._log("webhook_signature_invalid", token=fields.get("token"))
            raise PaymentSignatureError(provider=self.display_name)

        token = fields["token"]
        provider_status = fields["status"]
        commerce_order = fields.get("commerceOrder")
        metadata = {k: v for k, v in fields.items() if k != FLOW_SIGNATURE_PARAM}
        return WebhookEvent(
            gateway=self.gateway,
            gateway_event_id=f"{token}-{provider_status}",
            type="payment.confirmation",
            status=self.map_status(provider_status),
            gateway_transaction_id=fields.get("flowOrder") or token,
            gateway_payment_intent_id=fields.get("flowOrder") or token,
            amount=to_decimal(fields.get("amount")),
            currency=fields.get("currency") or "CLP",
            order_id=self.order_id_from_commerce_order(commerce_order),
            organization_id=None,
            metadata=metadata,
        )
