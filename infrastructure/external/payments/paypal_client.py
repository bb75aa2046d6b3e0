"""
PayPal adapter (wallet gateway) over the Orders v2 REST API.

A fresh OAuth2 client-credentials token is fetched before every API call;
tokens are never cached or logged.
"""
from __future__ import annotations

from typing import Any, Optional

from application.dtos.payments import (
    CreatePaymentIntent,
    PaymentIntentResponse,
    WebhookEvent,
    WebhookRequest,
)
from domain.payment.entity import GatewayType, PaymentStatus
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
from infrastructure.external.payments.signatures import basic_auth_header

ORDER_EVENTS = {"CHECKOUT.ORDER.COMPLETED", "CHECKOUT.ORDER.APPROVED"}
REFUND_EVENT = "PAYMENT.CAPTURE.REFUNDED"
CAPTURE_EVENTS = {"PAYMENT.CAPTURE.COMPLETED", "PAYMENT.CAPTURE.DENIED", REFUND_EVENT}
HANDLED_EVENTS = ORDER_EVENTS | CAPTURE_EVENTS
DEFAULT_REFERENCE = "default"

_TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}

PAYPAL_PRODUCTION_URL = "https://api-m.paypal.com"
PAYPAL_SANDBOX_URL = "https://api-m.sandbox.paypal.com"


def _capture_id_from_links(resource: dict[str, Any]) -> Optional[str]:
    """Capture id from the refund's `up` link (`.../v2/payments/captures/{id}`)."""
    for link in resource.get("links") or []:
        if not isinstance(link, dict) or link.get("rel") != "up":
            continue
        path = str(link.get("href") or "").split("?", 1)[0].rstrip("/")
        head, _, capture_id = path.rpartition("/")
        if head.endswith("/captures") and capture_id:
            return capture_id
    return None


class PayPalClient(BasePaymentClient):
    gateway = GatewayType.PAYPAL
    display_name = "PayPal"

    @property
    def api_base_url(self) -> str:
        cfg = self._settings.paypal
        if cfg.api_base_url:
            return cfg.api_base_url.rstrip("/")
        return PAYPAL_SANDBOX_URL if cfg.sandbox_mode else PAYPAL_PRODUCTION_URL

    async def _access_token(self) -> str:
        cfg = self._settings.paypal
        client_id = self._require(cfg.client_id, "PAYPAL__CLIENT_ID")
        client_secret = self._require(cfg.client_secret, "PAYPAL__CLIENT_SECRET")
        data = await self._request_json(
            "POST",
            f"{self.api_base_url}/v1/oauth2/token",
            operation="oauth_token",
            headers={
                "Authorization": basic_auth_header(client_id, client_secret),
                "Accept": "application/json",
            },
            data={"grant_type": "client_credentials"},
        )
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise self._provider_error("token response missing access_token", operation="oauth_token")
        return token

    async def _authorized_json(self, path: str, payload: dict[str, Any], *, operation: str, log_request: Any = None) -> dict:
        token = await self._access_token()
        data = await self._request_json(
            "POST",
            f"{self.api_base_url}{path}",
            operation=operation,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            json=payload,
            log_request=log_request,
        )
        return data if isinstance(data, dict) else {}

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResponse:  # type: ignore[override]
        purchase_unit: dict[str, Any] = {
            "reference_id": req.order_id or DEFAULT_REFERENCE,
            "amount": {
                "currency_code": req.currency,
                "value": format_amount(req.amount, req.currency),
            },
            "custom_id": req.organization_id,
        }
        if req.order_id:
            purchase_unit["invoice_id"] = req.order_id
        if req.description:
            purchase_unit["description"] = req.description
        application_context: dict[str, Any] = {
            "return_url": self._public_url("/payments/return/success"),
            "cancel_url": self._public_url("/payments/return/cancel"),
            "user_action": "PAY_NOW",
            "shipping_preference": "NO_SHIPPING",
        }
        if self._settings.paypal.brand_name:
            application_context["brand_name"] = self._settings.paypal.brand_name
        body = {
            "intent": "CAPTURE",
            "purchase_units": [purchase_unit],
            "application_context": application_context,
        }

        order = await self._authorized_json("/v2/checkout/orders", body, operation="payment_intent", log_request=body)
        order_id = order.get("id")
        approval_url = next(
            (link.get("href") for link in order.get("links") or [] if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if not order_id or not approval_url:
            raise self._provider_error(
                "order response missing id or approve link",
                operation="payment_intent",
                response_body=order,
            )
        self._log(
            "payment_intent_created",
            paypal_order_id=order_id,
            order_id=req.order_id,
            organization_id=req.organization_id,
        )
        return PaymentIntentResponse(
            status=self.map_status(order.get("status") or "CREATED"),
            gateway_payment_intent_id=str(order_id),
            approval_url=approval_url,
        )

    async def _verify_signature(self, request: WebhookRequest, event: dict[str, Any]) -> None:
        webhook_id = self._settings.paypal.webhook_id
        if not webhook_id:
            return
        headers = {field: request.header(name) for field, name in _TRANSMISSION_HEADERS.items()}
        if not all(headers.values()):
            raise PaymentSignatureError(
                provider=self.display_name,
                details={"missing_headers": [k for k, v in headers.items() if not v]},
            )
        result = await self._authorized_json(
            "/v1/notifications/verify-webhook-signature",
            {**headers, "webhook_id": webhook_id, "webhook_event": event},
            operation="webhook_verification",
        )
        if result.get("verification_status") != "SUCCESS":
            self._log("webhook_signature_invalid", event_id=event.get("id"))
            raise PaymentSignatureError(provider=self.display_name)

    async def process_webhook_event(self, request: WebhookRequest) -> WebhookEvent:  # type: ignore[override]
        try:
            event = request.json_body()
        except ValueError as exc:
            raise WebhookPayloadError(["body"], provider=self.display_name, message="malformed JSON body") from exc
        if not isinstance(event, dict):
            raise WebhookPayloadError(["body"], provider=self.display_name, message="malformed JSON body")
        self._require_fields(event, "id", "event_type", "resource")
        event_type = event["event_type"]
        if event_type not in HANDLED_EVENTS:
            raise WebhookUnhandledEventError(event_type, provider=self.display_name)
        await self._verify_signature(request, event)

        resource = event["resource"] if isinstance(event["resource"], dict) else {}
        if not resource.get("id"):
            raise WebhookPayloadError(["resource.id"], provider=self.display_name)
        if event_type in ORDER_EVENTS:
            unit = (resource.get("purchase_units") or [{}])[0]
            captures = ((unit.get("payments") or {}).get("captures")) or []
            intent_id = resource.get("id")
            transaction_id = captures[0].get("id") if captures else resource.get("id")
            amount = unit.get("amount") or {}
            custom_id, invoice_id = unit.get("custom_id"), unit.get("invoice_id")
            reference = unit.get("reference_id")
        else:
            related = ((resource.get("supplementary_data") or {}).get("related_ids")) or {}
            intent_id = related.get("order_id")
            transaction_id = resource.get("id")
            if event_type == REFUND_EVENT:
                # the refund points back at its capture, which is the stored transaction
                transaction_id = related.get("capture_id") or _capture_id_from_links(resource) or transaction_id
            amount = resource.get("amount") or {}
            custom_id, invoice_id = resource.get("custom_id"), resource.get("invoice_id")
            reference = None

        if event_type == REFUND_EVENT:
            # the resource is the refund itself, whose own status reads COMPLETED
            status = PaymentStatus.REFUNDED
        else:
            status = self.map_status(resource.get("status") or "")

        order_id = invoice_id or (reference if reference and reference != DEFAULT_REFERENCE else None)
        return WebhookEvent(
            gateway=self.gateway,
            gateway_event_id=str(event["id"]),
            type=event_type,
            status=status,
            gateway_transaction_id=str(transaction_id) if transaction_id else None,
            gateway_payment_intent_id=str(intent_id) if intent_id else None,
            amount=to_decimal(amount.get("value")),
            currency=amount.get("currency_code") or "",
            order_id=order_id,
            organization_id=custom_id or None,
            metadata={
                "resource_type": event.get("resource_type"),
                "summary": event.get("summary"),
                "resource_status": resource.get("status"),
                "create_time": event.get("create_time"),
                "refund_id": resource.get("id") if event_type == REFUND_EVENT else None,
            },
        )
