import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import CreatePaymentIntent, WebhookRequest
from domain.payment.entity import GatewayType, PaymentStatus
from infrastructure.external.payments import nowpayments_client
from infrastructure.external.payments.exceptions import (
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentSignatureError,
    WebhookPayloadError,
)
from infrastructure.external.payments.nowpayments_client import NowPaymentsClient
from infrastructure.external.payments.signatures import nowpayments_signature


def _intent(order_id=None):
    return CreatePaymentIntent(
        order_id=order_id,
        amount=Decimal("49.9"),
        currency="USD",
        user_id="u1",
        organization_id="org1",
    )


def _ipn(payload: dict, secret="np-ipn-secret", signature=None) -> WebhookRequest:
    raw = json.dumps(payload, separators=(",", ":")).encode()
    headers = {"x-nowpayments-sig": signature if signature is not None else nowpayments_signature(raw, secret)}
    return WebhookRequest(headers=headers, body=raw)


IPN = {
    "payment_id": 5077125051,
    "invoice_id": 4522625843,
    "payment_status": "finished",
    "price_amount": 49.9,
    "price_currency": "usd",
    "pay_currency": "btc",
    "actually_paid": 0.0017,
    "order_id": "ord_9",
}


@pytest.mark.asyncio
async def test_create_invoice(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["api_key"] = request.headers["x-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "4522625843", "invoice_url": "https://nowpayments.io/payment/?iid=4522625843"})

    client = NowPaymentsClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    intent = await client.create_payment_intent(_intent("ord_9"))

    assert seen["url"] == "https://api.nowpayments.io/v1/invoice"
    assert seen["api_key"] == "np-api-key"
    assert seen["body"]["price_amount"] == 49.9
    assert seen["body"]["price_currency"] == "usd"
    assert seen["body"]["order_id"] == "ord_9"
    assert seen["body"]["ipn_callback_url"] == "https://shop.example.com/api/v1/payments/webhooks/nowpayments"
    assert intent.status == PaymentStatus.PENDING
    assert intent.gateway_payment_intent_id == "4522625843"
    assert intent.invoice_url == "https://nowpayments.io/payment/?iid=4522625843"
    assert intent.redirect_url == intent.invoice_url


@pytest.mark.asyncio
async def test_create_invoice_without_order_encodes_organization(settings, monkeypatch):
    monkeypatch.setattr(nowpayments_client.time, "time", lambda: 1760864400.5)
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"id": "1", "invoice_url": "https://nowpayments.io/payment/?iid=1"})

    client = NowPaymentsClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await client.create_payment_intent(_intent())
    assert seen["order_id"] == "ORG-org1-1760864400500"
    assert NowPaymentsClient.organization_from_order_id(seen["order_id"]) == "org1"


@pytest.mark.asyncio
async def test_create_invoice_provider_error(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"statusCode": 403, "code": "INVALID_API_KEY", "message": "Invalid api key"})

    client = NowPaymentsClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(PaymentProviderError) as exc_info:
        await client.create_payment_intent(_intent("ord_9"))
    assert exc_info.value.message == "NOWPayments error: Invalid api key"
    assert exc_info.value.provider_code == "INVALID_API_KEY"


@pytest.mark.asyncio
async def test_create_invoice_transport_error(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = NowPaymentsClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(PaymentProviderError, match="NOWPayments error: timed out"):
        await client.create_payment_intent(_intent("ord_9"))


@pytest.mark.asyncio
async def test_missing_api_key(empty_settings):
    with pytest.raises(PaymentConfigurationError, match="NOWPAYMENTS__API_KEY"):
        await NowPaymentsClient(empty_settings).create_payment_intent(_intent())


@pytest.mark.asyncio
async def test_signed_ipn_finished(settings):
    event = await NowPaymentsClient(settings).process_webhook_event(_ipn(IPN))
    assert event.gateway == GatewayType.NOWPAYMENTS
    assert event.status == PaymentStatus.SUCCEEDED
    assert event.gateway_event_id == "5077125051-finished"
    assert event.gateway_transaction_id == "5077125051"
    assert event.gateway_payment_intent_id == "4522625843"
    assert event.amount == Decimal("49.9")
    assert event.currency == "USD"
    assert event.order_id == "ord_9"
    assert event.organization_id is None


@pytest.mark.asyncio
async def test_partially_paid_is_pending_and_warned(settings, monkeypatch):
    warnings = []
    monkeypatch.setattr(nowpayments_client.logger, "warning", lambda event, **kw: warnings.append(event))
    event = await NowPaymentsClient(settings).process_webhook_event(_ipn(dict(IPN, payment_status="partially_paid")))
    assert event.status == PaymentStatus.PENDING
    assert event.gateway_event_id == "5077125051-partially_paid"
    assert "payment_partially_paid" in warnings


@pytest.mark.asyncio
async def test_ipn_recovers_organization_from_direct_order(settings):
    event = await NowPaymentsClient(settings).process_webhook_event(_ipn(dict(IPN, order_id="ORG-org-42-1760864400123")))
    assert event.organization_id == "org-42"
    assert event.order_id is None


@pytest.mark.asyncio
async def test_tampered_body_is_rejected(settings):
    raw = json.dumps(IPN, separators=(",", ":")).encode()
    signature = nowpayments_signature(raw, "np-ipn-secret")
    tampered = raw.replace(b"49.9", b"99.9")
    request = WebhookRequest(headers={"x-nowpayments-sig": signature}, body=tampered)
    with pytest.raises(PaymentSignatureError):
        await NowPaymentsClient(settings).process_webhook_event(request)


@pytest.mark.asyncio
async def test_wrong_secret_is_rejected(settings):
    with pytest.raises(PaymentSignatureError):
        await NowPaymentsClient(settings).process_webhook_event(_ipn(IPN, secret="another-secret"))


@pytest.mark.asyncio
async def test_missing_signature_header(settings):
    request = WebhookRequest(body=json.dumps(IPN).encode())
    with pytest.raises(PaymentSignatureError, match="missing signature header"):
        await NowPaymentsClient(settings).process_webhook_event(request)


@pytest.mark.asyncio
async def test_missing_payment_id(settings):
    payload = {k: v for k, v in IPN.items() if k != "payment_id"}
    with pytest.raises(WebhookPayloadError) as exc_info:
        await NowPaymentsClient(settings).process_webhook_event(_ipn(payload))
    assert exc_info.value.missing == ["payment_id"]


@pytest.mark.asyncio
async def test_missing_ipn_secret(empty_settings):
    with pytest.raises(PaymentConfigurationError, match="NOWPAYMENTS__IPN_SECRET"):
        await NowPaymentsClient(empty_settings).process_webhook_event(_ipn(IPN))
