from decimal import Decimal
from urllib.parse import parse_qsl, urlencode

import httpx
import pytest

from application.dtos.payments import CreatePaymentIntent, WebhookRequest
from domain.payment.entity import GatewayType, PaymentStatus
from infrastructure.external.payments.exceptions import (
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentSignatureError,
    WebhookPayloadError,
)
from infrastructure.external.payments.flow_client import FlowClient
from infrastructure.external.payments.signatures import flow_sign, verify_flow_signature


def _intent(order_id="ord_1"):
    return CreatePaymentIntent(
        order_id=order_id,
        amount=Decimal("19990"),
        currency="CLP",
        user_id="u1",
        organization_id="org1",
    )


def _signed_form(fields: dict, secret: str = "flow-secret") -> WebhookRequest:
    body = dict(fields)
    body["s"] = flow_sign(body, secret)
    return WebhookRequest(
        method="POST",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        body=urlencode(body).encode(),
    )


@pytest.mark.asyncio
async def test_create_payment_intent_signs_form_and_returns_approval_url(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["form"] = dict(parse_qsl(request.content.decode()))
        return httpx.Response(
            200,
            json={"url": "https://sandbox.flow.cl/app/web/pay.php", "token": "tok_123", "flowOrder": 9876},
        )

    client = FlowClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    intent = await client.create_payment_intent(_intent())
    await client.aclose()

    assert seen["url"] == "https://www.flow.cl/api/payment/create"
    form = seen["form"]
    assert form["commerceOrder"] == "order_ord_1"
    assert form["amount"] == "19990"
    assert form["apiKey"] == "flow-api-key"
    assert form["urlConfirmation"] == "https://shop.example.com/api/v1/payments/webhooks/flow"
    assert verify_flow_signature(form, "flow-secret")

    assert intent.status == PaymentStatus.PENDING
    assert intent.gateway_payment_intent_id == "9876"
    assert intent.approval_url == "https://sandbox.flow.cl/app/web/pay.php?token=tok_123"
    assert intent.redirect_url == intent.approval_url


@pytest.mark.asyncio
async def test_create_payment_intent_without_order_synthesizes_reference(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(parse_qsl(request.content.decode()))
        return httpx.Response(200, json={"url": "https://flow/pay", "token": "t"})

    client = FlowClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    intent = await client.create_payment_intent(_intent(order_id=None))

    assert seen["commerceOrder"].startswith("direct_")
    assert intent.gateway_payment_intent_id == "t"


@pytest.mark.asyncio
async def test_create_payment_intent_surfaces_provider_message(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": 108, "message": "Invalid apiKey"})

    client = FlowClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(PaymentProviderError) as exc_info:
        await client.create_payment_intent(_intent())
    assert exc_info.value.message == "Flow error: Invalid apiKey"
    assert exc_info.value.provider_code == "108"
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_create_payment_intent_rejects_incomplete_success_body(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"flowOrder": 1})

    client = FlowClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(PaymentProviderError, match="Flow error"):
        await client.create_payment_intent(_intent())


@pytest.mark.asyncio
async def test_missing_credentials_fail_on_first_use_not_construction(empty_settings):
    client = FlowClient(empty_settings)
    with pytest.raises(PaymentConfigurationError) as exc_info:
        await client.create_payment_intent(_intent())
    assert "FLOW__API_KEY" in exc_info.value.message


def test_sandbox_mode_selects_sandbox_url_and_keys(settings):
    settings.flow.sandbox_mode = True
    settings.flow.sandbox_api_key = "sbx-key"
    settings.flow.sandbox_secret_key = "sbx-secret"
    client = FlowClient(settings)
    assert client.api_url == "https://sandbox.flow.cl/api"
    assert client._credentials() == ("sbx-key", "sbx-secret")


@pytest.mark.asyncio
async def test_webhook_paid_confirmation(settings):
    request = _signed_form(
        {"token": "tok_123", "status": "1", "flowOrder": "9876", "commerceOrder": "order_ord_1", "amount": "19990"}
    )
    event = await FlowClient(settings).process_webhook_event(request)

    assert event.gateway == GatewayType.FLOW
    assert event.status == PaymentStatus.SUCCEEDED
    assert event.gateway_event_id == "tok_123-1"
    assert event.gateway_payment_intent_id == "9876"
    assert event.order_id == "ord_1"
    assert event.organization_id is None
    assert event.amount == Decimal("19990")
    assert event.currency == "CLP"
    assert "s" not in event.metadata


@pytest.mark.asyncio
async def test_webhook_tolerates_missing_amount(settings):
    request = _signed_form({"token": "tok_1", "status": "2", "commerceOrder": "direct_abc"})
    event = await FlowClient(settings).process_webhook_event(request)
    assert event.amount == Decimal("0")
    assert event.order_id is None
    assert event.gateway_payment_intent_id == "tok_1"


@pytest.mark.asyncio
async def test_webhook_rejects_tampered_amount(settings):
    fields = {"token": "tok_123", "status": "1", "amount": "19990"}
    fields["s"] = flow_sign(fields, "flow-secret")
    fields["amount"] = "1"
    request = WebhookRequest(body=urlencode(fields).encode())
    with pytest.raises(PaymentSignatureError):
        await FlowClient(settings).process_webhook_event(request)


@pytest.mark.asyncio
async def test_webhook_rejects_tampered_signature(settings):
    fields = {"token": "tok_123", "status": "1", "amount": "19990", "s": "f" * 64}
    with pytest.raises(PaymentSignatureError):
        await FlowClient(settings).process_webhook_event(WebhookRequest(body=urlencode(fields).encode()))


@pytest.mark.asyncio
async def test_webhook_missing_token_is_rejected(settings):
    request = _signed_form({"status": "1", "amount": "19990"})
    with pytest.raises(WebhookPayloadError) as exc_info:
        await FlowClient(settings).process_webhook_event(request)
    assert "missing required field(s)" in exc_info.value.message
    assert exc_info.value.missing == ["token"]


@pytest.mark.asyncio
async def test_webhook_non_utf8_body_is_a_payload_error(settings):
    request = WebhookRequest(body=b"token=\xff\xfe&status=1&s=ab")
    with pytest.raises(WebhookPayloadError) as exc_info:
        await FlowClient(settings).process_webhook_event(request)
    assert exc_info.value.missing == ["body"]
    assert exc_info.value.message.startswith("malformed form body")
