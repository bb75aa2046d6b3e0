import json
from urllib.parse import urlencode

import httpx
import pytest
import pytest_asyncio

from api.dependencies import get_payment_settings, get_uow_factory
from infrastructure.external.payments.signatures import flow_sign, nowpayments_signature
from main import app


@pytest_asyncio.fixture
async def api(settings, uow_factory):
    app.dependency_overrides[get_uow_factory] = lambda: uow_factory
    app.dependency_overrides[get_payment_settings] = lambda: settings
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()


def _flow_form(secret="flow-secret"):
    fields = {"token": "tok_123", "status": "1", "flowOrder": "9876", "amount": "19990"}
    fields["s"] = flow_sign(fields, secret)
    return urlencode(fields)


FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


@pytest.mark.asyncio
async def test_health(api):
    resp = await api.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}


@pytest.mark.asyncio
async def test_signed_webhook_is_acknowledged(api):
    resp = await api.post("/api/v1/payments/webhooks/flow", content=_flow_form(), headers=FORM_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 0
    assert body["data"]["gateway_event_id"] == "tok_123-1"
    assert body["data"]["message"] == "payment_not_found"

    again = await api.post("/api/v1/payments/webhooks/flow", content=_flow_form(), headers=FORM_HEADERS)
    assert again.status_code == 200
    assert again.json()["data"]["duplicate"] is True


@pytest.mark.asyncio
async def test_bad_signature_is_401(api):
    resp = await api.post("/api/v1/payments/webhooks/flow", content=_flow_form("wrong"), headers=FORM_HEADERS)
    assert resp.status_code == 401
    assert resp.json()["error"]["type"] == "PaymentSignatureError"


@pytest.mark.asyncio
async def test_missing_fields_is_400(api):
    resp = await api.post("/api/v1/payments/webhooks/flow", content="status=1", headers=FORM_HEADERS)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_non_utf8_form_body_is_400(api):
    resp = await api.post("/api/v1/payments/webhooks/flow", content=b"token=\xff\xfe&status=1&s=ab", headers=FORM_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "WebhookPayloadError"


@pytest.mark.asyncio
async def test_nowpayments_ipn_over_http(api):
    raw = json.dumps({"payment_id": 1, "payment_status": "waiting", "invoice_id": 2}).encode()
    resp = await api.post(
        "/api/v1/payments/webhooks/nowpayments",
        content=raw,
        headers={"Content-Type": "application/json", "x-nowpayments-sig": nowpayments_signature(raw, "np-ipn-secret")},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "pending"


@pytest.mark.asyncio
async def test_unsupported_gateway_is_404(api):
    resp = await api.post("/api/v1/payments/webhooks/stripe", content=b"{}")
    assert resp.status_code == 404
    assert "unsupported gateway type" in resp.json()["message"]


@pytest.mark.asyncio
async def test_ip_allowlist_rejects_unknown_sender(api, settings):
    settings.webhook.ip_allowlist = ["10.0.0.0/8"]
    resp = await api.post("/api/v1/payments/webhooks/flow", content=_flow_form(), headers=FORM_HEADERS)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_intent_validates_payload(api):
    resp = await api.post(
        "/api/v1/payments/intents",
        json={"gateway": "flow", "amount": "0", "currency": "CLP", "user_id": "u1", "organization_id": "org1"},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_intent_missing_credentials_is_500(api, empty_settings):
    app.dependency_overrides[get_payment_settings] = lambda: empty_settings
    resp = await api.post(
        "/api/v1/payments/intents",
        json={"gateway": "flow", "amount": "19990", "currency": "CLP", "user_id": "u1", "organization_id": "org1"},
    )
    assert resp.status_code == 500
    assert "FLOW__API_KEY" in resp.json()["message"]
