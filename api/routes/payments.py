"""
Payments API routes.

Checkout initiation plus one webhook endpoint per gateway. Keep this thin:
the raw request body is handed to the adapter untouched so signatures over
the raw payload stay verifiable.
"""
from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette import status as http_status

from api.dependencies import get_ledger_service, get_payment_settings
from application.dtos.payments import CreateCheckout, WebhookRequest
from application.services.payment_ledger_service import PaymentLedgerService
from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from core.response import success_response
from core.settings import PaymentSettings
from infrastructure.external.payments import get_payment_gateway


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _ip_allowed(remote_ip: str | None, allowlist: list[str]) -> bool:
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if rip in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


async def _webhook_request(request: Request) -> WebhookRequest:
    return WebhookRequest(
        method=request.method,
        headers=dict(request.headers),
        query=dict(request.query_params),
        body=await request.body(),
    )


@router.post("/intents", summary="Create payment intent", response_model=None)
async def create_payment_intent(
    payload: CreateCheckout,
    ledger: PaymentLedgerService = Depends(get_ledger_service),
    settings: PaymentSettings = Depends(get_payment_settings),
):
    service = PaymentService(gateway=get_payment_gateway(payload.gateway, settings), ledger=ledger)
    try:
        payment, intent = await service.create_payment_intent(payload)
    finally:
        await service.aclose()
    data = intent.model_dump(mode="json")
    data.update(payment_id=payment.id, redirect_url=intent.redirect_url)
    return success_response(data=data, message="Payment intent created")


@router.api_route("/webhooks/{gateway}", methods=["GET", "POST"], summary="Gateway webhook")
async def payments_webhook(
    gateway: str,
    request: Request,
    ledger: PaymentLedgerService = Depends(get_ledger_service),
    settings: PaymentSettings = Depends(get_payment_settings),
):
    remote_ip = request.client.host if request.client else None
    if not _ip_allowed(remote_ip, settings.webhook.ip_allowlist or []):
        logger.warning("webhook_ip_rejected", gateway=gateway, remote_ip=remote_ip)
        raise HTTPException(status_code=http_status.HTTP_403_FORBIDDEN, detail="IP not allowed")

    service = PaymentService(gateway=get_payment_gateway(gateway, settings), ledger=ledger)
    try:
        outcome = await service.handle_webhook(await _webhook_request(request))
    finally:
        await service.aclose()

    # 200 acknowledges receipt (duplicates included) so the provider stops redelivering
    return success_response(data=outcome.model_dump(mode="json"), message=f"Webhook {outcome.message}")
