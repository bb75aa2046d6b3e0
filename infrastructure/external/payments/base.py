"""
Base payment client implementing shared concerns: http, config, logging, mapping.

Concrete gateways subclass and implement provider-specific logic. There is no
retry layer: adapters surface the first failure so the caller decides.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

import httpx

from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from application.dtos.payments import (
    CreatePaymentIntent,
    PaymentIntentResponse,
    WebhookEvent,
    WebhookRequest,
)
from application.ports.payment_gateway import PaymentGateway
from domain.payment.entity import GatewayType, PaymentStatus
from infrastructure.external.payments.exceptions import (
    PaymentConfigurationError,
    PaymentProviderError,
    WebhookPayloadError,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

ZERO_DECIMAL_CURRENCIES = {"CLP", "JPY", "KRW", "PYG", "VND", "COP"}


def format_amount(amount: Decimal, currency: str) -> str:
    """Render an amount the way providers expect it (no decimals for CLP-like currencies)."""
    exp = Decimal("1") if currency.upper() in ZERO_DECIMAL_CURRENCIES else Decimal("0.01")
    return str(Decimal(amount).quantize(exp, rounding=ROUND_HALF_UP))


def to_decimal(value: Any) -> Decimal:
    """Lenient amount parsing for webhook payloads; absent or garbage amounts become 0."""
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class BasePaymentClient(PaymentGateway):
    gateway: GatewayType
    display_name: str = "Gateway"

    def __init__(
        self,
        settings: Optional[PaymentSettings] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or payment_settings
        self._client: Optional[httpx.AsyncClient] = http_client

    @property
    def timeouts(self) -> httpx.Timeout:
        cfg = self._settings.timeouts
        return httpx.Timeout(
            connect=cfg.connect,
            read=cfg.read,
            write=cfg.write,
            pool=cfg.total,
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts)
        # Kept open for reuse; aclose() releases it.
        yield self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResponse:  # type: ignore[override]
        raise NotImplementedError

    async def process_webhook_event(self, request: WebhookRequest) -> WebhookEvent:  # type: ignore[override]
        raise NotImplementedError

    # Helpers
    def map_status(self, provider_status: str) -> PaymentStatus:
        key = str(provider_status if provider_status is not None else "").strip().lower()
        mapped = PROVIDER_STATUS_TO_INTERNAL.get(self.gateway.value, {}).get(key)
        if mapped is None:
            logger.warning(
                "payment_status_unmapped",
                gateway=self.gateway.value,
                provider_status=provider_status,
            )
            return PaymentStatus.PENDING
        return PaymentStatus(mapped)

    def _require(self, value: Optional[str], setting: str) -> str:
        if not value:
            raise PaymentConfigurationError(setting, provider=self.display_name)
        return value

    def _public_url(self, path: str) -> str:
        base = self._require(self._settings.public_base_url, "PUBLIC_BASE_URL")
        return f"{base.rstrip('/')}{path}"

    def _require_fields(self, payload: dict[str, Any], *names: str) -> None:
        missing = [name for name in names if payload.get(name) in (None, "")]
        if missing:
            logger.warning("webhook_missing_fields", gateway=self.gateway.value, missing=missing)
            raise WebhookPayloadError(missing, provider=self.display_name)

    async def _request_json(self, method: str, url: str, *, operation: str, log_request: Any = None, **kwargs) -> Any:
        """Single HTTP call; transport errors and non-2xx responses become PaymentProviderError."""
        async with self.client() as client:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                raise self._provider_error(
                    str(exc) or exc.__class__.__name__,
                    operation=operation,
                    request=log_request,
                ) from exc
        data = _safe_json(response)
        if response.is_error:
            message, code = self._extract_error(data, response)
            raise self._provider_error(
                message,
                operation=operation,
                status_code=response.status_code,
                provider_code=code,
                response_body=data if data is not None else response.text[:1000],
                request=log_request,
            )
        return data

    def _extract_error(self, data: Any, response: httpx.Response) -> tuple[str, Optional[str]]:
        if isinstance(data, dict):
            message = (
                data.get("message")
                or data.get("error_description")
                or data.get("description")
                or data.get("error")
            )
            code = data.get("code") or data.get("name") or data.get("error")
            if message:
                return str(message), str(code) if code is not None else None
        return response.text[:500] or f"HTTP {response.status_code}", None

    def _provider_error(
        self,
        message: str,
        *,
        operation: str,
        status_code: Optional[int] = None,
        provider_code: Optional[str] = None,
        response_body: Any = None,
        **context: Any,
    ) -> PaymentProviderError:
        logger.error(
            f"{operation}_failed",
            gateway=self.gateway.value,
            status_code=status_code,
            provider_code=provider_code,
            response_body=response_body,
            error=message,
            **context,
        )
        return PaymentProviderError(
            f"{self.display_name} error: {message}",
            provider=self.gateway.value,
            provider_code=provider_code,
            status_code=status_code,
        )

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            gateway=self.gateway.value,
            **kwargs,
        )
