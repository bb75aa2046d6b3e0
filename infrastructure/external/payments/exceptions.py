"""
Exceptions for payment gateways mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(BusinessException):
    """Non-success provider response or malformed success body."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        status_code: int | None = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code, "status_code": status_code}
        if details:
            full_details.update(details)
        self.provider = provider
        self.provider_code = provider_code
        self.status_code = status_code
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )


class PaymentConfigurationError(BusinessException):
    def __init__(self, setting: str, *, provider: str):
        self.setting = setting
        super().__init__(
            code=PaymentCode.CONFIGURATION_ERROR,
            message=f"{provider} is not configured: missing environment variable {setting}",
            error_type="PaymentConfigurationError",
            details={"provider": provider, "setting": setting},
        )


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str = "invalid signature", *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=full_details,
        )


class WebhookPayloadError(BusinessException):
    def __init__(self, missing: list[str], *, provider: str, message: str = "missing required field(s)"):
        self.missing = list(missing)
        super().__init__(
            code=PaymentCode.WEBHOOK_PAYLOAD_ERROR,
            message=f"{message}: {', '.join(self.missing)}" if self.missing else message,
            error_type="WebhookPayloadError",
            details={"provider": provider, "missing": self.missing},
        )


class WebhookUnhandledEventError(BusinessException):
    def __init__(self, event_type: str | None, *, provider: str):
        super().__init__(
            code=PaymentCode.WEBHOOK_UNHANDLED_EVENT,
            message=f"unhandled event type: {event_type}",
            error_type="WebhookUnhandledEvent",
            details={"provider": provider, "event_type": event_type},
        )


class UnsupportedGatewayError(BusinessException):
    def __init__(self, gateway: str | None):
        super().__init__(
            code=PaymentCode.UNSUPPORTED_GATEWAY,
            message=f"unsupported gateway type: {gateway}",
            error_type="UnsupportedGateway",
            details={"gateway": gateway},
            field="gateway",
        )
