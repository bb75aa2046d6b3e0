"""
Payment DTOs (Pydantic v2) used at application boundaries.

`PaymentIntentResponse` and `WebhookEvent` are the only shapes that cross the
gateway adapter boundary; provider payloads never leave the adapters.
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Optional
from urllib.parse import parse_qsl

from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.types import condecimal

from domain.payment.entity import GatewayType, PaymentStatus

# Active ISO 4217 alphabetic codes; per-gateway support is enforced by the provider
ISO_4217 = frozenset({
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AUD", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BRL",
    "BSD", "BTN", "BWP", "BYN", "BZD", "CAD", "CDF", "CHF", "CLP", "CNY",
    "COP", "CRC", "CUP", "CVE", "CZK", "DJF", "DKK", "DOP", "DZD", "EGP",
    "ERN", "ETB", "EUR", "FJD", "FKP", "GBP", "GEL", "GHS", "GIP", "GMD",
    "GNF", "GTQ", "GYD", "HKD", "HNL", "HTG", "HUF", "IDR", "ILS", "INR",
    "IQD", "IRR", "ISK", "JMD", "JOD", "JPY", "KES", "KGS", "KHR", "KMF",
    "KPW", "KRW", "KWD", "KYD", "KZT", "LAK", "LBP", "LKR", "LRD", "LSL",
    "LYD", "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR",
    "MVR", "MWK", "MXN", "MYR", "MZN", "NAD", "NGN", "NIO", "NOK", "NPR",
    "NZD", "OMR", "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG", "QAR",
    "RON", "RSD", "RUB", "RWF", "SAR", "SBD", "SCR", "SDG", "SEK", "SGD",
    "SHP", "SLE", "SOS", "SRD", "SSP", "STN", "SVC", "SYP", "SZL", "THB",
    "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS", "UAH", "UGX",
    "USD", "UYU", "UZS", "VES", "VND", "VUV", "WST", "XAF", "XCD", "XOF",
    "XPF", "YER", "ZAR", "ZMW", "ZWL",
})


class CreatePaymentIntent(BaseModel):
    order_id: Optional[str] = None
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str
    user_id: str
    organization_id: str
    description: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        if u not in ISO_4217:
            raise ValueError("unsupported currency")
        return u


class CreateCheckout(CreatePaymentIntent):
    """HTTP payload for checkout initiation: an intent plus the target gateway."""

    gateway: GatewayType


class PaymentIntentResponse(BaseModel):
    status: PaymentStatus
    gateway_payment_intent_id: str
    approval_url: Optional[str] = None
    invoice_url: Optional[str] = None
    preference_id: Optional[str] = None
    client_secret: Optional[str] = None

    @property
    def redirect_url(self) -> Optional[str]:
        return self.approval_url or self.invoice_url


class WebhookEvent(BaseModel):
    """Canonical webhook event every adapter emits."""

    gateway: GatewayType
    gateway_event_id: str
    type: str
    status: PaymentStatus
    gateway_transaction_id: Optional[str] = None
    gateway_payment_intent_id: Optional[str] = None
    amount: Decimal = Decimal("0")
    currency: str = ""
    order_id: Optional[str] = None
    organization_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper(cls, v: Optional[str]) -> str:
        return (v or "").upper()


class WebhookRequest(BaseModel):
    """Raw inbound webhook as the provider sent it.

    The body is kept as bytes so signatures computed over the raw payload
    can be verified before anything is parsed.
    """

    model_config = ConfigDict(frozen=True)

    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    query: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        lname = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lname:
                return value
        return None

    def text(self) -> str:
        return self.body.decode("utf-8")

    def form(self) -> dict[str, str]:
        return dict(parse_qsl(self.text(), keep_blank_values=True))

    def json_body(self) -> Any:
        if not self.body:
            return {}
        return json.loads(self.body)


class WebhookOutcome(BaseModel):
    """Result of applying one webhook, returned to the HTTP layer."""

    gateway: GatewayType
    gateway_event_id: str
    type: str
    status: PaymentStatus
    duplicate: bool = False
    applied: bool = False
    payment_id: Optional[str] = None
    message: str = "received"
    domain_events: list[str] = Field(default_factory=list)
