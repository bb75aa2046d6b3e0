"""
Payment gateway settings using pydantic-settings v2 with nested env keys.

Credentials are optional at load time: an adapter raises
PaymentConfigurationError naming the env var on the first call that needs it.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 3.0
    read: float = 10.0
    write: float = 10.0
    total: float = 15.0


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class FlowSettings(BaseModel):
    api_key: Optional[str] = None
    secret_key: Optional[str] = None
    sandbox_api_key: Optional[str] = None
    sandbox_secret_key: Optional[str] = None
    sandbox_mode: bool = False
    api_url: Optional[str] = None
    default_email: str = "payments@example.com"


class MercadoPagoSettings(BaseModel):
    access_token: Optional[str] = None
    sandbox_access_token: Optional[str] = None
    sandbox_mode: bool = False
    webhook_secret: Optional[str] = None
    statement_descriptor: Optional[str] = None


class PayPalSettings(BaseModel):
    sandbox_mode: bool = False
    api_base_url: Optional[str] = None  # overrides the sandbox/production default
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    webhook_id: Optional[str] = None
    brand_name: Optional[str] = None


class NowPaymentsSettings(BaseModel):
    api_key: Optional[str] = None
    sandbox_api_key: Optional[str] = None
    ipn_secret: Optional[str] = None
    sandbox_mode: bool = False
    order_description: str = "Account top-up"


class PaymentSettings(BaseSettings):
    public_base_url: Optional[str] = None
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    flow: FlowSettings = Field(default_factory=FlowSettings)
    mercadopago: MercadoPagoSettings = Field(default_factory=MercadoPagoSettings)
    paypal: PayPalSettings = Field(default_factory=PayPalSettings)
    nowpayments: NowPaymentsSettings = Field(default_factory=NowPaymentsSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
