"""
Factory for payment gateway clients.

Dispatch is over the closed GatewayType set; adapters are constructed per
call and receive the injected settings.
"""
from __future__ import annotations

from typing import Optional

from core.settings import PaymentSettings, payment_settings
from application.ports.payment_gateway import PaymentGateway
from domain.payment.entity import GatewayType
from infrastructure.external.payments.exceptions import UnsupportedGatewayError


def get_payment_gateway(
    gateway: GatewayType | str | None,
    settings: Optional[PaymentSettings] = None,
    **kwargs,
) -> PaymentGateway:
    try:
        kind = GatewayType(str(gateway.value if isinstance(gateway, GatewayType) else gateway).strip().lower())
    except ValueError:
        raise UnsupportedGatewayError(None if gateway is None else str(gateway)) from None
    cfg = settings or payment_settings
    if kind is GatewayType.FLOW:
        from .flow_client import FlowClient
        return FlowClient(cfg, **kwargs)
    if kind is GatewayType.MERCADOPAGO:
        from .mercadopago_client import MercadoPagoClient
        return MercadoPagoClient(cfg, **kwargs)
    if kind is GatewayType.PAYPAL:
        from .paypal_client import PayPalClient
        return PayPalClient(cfg, **kwargs)
    if kind is GatewayType.NOWPAYMENTS:
        from .nowpayments_client import NowPaymentsClient
        return NowPaymentsClient(cfg, **kwargs)
    raise UnsupportedGatewayError(kind.value)


__all__ = ["get_payment_gateway"]
