"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import OrderModel, PaymentModel, WebhookEventModel

__all__ = [
    "Base",
    "metadata",
    "PaymentModel",
    "WebhookEventModel",
    "OrderModel",
]
