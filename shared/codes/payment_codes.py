"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    CONFIGURATION_ERROR = 60005
    WEBHOOK_PAYLOAD_ERROR = 60006
    WEBHOOK_UNHANDLED_EVENT = 60007
    UNSUPPORTED_GATEWAY = 60008


# Provider -> canonical status. Keys are compared lower-cased; anything missing
# falls back to "pending" in BasePaymentClient.map_status.
PROVIDER_STATUS_TO_INTERNAL: dict[str, dict[str, str]] = {
    "flow": {
        "1": "succeeded",
        "paid": "succeeded",
        "pagado": "succeeded",
        "2": "pending",
        "pending": "pending",
        "pendiente": "pending",
        "3": "failed",
        "rejected": "failed",
        "rechazado": "failed",
        "failed": "failed",
        "4": "failed",
        "canceled": "failed",
        "cancelled": "failed",
        "cancelado": "failed",
    },
    "mercadopago": {
        "pending": "pending",
        "in_process": "pending",
        "in_mediation": "pending",
        "authorized": "pending",
        "approved": "succeeded",
        "rejected": "failed",
        "cancelled": "failed",
        "refunded": "refunded",
        "charged_back": "refunded",
    },
    "paypal": {
        "created": "pending",
        "saved": "pending",
        "approved": "pending",
        "payer_action_required": "pending",
        "pending": "pending",
        "completed": "succeeded",
        "captured": "succeeded",
        "declined": "failed",
        "failed": "failed",
        "voided": "failed",
        "denied": "failed",
        "refunded": "refunded",
        "partially_refunded": "refunded",
    },
    "nowpayments": {
        "waiting": "pending",
        "confirming": "pending",
        "confirmed": "pending",
        "sending": "pending",
        "partially_paid": "pending",
        "finished": "succeeded",
        "failed": "failed",
        "expired": "failed",
        "refunded": "refunded",
    },
}
