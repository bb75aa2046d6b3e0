"""
Payment domain events.

Dataclass events record payment lifecycle facts produced while applying a
webhook (e.g., for messaging or projections). Domain remains free of
infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid

from domain.payment.entity import PaymentStatus


@dataclass
class PaymentEvent:
    payment_id: str
    gateway: str
    organization_id: str
    order_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentSucceeded(PaymentEvent):
    pass


@dataclass
class PaymentFailed(PaymentEvent):
    pass


@dataclass
class PaymentRefunded(PaymentEvent):
    pass


_EVENT_BY_STATUS = {
    PaymentStatus.SUCCEEDED: PaymentSucceeded,
    PaymentStatus.FAILED: PaymentFailed,
    PaymentStatus.REFUNDED: PaymentRefunded,
}


def event_for_status(status: PaymentStatus) -> Optional[type[PaymentEvent]]:
    """Return the event class raised when a payment enters `status` (None for pending)."""
    return _EVENT_BY_STATUS.get(PaymentStatus(status))
