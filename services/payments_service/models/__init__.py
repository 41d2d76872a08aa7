"""Payments Service models package."""

from services.payments_service.models.core import Payment, PaymentEvent
from services.payments_service.models.enums import (
    PAYMENT_TRANSITIONS,
    WEBHOOK_FINAL_STATUSES,
    PaymentProvider,
    PaymentStatus,
)

__all__ = [
    "PAYMENT_TRANSITIONS",
    "Payment",
    "PaymentEvent",
    "PaymentProvider",
    "PaymentStatus",
    "WEBHOOK_FINAL_STATUSES",
]
