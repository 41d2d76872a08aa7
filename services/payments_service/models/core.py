import random
import string
import time
import uuid
from datetime import datetime
from decimal import Decimal

from libs.common.datetime_utils import utc_now
from libs.db.base import JSON_TYPE, Base
from services.payments_service.models.enums import (
    PaymentProvider,
    PaymentStatus,
    enum_values,
)
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

TXN_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_orders.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    # Idempotency key for webhook matching
    gateway_transaction_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    # Gateway's own reference, known once it reports back
    provider_reference: Mapped[str | None] = mapped_column(
        String(128), index=True, nullable=True
    )
    provider: Mapped[PaymentProvider] = mapped_column(
        SAEnum(
            PaymentProvider,
            name="payment_provider_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PaymentProvider.PHONEPE,
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="INR", nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PaymentStatus.INITIATED,
        nullable=False,
    )

    # Raw gateway payloads, kept for audit
    gateway_request: Mapped[dict | None] = mapped_column(JSON_TYPE, nullable=True)
    gateway_response: Mapped[dict | None] = mapped_column(JSON_TYPE, nullable=True)
    redirect_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("ix_payments_order_created", "order_id", "created_at"),)

    @staticmethod
    def generate_transaction_id() -> str:
        """TXN + epoch milliseconds + 6 random base36 characters."""
        suffix = "".join(random.choices(TXN_SUFFIX_ALPHABET, k=6))
        return f"TXN{int(time.time() * 1000)}{suffix}"

    def __repr__(self):
        return f"<Payment {self.gateway_transaction_id} {self.status.value}>"


class PaymentEvent(Base):
    """Append-only log of every gateway notification received for a payment."""

    __tablename__ = "payment_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payments.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON_TYPE, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<PaymentEvent {self.event_type}>"
