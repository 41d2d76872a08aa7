"""PhonePe callback processing.

The gateway retries callbacks, so processing is idempotent: once a payment
reaches a final status later callbacks are recorded as events and
acknowledged without touching the payment or its order.
"""

from dataclasses import dataclass
from typing import Optional

from libs.common.currency import paise_to_rupees
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.common.transitions import ensure_transition
from services.payments_service.models import (
    PAYMENT_TRANSITIONS,
    WEBHOOK_FINAL_STATUSES,
    Payment,
    PaymentEvent,
    PaymentStatus,
)
from services.payments_service.phonepe_client import (
    CallbackData,
    PhonePeClient,
    decode_callback_payload,
    map_gateway_state,
)
from services.store_service.models import Order, OrderStatus
from services.store_service.services.order_status import transition_order
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class WebhookOutcome:
    status_code: int
    message: str


MISSING_PARAMETERS = WebhookOutcome(400, "Missing parameters")
INVALID_SIGNATURE = WebhookOutcome(401, "Invalid signature")
PAYMENT_NOT_FOUND = WebhookOutcome(404, "Payment not found")
ALREADY_PROCESSED = WebhookOutcome(200, "Already processed")
PROCESSED = WebhookOutcome(200, "OK")
FAILED = WebhookOutcome(500, "Internal server error")


async def _mark_order_paid(db: AsyncSession, payment: Payment) -> None:
    order = (
        await db.execute(
            select(Order)
            .where(Order.id == payment.order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if order is None:
        logger.error("Payment %s has no order", payment.gateway_transaction_id)
        return
    if order.status != OrderStatus.PENDING:
        logger.warning(
            "Order %s is %s; not marking paid for %s",
            order.order_number,
            order.status.value,
            payment.gateway_transaction_id,
        )
        return
    await transition_order(
        db,
        order,
        OrderStatus.PAID,
        changed_by="system",
        reason=f"Payment {payment.gateway_transaction_id} succeeded",
    )


def record_gateway_event(
    db: AsyncSession, payment: Payment, callback: CallbackData, *, source: str
) -> None:
    db.add(
        PaymentEvent(
            payment_id=payment.id,
            event_type=f"{source}_{(callback.state or 'UNKNOWN').upper()}",
            payload=callback.raw,
        )
    )


async def apply_gateway_result(
    db: AsyncSession, payment: Payment, callback: CallbackData
) -> None:
    """Move a locked, non-final payment to the state the gateway reports.

    A success also marks the order paid. The caller commits.
    """
    new_status = PaymentStatus(map_gateway_state(callback.state))
    if (
        isinstance(callback.amount_paise, int)
        and paise_to_rupees(callback.amount_paise) != payment.amount
    ):
        logger.warning(
            "Gateway amount %s paise differs from payment %s (%s)",
            callback.amount_paise,
            payment.gateway_transaction_id,
            payment.amount,
        )

    if new_status != payment.status:
        payment.status = ensure_transition(
            PAYMENT_TRANSITIONS, "payment", payment.status, new_status
        )
    payment.gateway_response = callback.raw
    if callback.provider_reference:
        payment.provider_reference = callback.provider_reference
    if new_status == PaymentStatus.SUCCESS:
        payment.paid_at = utc_now()
        await _mark_order_paid(db, payment)


async def process_webhook(
    db: AsyncSession,
    client: PhonePeClient,
    payload_b64: Optional[str],
    x_verify: Optional[str],
) -> WebhookOutcome:
    """Verify, decode and apply one callback inside a single transaction."""
    if not payload_b64 or not x_verify:
        return MISSING_PARAMETERS

    if not client.verify_callback(payload_b64, x_verify):
        logger.warning("Rejected PhonePe callback with invalid signature")
        return INVALID_SIGNATURE

    try:
        callback = decode_callback_payload(payload_b64)
    except ValueError as e:
        logger.warning("Undecodable PhonePe callback: %s", e)
        return MISSING_PARAMETERS
    if not callback.merchant_transaction_id:
        return MISSING_PARAMETERS

    try:
        payment = (
            await db.execute(
                select(Payment)
                .where(
                    Payment.gateway_transaction_id == callback.merchant_transaction_id
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if payment is None:
            logger.warning(
                "Callback for unknown transaction %s",
                callback.merchant_transaction_id,
            )
            return PAYMENT_NOT_FOUND

        record_gateway_event(db, payment, callback, source="WEBHOOK")

        if payment.status in WEBHOOK_FINAL_STATUSES:
            await db.commit()
            logger.info(
                "Duplicate callback for %s ignored (status %s)",
                payment.gateway_transaction_id,
                payment.status.value,
            )
            return ALREADY_PROCESSED

        await apply_gateway_result(db, payment, callback)

        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(
            "Failed to process callback for %s", callback.merchant_transaction_id
        )
        return FAILED

    logger.info(
        "Payment %s -> %s",
        payment.gateway_transaction_id,
        payment.status.value,
        extra={"extra_fields": {"order_id": str(payment.order_id)}},
    )
    return PROCESSED
