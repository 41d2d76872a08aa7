"""Payment initiation, retry, status lookup and reconciliation for store orders."""

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, status
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.transitions import ensure_transition
from services.payments_service.models import (
    PAYMENT_TRANSITIONS,
    WEBHOOK_FINAL_STATUSES,
    Payment,
    PaymentStatus,
)
from services.payments_service.phonepe_client import PhonePeClient, PhonePeError
from services.payments_service.services.webhook import (
    apply_gateway_result,
    record_gateway_event,
)
from services.store_service.models import Order, OrderStatus
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class PaymentStatusView:
    order_id: uuid.UUID
    order_status: OrderStatus
    payment_status: Optional[PaymentStatus]
    transaction_id: Optional[str]


async def _get_owned_order(db: AsyncSession, order_id: uuid.UUID, user_id: str) -> Order:
    order = await db.get(Order, order_id)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    if order.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return order


async def has_successful_payment(db: AsyncSession, order_id: uuid.UUID) -> bool:
    query = select(Payment.id).where(
        Payment.order_id == order_id, Payment.status == PaymentStatus.SUCCESS
    )
    return (await db.execute(query.limit(1))).scalar_one_or_none() is not None


async def get_latest_payment(
    db: AsyncSession, order_id: uuid.UUID
) -> Optional[Payment]:
    query = (
        select(Payment)
        .where(Payment.order_id == order_id)
        .order_by(Payment.created_at.desc())
        .limit(1)
    )
    return (await db.execute(query)).scalar_one_or_none()


async def _start_payment(
    db: AsyncSession,
    client: PhonePeClient,
    order: Order,
    current_user: AuthUser,
    *,
    retry: bool = False,
) -> Payment:
    """Persist an INITIATED attempt, then ask the gateway for a pay page.

    The attempt is committed before the gateway call so a crash in between
    still leaves a record the webhook can match.
    """
    settings = get_settings()
    payment = Payment(
        order_id=order.id,
        user_id=current_user.user_id,
        gateway_transaction_id=Payment.generate_transaction_id(),
        amount=order.grand_total,
        currency=settings.PAYMENT_CURRENCY,
        status=PaymentStatus.INITIATED,
        gateway_request={
            "order_id": str(order.id),
            "amount": str(order.grand_total),
            "retry": retry,
        },
    )
    db.add(payment)
    await db.commit()

    try:
        initiation = await client.initiate_payment(
            order_id=str(order.id),
            amount=order.grand_total,
            transaction_id=payment.gateway_transaction_id,
            phone=current_user.phone,
        )
    except PhonePeError as e:
        payment.status = ensure_transition(
            PAYMENT_TRANSITIONS, "payment", payment.status, PaymentStatus.FAILED
        )
        payment.gateway_response = e.response_data or {"message": e.message}
        await db.commit()
        logger.error(
            "PhonePe initiation failed for order %s: %s",
            order.order_number,
            e.message,
            extra={"extra_fields": {"transaction_id": payment.gateway_transaction_id}},
        )
        raise

    payment.gateway_request = initiation.request_payload
    payment.gateway_response = initiation.response_data
    payment.redirect_url = initiation.redirect_url
    payment.status = ensure_transition(
        PAYMENT_TRANSITIONS, "payment", payment.status, PaymentStatus.PENDING
    )
    await db.commit()

    logger.info(
        "Payment %s initiated for order %s (%s %s)",
        payment.gateway_transaction_id,
        order.order_number,
        payment.amount,
        payment.currency,
        extra={"extra_fields": {"order_id": str(order.id), "retry": retry}},
    )
    return payment


async def initiate_payment(
    db: AsyncSession,
    client: PhonePeClient,
    *,
    order_id: uuid.UUID,
    current_user: AuthUser,
) -> Payment:
    order = await _get_owned_order(db, order_id, current_user.user_id)
    if order.status != OrderStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Order cannot be paid (already processed)",
        )
    if await has_successful_payment(db, order.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Order already paid"
        )
    return await _start_payment(db, client, order, current_user)


async def retry_payment(
    db: AsyncSession,
    client: PhonePeClient,
    *,
    order_id: uuid.UUID,
    current_user: AuthUser,
) -> Payment:
    """Start a fresh attempt unless one is paid or still in flight."""
    order = await _get_owned_order(db, order_id, current_user.user_id)
    if await has_successful_payment(db, order.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Order already paid"
        )
    if order.status != OrderStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Order cannot be paid (already processed)",
        )
    latest = await get_latest_payment(db, order.id)
    if latest is not None and latest.status == PaymentStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Previous payment still pending",
        )
    return await _start_payment(db, client, order, current_user, retry=True)


async def get_payment_status(
    db: AsyncSession, *, order_id: uuid.UUID, current_user: AuthUser
) -> PaymentStatusView:
    order = await db.get(Order, order_id)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    if order.user_id != current_user.user_id and not current_user.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    latest = await get_latest_payment(db, order.id)
    return PaymentStatusView(
        order_id=order.id,
        order_status=order.status,
        payment_status=latest.status if latest else None,
        transaction_id=latest.gateway_transaction_id if latest else None,
    )


async def reconcile_payment(
    db: AsyncSession,
    client: PhonePeClient,
    *,
    order_id: uuid.UUID,
    current_user: AuthUser,
) -> PaymentStatusView:
    """Ask the gateway about the latest attempt when its callback never came.

    Attempts already in a final state are reported as they are. Otherwise
    the gateway's answer is applied the same way a callback would be.
    """
    order = await db.get(Order, order_id)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    latest = await get_latest_payment(db, order.id)
    if latest is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No payment found"
        )

    if latest.status not in WEBHOOK_FINAL_STATUSES:
        transaction_id = latest.gateway_transaction_id
        # PhonePeError propagates to the router before anything is locked
        result = await client.check_status(transaction_id)
        try:
            payment = (
                await db.execute(
                    select(Payment)
                    .where(Payment.id == latest.id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one()
            record_gateway_event(db, payment, result, source="RECONCILE")
            if payment.status not in WEBHOOK_FINAL_STATUSES:
                await apply_gateway_result(db, payment, result)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Reconciliation failed for %s", transaction_id)
            raise
        logger.info(
            "Reconciled payment %s -> %s",
            transaction_id,
            payment.status.value,
            extra={
                "extra_fields": {"order_id": str(order.id), "by": current_user.user_id}
            },
        )

    refreshed = (
        await db.execute(
            select(Order)
            .where(Order.id == order.id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    latest = await get_latest_payment(db, order.id)
    return PaymentStatusView(
        order_id=refreshed.id,
        order_status=refreshed.status,
        payment_status=latest.status,
        transaction_id=latest.gateway_transaction_id,
    )
