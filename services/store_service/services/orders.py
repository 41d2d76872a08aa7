"""Order reads, admin filters and refunds."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status
from libs.auth.models import AuthUser
from libs.common.currency import ZERO, quantize_money, to_decimal
from libs.common.logging import get_logger
from libs.common.transitions import ensure_transition
from services.payments_service.models import (
    PAYMENT_TRANSITIONS,
    Payment,
    PaymentStatus,
)
from services.store_service.models import (
    Order,
    OrderStatus,
    OrderStatusHistory,
    Refund,
)
from services.store_service.services.order_status import transition_order
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)


@dataclass(frozen=True)
class Page:
    page: int = 1
    limit: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def apply(self, query: Select) -> Select:
        return query.limit(self.limit).offset(self.offset)


@dataclass(frozen=True)
class OrderFilters:
    """Admin order filters. Every condition is a bound SQLAlchemy expression."""

    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    user_id: Optional[str] = None

    def conditions(self) -> list:
        conditions = []
        if self.status is not None:
            conditions.append(Order.status == self.status)
        if self.payment_status is not None:
            conditions.append(
                Order.id.in_(
                    select(Payment.order_id).where(
                        Payment.status == self.payment_status
                    )
                )
            )
        if self.start_date is not None:
            conditions.append(Order.created_at >= self.start_date)
        if self.end_date is not None:
            conditions.append(Order.created_at <= self.end_date)
        if self.user_id is not None:
            conditions.append(Order.user_id == self.user_id)
        return conditions

    def apply(self, query: Select) -> Select:
        return query.where(*self.conditions())


async def list_orders(
    db: AsyncSession, filters: OrderFilters, page: Page
) -> tuple[list[Order], int]:
    base = filters.apply(select(Order))
    total = (
        await db.execute(select(func.count()).select_from(base.subquery()))
    ).scalar_one()
    query = page.apply(
        base.options(selectinload(Order.items)).order_by(
            Order.created_at.desc(), Order.id
        )
    )
    orders = (await db.execute(query)).scalars().unique().all()
    return list(orders), total


async def get_order_for_user(
    db: AsyncSession, order_id: uuid.UUID, current_user: AuthUser
) -> Order:
    """Owner or staff only; others get 404 rather than a hint the order exists."""
    order = (
        await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not order or (order.user_id != current_user.user_id and not current_user.is_staff):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    return order


async def lock_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    order = (
        await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    return order


async def update_order_status(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    new_status: OrderStatus,
    changed_by: str,
    reason: Optional[str] = None,
) -> Order:
    try:
        order = await lock_order(db, order_id)
        await transition_order(
            db, order, new_status, changed_by=changed_by, reason=reason
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return order


async def get_status_history(
    db: AsyncSession, order_id: uuid.UUID
) -> list[OrderStatusHistory]:
    result = await db.execute(
        select(OrderStatusHistory)
        .where(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)
    )
    return list(result.scalars().all())


async def refunded_total(db: AsyncSession, order_id: uuid.UUID) -> Decimal:
    total = (
        await db.execute(
            select(func.coalesce(func.sum(Refund.amount), 0)).where(
                Refund.order_id == order_id
            )
        )
    ).scalar_one()
    return quantize_money(total)


async def create_refund(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    amount: Decimal,
    reason: Optional[str],
    created_by: str,
) -> Refund:
    """Record a refund; a fully refunded order (and its payment) become REFUNDED."""
    amount = quantize_money(amount)
    if amount <= ZERO:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Refund amount must be positive",
        )
    try:
        order = await lock_order(db, order_id)
        if order.status != OrderStatus.PAID:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only paid orders can be refunded",
            )

        already_refunded = await refunded_total(db, order.id)
        remaining = to_decimal(order.grand_total) - already_refunded
        if amount > remaining:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Refund exceeds remaining refundable amount {remaining}",
            )

        refund = Refund(
            order_id=order.id, amount=amount, reason=reason, created_by=created_by
        )
        db.add(refund)
        await db.flush()

        if already_refunded + amount >= to_decimal(order.grand_total):
            await transition_order(
                db,
                order,
                OrderStatus.REFUNDED,
                changed_by=created_by,
                reason=reason or "Fully refunded",
            )
            payment = (
                await db.execute(
                    select(Payment)
                    .where(
                        Payment.order_id == order.id,
                        Payment.status == PaymentStatus.SUCCESS,
                    )
                    .with_for_update()
                )
            ).scalar_one_or_none()
            if payment:
                payment.status = ensure_transition(
                    PAYMENT_TRANSITIONS,
                    "payment",
                    payment.status,
                    PaymentStatus.REFUNDED,
                )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Refunded %s on order %s (by %s)", amount, order.order_number, created_by
    )
    return refund
