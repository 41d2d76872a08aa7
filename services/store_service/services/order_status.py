"""Order status transitions with an append-only history."""

from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.common.transitions import ensure_transition
from services.store_service.models import (
    ORDER_TRANSITIONS,
    Order,
    OrderStatus,
    OrderStatusHistory,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def record_status(
    db: AsyncSession,
    order: Order,
    old_status: Optional[OrderStatus],
    new_status: OrderStatus,
    *,
    changed_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> OrderStatusHistory:
    entry = OrderStatusHistory(
        order_id=order.id,
        old_status=old_status,
        new_status=new_status,
        changed_by=changed_by,
        reason=reason,
    )
    db.add(entry)
    return entry


async def transition_order(
    db: AsyncSession,
    order: Order,
    new_status: OrderStatus,
    *,
    changed_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> Order:
    """Validate and apply a status change; the caller commits.

    Raises InvalidTransition for moves the transition table does not allow.
    """
    old_status = order.status
    order.status = ensure_transition(ORDER_TRANSITIONS, "order", old_status, new_status)

    now = utc_now()
    if new_status == OrderStatus.PAID:
        order.paid_at = now
    elif new_status == OrderStatus.CANCELLED:
        order.cancelled_at = now
    order.updated_at = now

    record_status(
        db, order, old_status, new_status, changed_by=changed_by, reason=reason
    )
    await db.flush()

    logger.info(
        "Order %s status %s -> %s",
        order.order_number,
        old_status.value,
        new_status.value,
        extra={"extra_fields": {"order_id": str(order.id), "changed_by": changed_by}},
    )
    return order
