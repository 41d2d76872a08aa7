"""Staff notes, the full order view and customer return requests."""

import uuid
from typing import Optional

from fastapi import HTTPException, status
from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.common.transitions import ensure_transition
from services.store_service.models import (
    RETURN_TRANSITIONS,
    Order,
    OrderItem,
    OrderNote,
    OrderStatus,
    ReturnRequest,
    ReturnStatus,
)
from services.store_service.services.orders import lock_order
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)


# ============================================================================
# NOTES
# ============================================================================


async def add_note(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    author_id: str,
    note: str,
    is_private: bool = True,
) -> OrderNote:
    try:
        order = await lock_order(db, order_id)
        order_note = OrderNote(
            order_id=order.id, author_id=author_id, note=note, is_private=is_private
        )
        db.add(order_note)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Note added to order %s by %s", order.order_number, author_id)
    return order_note


async def list_notes(
    db: AsyncSession, order_id: uuid.UUID, *, include_private: bool = False
) -> list[OrderNote]:
    """Newest first. Private notes only when asked for."""
    if await db.get(Order, order_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    query = select(OrderNote).where(OrderNote.order_id == order_id)
    if not include_private:
        query = query.where(OrderNote.is_private.is_(False))
    result = await db.execute(
        query.order_by(OrderNote.created_at.desc(), OrderNote.id)
    )
    return list(result.scalars().all())


# ============================================================================
# FULL VIEW
# ============================================================================


async def get_full_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    order = (
        await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(
                selectinload(Order.items),
                selectinload(Order.status_history),
                selectinload(Order.notes),
                selectinload(Order.returns),
                selectinload(Order.refunds),
            )
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    return order


# ============================================================================
# RETURNS
# ============================================================================


async def request_return(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    current_user: AuthUser,
    reason: str,
    order_item_id: Optional[uuid.UUID] = None,
) -> ReturnRequest:
    """Open a PENDING return for a paid order, or for one of its lines.

    Only the order's owner may ask. A line, or the whole order, can have at
    most one pending request at a time.
    """
    try:
        order = await lock_order(db, order_id)
        if order.user_id != current_user.user_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
            )
        if order.status != OrderStatus.PAID:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only paid orders can be returned",
            )

        if order_item_id is not None:
            item = await db.get(OrderItem, order_item_id)
            if item is None or item.order_id != order.id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Order item does not belong to this order",
                )

        if order_item_id is None:
            same_target = ReturnRequest.order_item_id.is_(None)
        else:
            same_target = ReturnRequest.order_item_id == order_item_id
        open_request = (
            await db.execute(
                select(ReturnRequest.id).where(
                    ReturnRequest.order_id == order.id,
                    ReturnRequest.status == ReturnStatus.PENDING,
                    same_target,
                )
            )
        ).first()
        if open_request is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A return request is already pending",
            )

        return_request = ReturnRequest(
            order_id=order.id,
            user_id=current_user.user_id,
            order_item_id=order_item_id,
            reason=reason,
            status=ReturnStatus.PENDING,
        )
        db.add(return_request)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Return requested on order %s",
        order.order_number,
        extra={
            "extra_fields": {
                "return_id": str(return_request.id),
                "order_item_id": str(order_item_id) if order_item_id else None,
            }
        },
    )
    return return_request


async def process_return(
    db: AsyncSession,
    *,
    return_id: uuid.UUID,
    new_status: ReturnStatus,
    processed_by: str,
    admin_notes: Optional[str] = None,
) -> ReturnRequest:
    """Approve or reject a pending return. Decided requests answer 409."""
    try:
        return_request = (
            await db.execute(
                select(ReturnRequest)
                .where(ReturnRequest.id == return_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if return_request is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Return request not found",
            )
        return_request.status = ensure_transition(
            RETURN_TRANSITIONS, "return", return_request.status, new_status
        )
        return_request.processed_by = processed_by
        return_request.processed_at = utc_now()
        if admin_notes is not None:
            return_request.admin_notes = admin_notes
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Return %s %s by %s", return_id, new_status.value, processed_by)
    return return_request
