"""Admin order management: listing, status, history, refunds, notes and returns."""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import require_admin, require_staff
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.payments_service.models import PaymentStatus
from services.store_service.models import OrderStatus
from services.store_service.schemas import (
    FullOrderResponse,
    OrderListResponse,
    OrderNoteCreate,
    OrderNoteResponse,
    OrderResponse,
    OrderStatusHistoryResponse,
    OrderStatusUpdate,
    RefundCreate,
    RefundResponse,
    ReturnDecision,
    ReturnRequestResponse,
)
from services.store_service.services import order_management, orders
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin-store"])


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """List all orders (Staff only)."""
    items, total = await orders.list_orders(
        db,
        orders.OrderFilters(
            status=order_status,
            payment_status=payment_status,
            start_date=start_date,
            end_date=end_date,
        ),
        orders.Page(page=page, limit=limit),
    )
    return OrderListResponse(items=items, total=total, page=page, limit=limit)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    status_in: OrderStatusUpdate,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """Move an order along its status table; illegal moves answer 409."""
    order = await orders.update_order_status(
        db,
        order_id=order_id,
        new_status=status_in.status,
        changed_by=current_user.user_id,
        reason=status_in.reason,
    )
    return await orders.get_order_for_user(db, order.id, current_user)


@router.get(
    "/orders/{order_id}/history", response_model=list[OrderStatusHistoryResponse]
)
async def get_order_history(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    await orders.get_order_for_user(db, order_id, current_user)
    return await orders.get_status_history(db, order_id)


@router.post(
    "/orders/{order_id}/refunds",
    response_model=RefundResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_refund(
    order_id: uuid.UUID,
    refund_in: RefundCreate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await orders.create_refund(
        db,
        order_id=order_id,
        amount=refund_in.amount,
        reason=refund_in.reason,
        created_by=current_user.user_id,
    )


@router.post(
    "/orders/{order_id}/notes",
    response_model=OrderNoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_order_note(
    order_id: uuid.UUID,
    note_in: OrderNoteCreate,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_management.add_note(
        db,
        order_id=order_id,
        author_id=current_user.user_id,
        note=note_in.note,
        is_private=note_in.is_private,
    )


@router.get("/orders/{order_id}/notes", response_model=list[OrderNoteResponse])
async def list_order_notes(
    order_id: uuid.UUID,
    include_private: bool = Query(False),
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """Notes on an order, newest first. Private notes need ``include_private``."""
    return await order_management.list_notes(
        db, order_id, include_private=include_private
    )


@router.get("/orders/{order_id}/full", response_model=FullOrderResponse)
async def get_full_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """Order with items, status history, all notes, returns and refunds."""
    return await order_management.get_full_order(db, order_id)


@router.put("/returns/{return_id}", response_model=ReturnRequestResponse)
async def process_return(
    return_id: uuid.UUID,
    decision: ReturnDecision,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_management.process_return(
        db,
        return_id=return_id,
        new_status=decision.status,
        processed_by=current_user.user_id,
        admin_notes=decision.admin_notes,
    )
