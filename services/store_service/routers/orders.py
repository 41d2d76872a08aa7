"""Store orders router: checkout, order history and return requests."""

import uuid

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.schemas import (
    CheckoutRequest,
    OrderListResponse,
    OrderResponse,
    ReturnRequestCreate,
    ReturnRequestResponse,
)
from services.store_service.services import order_management, orders
from services.store_service.services.checkout import create_order_from_cart
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])


# ============================================================================
# CHECKOUT
# ============================================================================


@router.post(
    "/checkout", response_model=OrderResponse, status_code=status.HTTP_201_CREATED
)
async def checkout(
    request: CheckoutRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Convert the locked cart into a PENDING order and empty the cart."""
    order = await create_order_from_cart(
        db,
        user_id=current_user.user_id,
        shipping_address_id=request.shipping_address_id,
        billing_address_id=request.billing_address_id,
        applied_coupon_id=request.applied_coupon_id,
        metadata=request.metadata,
    )
    return await orders.get_order_for_user(db, order.id, current_user)


# ============================================================================
# ORDER HISTORY
# ============================================================================


@router.get("/orders", response_model=OrderListResponse)
async def list_my_orders(
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List the caller's orders, newest first."""
    items, total = await orders.list_orders(
        db,
        orders.OrderFilters(user_id=current_user.user_id),
        orders.Page(page=page, limit=limit),
    )
    return OrderListResponse(items=items, total=total, page=page, limit=limit)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await orders.get_order_for_user(db, order_id, current_user)


@router.post(
    "/orders/{order_id}/return",
    response_model=ReturnRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_return(
    order_id: uuid.UUID,
    request: ReturnRequestCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Ask to return a paid order, or one line of it when ``order_item_id`` is set."""
    return await order_management.request_return(
        db,
        order_id=order_id,
        current_user=current_user,
        reason=request.reason,
        order_item_id=request.order_item_id,
    )
