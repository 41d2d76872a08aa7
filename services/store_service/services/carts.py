"""Cart mutations. Every path locks the cart row, then its items, then reprices."""

import uuid

from fastapi import HTTPException, status
from libs.common.currency import ZERO
from libs.common.logging import get_logger
from services.store_service.models import Cart, CartItem, CartItemSource
from services.store_service.services import catalog, discount_store
from services.store_service.services.cart_pricing import (
    CartTotals,
    lock_cart,
    lock_cart_items,
    reprice_locked_cart,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def get_or_create_cart(db: AsyncSession, user_id: str) -> Cart:
    """Return the user's cart, creating it on first use (flushed, not committed)."""
    cart = (
        await db.execute(select(Cart).where(Cart.user_id == user_id))
    ).scalar_one_or_none()
    if cart:
        return cart

    cart = Cart(user_id=user_id)
    db.add(cart)
    await db.flush()
    logger.info("Created cart %s for user %s", cart.id, user_id)
    return cart


async def _lock_user_cart(
    db: AsyncSession, user_id: str
) -> tuple[Cart, list[CartItem]]:
    cart = await get_or_create_cart(db, user_id)
    cart = await lock_cart(db, cart.id)
    items = await lock_cart_items(db, cart.id)
    return cart, items


def _find_item(items: list[CartItem], item_id: uuid.UUID) -> CartItem:
    for item in items:
        if item.id == item_id:
            return item
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND, detail="Cart item not found"
    )


async def _commit_repriced(
    db: AsyncSession, cart: Cart, items: list[CartItem]
) -> CartTotals:
    totals = await reprice_locked_cart(db, cart, items)
    await db.commit()
    return totals


async def add_item(
    db: AsyncSession, *, user_id: str, variant_id: uuid.UUID, quantity: int
) -> CartTotals:
    if quantity <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Quantity must be positive",
        )
    try:
        cart, items = await _lock_user_cart(db, user_id)
        variant = await catalog.get_variant(db, variant_id)

        existing = next((i for i in items if i.variant_id == variant_id), None)
        if existing:
            existing.quantity += quantity
        else:
            new_item = CartItem(
                cart_id=cart.id,
                variant_id=variant.id,
                quantity=quantity,
                unit_price_snapshot=variant.price,
                manual_discount_amount=ZERO,
                coupon_discount_amount=ZERO,
                coupon_applied=False,
                source_type=CartItemSource.DIRECT,
            )
            db.add(new_item)
            items.append(new_item)
        await db.flush()
        return await _commit_repriced(db, cart, items)
    except Exception:
        await db.rollback()
        raise


async def update_item_quantity(
    db: AsyncSession, *, user_id: str, item_id: uuid.UUID, quantity: int
) -> CartTotals:
    """Set a line's quantity; 0 removes the line."""
    if quantity < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Quantity cannot be negative",
        )
    try:
        cart, items = await _lock_user_cart(db, user_id)
        item = _find_item(items, item_id)
        if quantity == 0:
            await db.delete(item)
            items.remove(item)
        else:
            item.quantity = quantity
        await db.flush()
        return await _commit_repriced(db, cart, items)
    except Exception:
        await db.rollback()
        raise


async def remove_item(
    db: AsyncSession, *, user_id: str, item_id: uuid.UUID
) -> CartTotals:
    return await update_item_quantity(db, user_id=user_id, item_id=item_id, quantity=0)


async def clear_cart(db: AsyncSession, *, user_id: str) -> CartTotals:
    try:
        cart, items = await _lock_user_cart(db, user_id)
        for item in items:
            await db.delete(item)
        await db.flush()
        return await _commit_repriced(db, cart, [])
    except Exception:
        await db.rollback()
        raise


async def apply_coupon(db: AsyncSession, *, user_id: str, code: str) -> CartTotals:
    coupon = await discount_store.get_valid_coupon_by_code(db, code)
    if not coupon:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired coupon",
        )
    try:
        cart, items = await _lock_user_cart(db, user_id)
        cart.applied_coupon_id = coupon.id
        totals = await _commit_repriced(db, cart, items)
    except Exception:
        await db.rollback()
        raise
    logger.info("Applied coupon %s to cart %s", coupon.coupon_code, cart.id)
    return totals


async def remove_coupon(db: AsyncSession, *, user_id: str) -> CartTotals:
    try:
        cart, items = await _lock_user_cart(db, user_id)
        cart.applied_coupon_id = None
        return await _commit_repriced(db, cart, items)
    except Exception:
        await db.rollback()
        raise


async def load_cart(
    db: AsyncSession, user_id: str
) -> tuple[Cart, list[CartItem]]:
    """Unlocked read of the user's cart for previews."""
    cart = await get_or_create_cart(db, user_id)
    await db.commit()
    items = (
        await db.execute(
            select(CartItem)
            .where(CartItem.cart_id == cart.id)
            .order_by(CartItem.created_at, CartItem.id)
        )
    ).scalars().all()
    return cart, list(items)

