"""Checkout: turn the locked cart into an immutable order in one transaction."""

import random
import string
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status
from libs.common.config import get_settings
from libs.common.currency import ZERO, quantize_money, to_decimal
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.store_service.models import Cart, CartItem, Order, OrderItem, OrderStatus
from services.store_service.services import catalog
from services.store_service.services.cart_pricing import lock_cart_items
from services.store_service.services.order_status import record_status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
MAX_ORDER_NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class LineSnapshot:
    item: CartItem
    effective_discount_per_unit: Decimal
    discount_amount: Decimal
    total_price: Decimal


def generate_order_number() -> str:
    """Human-readable order number like ORD-20260104-A1B2C."""
    date_part = utc_now().strftime("%Y%m%d")
    random_part = "".join(random.choices(ORDER_NUMBER_ALPHABET, k=5))
    return f"ORD-{date_part}-{random_part}"


async def _unique_order_number(db: AsyncSession) -> str:
    for _ in range(MAX_ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number()
        taken = (
            await db.execute(select(Order.id).where(Order.order_number == candidate))
        ).scalar_one_or_none()
        if taken is None:
            return candidate
    raise RuntimeError("Could not allocate a unique order number")


def snapshot_line(item: CartItem) -> LineSnapshot:
    """Line total from the locked row: unit × qty minus the discount in effect.

    The discount in effect is whichever one the last repricing chose. While
    the coupon covers the line the dormant manual amount is not charged, even
    when the coupon works out to 0.00.
    """
    unit_price = to_decimal(item.unit_price_snapshot)
    if item.coupon_applied:
        per_unit = to_decimal(item.coupon_discount_amount)
    else:
        per_unit = to_decimal(item.manual_discount_amount)
    per_unit = min(per_unit, unit_price)
    discount = quantize_money(per_unit * item.quantity)
    total = quantize_money(unit_price * item.quantity) - discount
    return LineSnapshot(
        item=item,
        effective_discount_per_unit=per_unit,
        discount_amount=discount,
        total_price=total,
    )


async def create_order_from_cart(
    db: AsyncSession,
    *,
    user_id: str,
    shipping_address_id: Optional[uuid.UUID] = None,
    billing_address_id: Optional[uuid.UUID] = None,
    applied_coupon_id: Optional[uuid.UUID] = None,
    metadata: Optional[dict] = None,
) -> Order:
    settings = get_settings()
    try:
        # 1. Lock cart row, then its items
        cart = (
            await db.execute(
                select(Cart)
                .where(Cart.user_id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if cart is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cart not found or empty",
            )
        items = await lock_cart_items(db, cart.id)

        # 2. Nothing to buy
        if not items:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Cart is empty"
            )

        # 3. Price from the locked snapshot only
        lines = [snapshot_line(item) for item in items]
        subtotal = sum((line.total_price for line in lines), ZERO)
        discount_total = sum((line.discount_amount for line in lines), ZERO)

        # 4. Tax and shipping
        tax = quantize_money(subtotal * to_decimal(settings.CHECKOUT_TAX_RATE))
        shipping = quantize_money(settings.CHECKOUT_SHIPPING_FLAT)
        grand_total = subtotal + tax + shipping

        # 5. Order + items
        order = Order(
            order_number=await _unique_order_number(db),
            user_id=user_id,
            total_amount=quantize_money(subtotal),
            discount_amount=quantize_money(discount_total),
            tax_amount=tax,
            shipping_amount=shipping,
            grand_total=quantize_money(grand_total),
            applied_coupon_id=applied_coupon_id or cart.applied_coupon_id,
            shipping_address_id=shipping_address_id,
            billing_address_id=billing_address_id,
            status=OrderStatus.PENDING,
            order_metadata=metadata,
        )
        db.add(order)
        await db.flush()
        record_status(db, order, None, OrderStatus.PENDING, changed_by=user_id)

        variant_products = await catalog.get_variant_product_ids(
            db, [line.item.variant_id for line in lines]
        )
        for line in lines:
            db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=variant_products[line.item.variant_id],
                    variant_id=line.item.variant_id,
                    quantity=line.item.quantity,
                    unit_price=line.item.unit_price_snapshot,
                    manual_discount_amount=line.item.manual_discount_amount,
                    coupon_discount_amount=line.item.coupon_discount_amount,
                    discount_amount=line.discount_amount,
                    total_price=line.total_price,
                )
            )
        await db.flush()

        # 6. Empty the cart; the row stays for reuse
        await clear_cart_items(db, cart, items)

        # 7. All or nothing
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("Checkout failed for user %s", user_id)
        raise

    logger.info(
        "Created order %s for user %s: subtotal=%s tax=%s grand_total=%s",
        order.order_number,
        user_id,
        order.total_amount,
        order.tax_amount,
        order.grand_total,
        extra={"extra_fields": {"order_id": str(order.id), "items": len(lines)}},
    )
    return order


async def clear_cart_items(db: AsyncSession, cart: Cart, items: list[CartItem]) -> None:
    for item in items:
        await db.delete(item)
    cart.updated_at = utc_now()
    await db.flush()
