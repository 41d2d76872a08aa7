"""Cart pricing engine.

Stacking rule: per item, either the cart coupon (when the item's product is
eligible for it) or the item's manual discount contributes to totals, never
both. An item's ``manual_discount_amount`` is left on the row while a coupon
covers it and counts again once the coupon stops applying.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status
from libs.common.currency import ZERO, quantize_money, to_decimal
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.store_service.models import (
    Cart,
    CartItem,
    Discount,
    DiscountMode,
    DiscountSegment,
    Segment,
)
from services.store_service.services import catalog, discount_store
from services.store_service.services.discount_resolver import discount_per_unit
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class CartTotals:
    total_original: Decimal
    total_manual_discount: Decimal
    total_coupon_discount: Decimal
    final_total: Decimal


@dataclass(frozen=True)
class PricedCartLine:
    item: CartItem
    product_id: Optional[uuid.UUID]
    original_subtotal: Decimal
    discount_amount: Decimal
    discount_source: Optional[str]  # "coupon" | "manual" | None
    final_subtotal: Decimal


@dataclass
class CartPricingView:
    items: list[PricedCartLine] = field(default_factory=list)
    total_original_cost: Decimal = ZERO
    total_discount_amount: Decimal = ZERO
    final_total: Decimal = ZERO
    applied_coupon: Optional[dict] = None


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


async def lock_cart(db: AsyncSession, cart_id: uuid.UUID) -> Optional[Cart]:
    """Row-lock the cart. Always lock the cart row before its items."""
    result = await db.execute(
        select(Cart)
        .where(Cart.id == cart_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_cart_items(db: AsyncSession, cart_id: uuid.UUID) -> list[CartItem]:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.cart_id == cart_id)
        .order_by(CartItem.created_at, CartItem.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


async def _coupon_eligibility(
    db: AsyncSession, coupon: Discount, product_ids: list[uuid.UUID]
) -> dict[uuid.UUID, bool]:
    coupon_segments = (await discount_store.get_discount_segments(db, [coupon.id]))[
        coupon.id
    ]
    product_segments = await discount_store.get_product_segments(db, product_ids)
    return {
        product_id: discount_store.is_segment_applicable(coupon_segments, segments)
        for product_id, segments in product_segments.items()
    }


# ---------------------------------------------------------------------------
# Persisting recompute
# ---------------------------------------------------------------------------


async def reprice_locked_cart(
    db: AsyncSession, cart: Cart, items: list[CartItem]
) -> CartTotals:
    """Recompute and persist coupon amounts for an already-locked cart.

    Flushes but does not commit; the caller owns the transaction.
    """
    coupon = await discount_store.get_valid_coupon_by_id(db, cart.applied_coupon_id)

    variant_products = await catalog.get_variant_product_ids(
        db, [item.variant_id for item in items]
    )
    eligibility: dict[uuid.UUID, bool] = {}
    if coupon and items:
        eligibility = await _coupon_eligibility(
            db, coupon, list(set(variant_products.values()))
        )

    total_original = ZERO
    total_manual = ZERO
    total_coupon = ZERO

    for item in items:
        unit_price = to_decimal(item.unit_price_snapshot)
        total_original += unit_price * item.quantity

        product_id = variant_products.get(item.variant_id)
        if coupon and eligibility.get(product_id, False):
            coupon_per_unit = discount_per_unit(unit_price, coupon)
            item.coupon_discount_amount = coupon_per_unit
            item.coupon_applied = True
            total_coupon += coupon_per_unit * item.quantity
        else:
            item.coupon_discount_amount = ZERO
            item.coupon_applied = False
            total_manual += to_decimal(item.manual_discount_amount) * item.quantity

    cart.updated_at = utc_now()
    await db.flush()

    totals = CartTotals(
        total_original=quantize_money(total_original),
        total_manual_discount=quantize_money(total_manual),
        total_coupon_discount=quantize_money(total_coupon),
        final_total=quantize_money(total_original - total_manual - total_coupon),
    )
    logger.info(
        "Recalculated cart %s: original=%s manual=%s coupon=%s final=%s",
        cart.id,
        totals.total_original,
        totals.total_manual_discount,
        totals.total_coupon_discount,
        totals.final_total,
    )
    return totals


async def recalculate_cart(db: AsyncSession, cart_id: uuid.UUID) -> CartTotals:
    """Lock, recompute and commit a cart's pricing as one unit of work."""
    try:
        cart = await lock_cart(db, cart_id)
        if cart is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Cart not found"
            )
        items = await lock_cart_items(db, cart.id)
        totals = await reprice_locked_cart(db, cart, items)
        await db.commit()
        return totals
    except HTTPException:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("Cart recalculation failed for %s", cart_id)
        raise


# ---------------------------------------------------------------------------
# Presentation (non-persisting)
# ---------------------------------------------------------------------------


async def _coupon_metadata(db: AsyncSession, coupon: Discount) -> dict:
    segment_rows = await db.execute(
        select(Segment.id, Segment.name)
        .join(DiscountSegment, DiscountSegment.segment_id == Segment.id)
        .where(DiscountSegment.discount_id == coupon.id)
        .order_by(Segment.name)
    )
    return {
        "id": coupon.id,
        "coupon_code": coupon.coupon_code,
        "mode": coupon.mode,
        "value": coupon.value,
        "kind": coupon.kind,
        "expires_at": coupon.expires_at,
        "segments": [{"id": sid, "name": name} for sid, name in segment_rows.all()],
    }


async def apply_cart_pricing_logic(
    db: AsyncSession, cart: Cart, items: list[CartItem]
) -> CartPricingView:
    """Annotate cart lines with their effective discount for display.

    A FIXED coupon is applied once per eligible line, capped at that line's
    subtotal. Nothing is written.
    """
    coupon = await discount_store.get_valid_coupon_by_id(db, cart.applied_coupon_id)
    if not items:
        return CartPricingView(
            applied_coupon=await _coupon_metadata(db, coupon) if coupon else None
        )

    variant_products = await catalog.get_variant_product_ids(
        db, [item.variant_id for item in items]
    )
    eligibility: dict[uuid.UUID, bool] = {}
    if coupon:
        eligibility = await _coupon_eligibility(
            db, coupon, list(set(variant_products.values()))
        )

    view = CartPricingView()
    for item in items:
        product_id = variant_products.get(item.variant_id)
        subtotal = quantize_money(to_decimal(item.unit_price_snapshot) * item.quantity)
        discount = ZERO
        source = None

        if coupon and eligibility.get(product_id, False):
            if coupon.mode == DiscountMode.PERCENTAGE:
                discount = subtotal * to_decimal(coupon.value) / Decimal(100)
            else:
                discount = min(to_decimal(coupon.value), subtotal)
            source = "coupon"
        elif to_decimal(item.manual_discount_amount) > 0:
            discount = to_decimal(item.manual_discount_amount) * item.quantity
            source = "manual"

        discount = quantize_money(min(discount, subtotal))
        view.items.append(
            PricedCartLine(
                item=item,
                product_id=product_id,
                original_subtotal=subtotal,
                discount_amount=discount,
                discount_source=source,
                final_subtotal=subtotal - discount,
            )
        )
        view.total_original_cost += subtotal
        view.total_discount_amount += discount

    view.final_total = view.total_original_cost - view.total_discount_amount
    view.applied_coupon = await _coupon_metadata(db, coupon) if coupon else None
    return view
