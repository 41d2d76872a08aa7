"""Single-product discount resolution.

Priority, first match wins:
1. the user's valid MANUAL discounts (first segment-applicable one)
2. a valid COUPON for ``coupon_code`` if segment-applicable
3. no discount

Unknown, expired or inactive coupon codes resolve as "no discount"; they are
never an error here.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from libs.common.currency import ZERO, quantize_money, to_decimal
from services.store_service.models import Discount, DiscountMode
from services.store_service.services import discount_store
from sqlalchemy.ext.asyncio import AsyncSession


class DiscountLike(Protocol):
    mode: DiscountMode
    value: Decimal


@dataclass(frozen=True)
class AppliedDiscount:
    source: str  # "manual" | "coupon"
    discount_id: uuid.UUID
    mode: DiscountMode
    value: Decimal
    coupon_code: Optional[str] = None


@dataclass(frozen=True)
class ResolvedPrice:
    base_price: Decimal
    final_price: Decimal
    applied_discount: Optional[AppliedDiscount]


def apply_discount_value(price, discount: DiscountLike) -> Decimal:
    """Discounted price for one unit, floored at zero.

    PERCENTAGE: ``price * (1 - value/100)``; FIXED: ``price - value``.
    """
    price = to_decimal(price)
    value = to_decimal(discount.value)
    if discount.mode == DiscountMode.PERCENTAGE:
        discounted = price - price * value / Decimal(100)
    elif discount.mode == DiscountMode.FIXED:
        discounted = price - value
    else:
        discounted = price
    return quantize_money(max(ZERO, discounted))


def discount_per_unit(price, discount: DiscountLike) -> Decimal:
    """Absolute per-unit reduction produced by ``discount`` (never above price)."""
    return quantize_money(to_decimal(price) - apply_discount_value(price, discount))


def _applied(discount: Discount, source: str) -> AppliedDiscount:
    return AppliedDiscount(
        source=source,
        discount_id=discount.id,
        mode=discount.mode,
        value=discount.value,
        coupon_code=discount.coupon_code,
    )


async def resolve_product_discount(
    db: AsyncSession,
    *,
    product_id: uuid.UUID,
    base_price,
    user_id: Optional[str] = None,
    coupon_code: Optional[str] = None,
) -> ResolvedPrice:
    base_price = quantize_money(base_price)
    product_segments = (await discount_store.get_product_segments(db, [product_id]))[
        product_id
    ]

    if user_id:
        manual_discounts = await discount_store.get_user_manual_discounts(db, user_id)
        segment_map = await discount_store.get_discount_segments(
            db, [d.id for d in manual_discounts]
        )
        for discount in manual_discounts:
            if discount_store.is_segment_applicable(
                segment_map[discount.id], product_segments
            ):
                return ResolvedPrice(
                    base_price=base_price,
                    final_price=apply_discount_value(base_price, discount),
                    applied_discount=_applied(discount, "manual"),
                )

    if coupon_code:
        coupon = await discount_store.get_valid_coupon_by_code(db, coupon_code)
        if coupon:
            segment_map = await discount_store.get_discount_segments(db, [coupon.id])
            if discount_store.is_segment_applicable(
                segment_map[coupon.id], product_segments
            ):
                return ResolvedPrice(
                    base_price=base_price,
                    final_price=apply_discount_value(base_price, coupon),
                    applied_discount=_applied(coupon, "coupon"),
                )

    return ResolvedPrice(
        base_price=base_price, final_price=base_price, applied_discount=None
    )
