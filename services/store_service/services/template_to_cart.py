"""Move order template items into the owner's cart.

Template discounts become an absolute per-unit ``manual_discount_amount`` on the
cart line. A line that already holds the same variant is merged with a
quantity-weighted average of the two manual discounts, so repeated moves never
inflate the discount.
"""

import enum
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from fastapi import HTTPException, status
from libs.common.currency import ZERO, quantize_money, to_decimal
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.common.transitions import ensure_transition
from services.store_service.models import (
    TEMPLATE_ITEM_TRANSITIONS,
    CartItem,
    CartItemSource,
    OrderTemplateItem,
    TemplateActivityType,
    TemplateItemStatus,
    TemplateStatus,
)
from services.store_service.services import discount_store
from services.store_service.services.cart_pricing import (
    CartTotals,
    lock_cart,
    lock_cart_items,
    recalculate_cart,
)
from services.store_service.services.carts import get_or_create_cart
from services.store_service.services.template_discounts import (
    ScopedDiscount,
    apply_template_discounts,
    build_template_lines,
)
from services.store_service.services.templates import (
    get_template,
    log_template_activity,
    refresh_template_total,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class MigrationMode(str, enum.Enum):
    APPEND = "append"
    REPLACE = "replace"


@dataclass(frozen=True)
class MigrationResult:
    cart_id: uuid.UUID
    moved_item_ids: list[uuid.UUID]
    pricing: CartTotals


def weighted_manual_discount(
    old_quantity: int, old_manual, new_quantity: int, new_manual
) -> Decimal:
    """Quantity-weighted average of two per-unit manual discounts (2 dp)."""
    total_quantity = old_quantity + new_quantity
    weighted = (
        old_quantity * to_decimal(old_manual) + new_quantity * to_decimal(new_manual)
    ) / total_quantity
    return quantize_money(weighted)


async def move_template_items_to_cart(
    db: AsyncSession,
    *,
    template_id: uuid.UUID,
    user_id: str,
    item_ids: Optional[Sequence[uuid.UUID]] = None,
    mode: MigrationMode = MigrationMode.APPEND,
) -> MigrationResult:
    try:
        # 1. Template must belong to the user and still be open
        template = await get_template(db, template_id, user_id=user_id, lock=True)
        if template.status == TemplateStatus.CANCELLED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot move cancelled template",
            )

        # 2. Pick ACTIVE items (optionally a subset); items need a variant to be sold
        query = (
            select(OrderTemplateItem)
            .where(
                OrderTemplateItem.template_id == template.id,
                OrderTemplateItem.status == TemplateItemStatus.ACTIVE,
                OrderTemplateItem.variant_id.is_not(None),
            )
            .order_by(OrderTemplateItem.created_at, OrderTemplateItem.id)
            .with_for_update()
        )
        if item_ids:
            query = query.where(OrderTemplateItem.id.in_(list(item_ids)))
        items = list((await db.execute(query)).scalars().all())
        if not items:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No valid items to move",
            )

        # 3. Lock the cart (row first, then items)
        cart = await get_or_create_cart(db, user_id)
        cart = await lock_cart(db, cart.id)
        cart_items = await lock_cart_items(db, cart.id)
        if mode == MigrationMode.REPLACE:
            for cart_item in cart_items:
                await db.delete(cart_item)
            cart_items = []
            cart.applied_coupon_id = None
            await db.flush()

        # 4. Template discount per unit
        discounts = await discount_store.get_template_manual_discounts(
            db, template.id, user_id
        )
        discount_segments = await discount_store.get_discount_segments(
            db, [d.id for d in discounts]
        )
        product_segments = await discount_store.get_product_segments(
            db, [item.product_id for item in items]
        )
        priced = apply_template_discounts(
            build_template_lines(items, product_segments),
            [ScopedDiscount.from_discount(d, discount_segments[d.id]) for d in discounts],
        )
        discount_by_item = {
            p.line.item_id: p.original_unit_price - p.discounted_unit_price
            for p in priced.items
        }

        # 5. Merge into the cart by variant
        by_variant = {ci.variant_id: ci for ci in cart_items}
        moved_at = utc_now()
        for item in items:
            manual_per_unit = discount_by_item.get(item.id, ZERO)
            existing = by_variant.get(item.variant_id)
            if existing:
                existing.manual_discount_amount = weighted_manual_discount(
                    existing.quantity,
                    existing.manual_discount_amount,
                    item.quantity,
                    manual_per_unit,
                )
                existing.quantity += item.quantity
            else:
                new_item = CartItem(
                    cart_id=cart.id,
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                    unit_price_snapshot=item.unit_price_snapshot,
                    manual_discount_amount=manual_per_unit,
                    coupon_discount_amount=ZERO,
                    coupon_applied=False,
                    source_type=CartItemSource.TEMPLATE,
                    template_id=template.id,
                    template_item_id=item.id,
                )
                db.add(new_item)
                by_variant[item.variant_id] = new_item

            # 6. Template item leaves the template
            item.status = ensure_transition(
                TEMPLATE_ITEM_TRANSITIONS,
                "template item",
                item.status,
                TemplateItemStatus.IN_CART,
            )
            item.moved_to_cart_at = moved_at
            item.moved_cart_id = cart.id

        moved_ids = [item.id for item in items]
        log_template_activity(
            db,
            template.id,
            TemplateActivityType.ITEMS_MOVED_TO_CART,
            user_id,
            {
                "cart_id": str(cart.id),
                "item_ids": [str(i) for i in moved_ids],
                "mode": mode.value,
            },
        )
        await refresh_template_total(db, template.id)

        # 7. Commit, then reprice in its own unit of work
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("Moving template %s to cart failed", template_id)
        raise

    logger.info(
        "Moved %d item(s) from template %s to cart %s (mode=%s)",
        len(moved_ids),
        template_id,
        cart.id,
        mode.value,
    )
    pricing = await recalculate_cart(db, cart.id)
    return MigrationResult(cart_id=cart.id, moved_item_ids=moved_ids, pricing=pricing)
