"""Order template operations.

Template totals and the activity feed are maintained here, inside the same
transaction as the change that affects them.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, status
from libs.common.currency import ZERO, quantize_money
from libs.common.logging import get_logger
from libs.common.transitions import ensure_transition, is_terminal
from services.store_service.models import (
    TEMPLATE_ITEM_TRANSITIONS,
    TEMPLATE_TRANSITIONS,
    OrderTemplate,
    OrderTemplateActivity,
    OrderTemplateItem,
    TemplateActivityType,
    TemplateItemStatus,
    TemplateStatus,
)
from services.store_service.services import catalog, discount_store
from services.store_service.services.template_discounts import (
    ScopedDiscount,
    TemplateDiscountResult,
    TemplateTotals,
    apply_template_discounts,
    build_template_lines,
    calculate_template_totals,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class TemplatePricing:
    template: OrderTemplate
    pricing: TemplateDiscountResult
    totals: TemplateTotals


async def refresh_template_total(db: AsyncSession, template_id: uuid.UUID) -> None:
    """Set ``total_cost`` to Σ unit_price_snapshot × quantity over ACTIVE items."""
    await db.flush()
    total = (
        await db.execute(
            select(
                func.coalesce(
                    func.sum(
                        OrderTemplateItem.unit_price_snapshot
                        * OrderTemplateItem.quantity
                    ),
                    0,
                )
            ).where(
                OrderTemplateItem.template_id == template_id,
                OrderTemplateItem.status == TemplateItemStatus.ACTIVE,
            )
        )
    ).scalar_one()
    template = await db.get(OrderTemplate, template_id)
    template.total_cost = quantize_money(total)
    await db.flush()


def log_template_activity(
    db: AsyncSession,
    template_id: uuid.UUID,
    activity_type: TemplateActivityType,
    actor_id: str,
    details: Optional[dict] = None,
) -> None:
    db.add(
        OrderTemplateActivity(
            template_id=template_id,
            activity_type=activity_type,
            actor_id=actor_id,
            details=details,
        )
    )


async def get_template(
    db: AsyncSession,
    template_id: uuid.UUID,
    *,
    user_id: Optional[str] = None,
    lock: bool = False,
) -> OrderTemplate:
    """Fetch a non-deleted template, optionally restricted to its owner."""
    query = select(OrderTemplate).where(
        OrderTemplate.id == template_id, OrderTemplate.deleted_at.is_(None)
    )
    if user_id is not None:
        query = query.where(OrderTemplate.user_id == user_id)
    if lock:
        query = query.with_for_update()
    template = (await db.execute(query)).scalar_one_or_none()
    if not template:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Template not found"
        )
    return template


async def list_template_items(
    db: AsyncSession, template_id: uuid.UUID
) -> list[OrderTemplateItem]:
    result = await db.execute(
        select(OrderTemplateItem)
        .where(OrderTemplateItem.template_id == template_id)
        .order_by(OrderTemplateItem.created_at, OrderTemplateItem.id)
    )
    return list(result.scalars().all())


async def create_template(
    db: AsyncSession,
    *,
    user_id: str,
    created_by: str,
    title: Optional[str] = None,
    notes: Optional[str] = None,
) -> OrderTemplate:
    template = OrderTemplate(
        user_id=user_id,
        title=title,
        notes=notes,
        status=TemplateStatus.DRAFT,
        total_cost=ZERO,
        created_by=created_by,
    )
    db.add(template)
    await db.flush()
    log_template_activity(
        db, template.id, TemplateActivityType.CREATED, created_by, {"user_id": user_id}
    )
    await db.commit()
    logger.info("Created order template %s for user %s", template.id, user_id)
    return template


async def add_template_item(
    db: AsyncSession,
    *,
    template_id: uuid.UUID,
    product_id: uuid.UUID,
    variant_id: Optional[uuid.UUID],
    quantity: int,
    actor_id: str,
    notes: Optional[str] = None,
) -> OrderTemplateItem:
    try:
        template = await get_template(db, template_id, lock=True)
        if is_terminal(TEMPLATE_TRANSITIONS, template.status):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot add items to a {template.status.value} template",
            )

        product = await catalog.get_product(db, product_id)
        variant = None
        if variant_id is not None:
            variant = await catalog.get_variant(db, variant_id)
            if variant.product_id != product.id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Variant does not belong to product",
                )

        item = OrderTemplateItem(
            template_id=template.id,
            product_id=product.id,
            variant_id=variant.id if variant else None,
            quantity=quantity,
            unit_price_snapshot=catalog.snapshot_price(product, variant),
            status=TemplateItemStatus.ACTIVE,
            notes=notes,
        )
        db.add(item)
        await db.flush()

        log_template_activity(
            db,
            template.id,
            TemplateActivityType.ITEM_ADDED,
            actor_id,
            {"item_id": str(item.id), "quantity": quantity},
        )
        await refresh_template_total(db, template.id)
        await db.commit()
        return item
    except Exception:
        await db.rollback()
        raise


async def cancel_template_item(
    db: AsyncSession, *, template_id: uuid.UUID, item_id: uuid.UUID, actor_id: str
) -> OrderTemplateItem:
    try:
        template = await get_template(db, template_id, lock=True)
        item = (
            await db.execute(
                select(OrderTemplateItem)
                .where(
                    OrderTemplateItem.id == item_id,
                    OrderTemplateItem.template_id == template.id,
                )
                .with_for_update()
            )
        ).scalar_one_or_none()
        if not item:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Template item not found",
            )

        item.status = ensure_transition(
            TEMPLATE_ITEM_TRANSITIONS,
            "template item",
            item.status,
            TemplateItemStatus.CANCELLED,
        )
        log_template_activity(
            db,
            template.id,
            TemplateActivityType.ITEM_CANCELLED,
            actor_id,
            {"item_id": str(item.id)},
        )
        await refresh_template_total(db, template.id)
        await db.commit()
        return item
    except Exception:
        await db.rollback()
        raise


async def change_template_status(
    db: AsyncSession,
    *,
    template_id: uuid.UUID,
    new_status: TemplateStatus,
    actor_id: str,
) -> OrderTemplate:
    try:
        template = await get_template(db, template_id, lock=True)
        old_status = template.status
        template.status = ensure_transition(
            TEMPLATE_TRANSITIONS, "template", old_status, new_status
        )
        log_template_activity(
            db,
            template.id,
            TemplateActivityType.STATUS_CHANGED,
            actor_id,
            {"from": old_status.value, "to": new_status.value},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Template %s status %s -> %s", template.id, old_status.value, new_status.value
    )
    return template


async def price_template(
    db: AsyncSession, template: OrderTemplate
) -> TemplatePricing:
    """Items annotated with the owner's first applicable manual discount, plus totals."""
    items = await list_template_items(db, template.id)
    product_segments = await discount_store.get_product_segments(
        db, [item.product_id for item in items]
    )
    discounts = await discount_store.get_template_manual_discounts(
        db, template.id, template.user_id
    )
    discount_segments = await discount_store.get_discount_segments(
        db, [d.id for d in discounts]
    )
    scoped = [
        ScopedDiscount.from_discount(d, discount_segments[d.id]) for d in discounts
    ]
    pricing = apply_template_discounts(
        build_template_lines(items, product_segments), scoped
    )
    return TemplatePricing(
        template=template,
        pricing=pricing,
        totals=calculate_template_totals(pricing.items),
    )
