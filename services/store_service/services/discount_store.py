"""Discount store: read-side queries the pricing engine depends on.

"Valid" always means ``is_active`` and ``expires_at`` in the future. Expiry is
compared in SQL against the current UTC instant.
"""

import uuid
from typing import Iterable, Optional

from libs.common.datetime_utils import utc_now
from services.store_service.models import (
    Discount,
    DiscountKind,
    DiscountSegment,
    ManualDiscountAssignment,
    ProductSegment,
)
from sqlalchemy import and_, case, or_, select
from sqlalchemy.ext.asyncio import AsyncSession


def normalize_coupon_code(code: str) -> str:
    return code.strip().upper()


def _is_valid():
    return and_(Discount.is_active.is_(True), Discount.expires_at > utc_now())


async def get_valid_coupon_by_code(
    db: AsyncSession, code: Optional[str]
) -> Optional[Discount]:
    """Return the active, unexpired coupon for ``code`` or None."""
    if not code or not code.strip():
        return None
    result = await db.execute(
        select(Discount).where(
            Discount.coupon_code == normalize_coupon_code(code),
            Discount.kind == DiscountKind.COUPON,
            _is_valid(),
        )
    )
    return result.scalar_one_or_none()


async def get_valid_coupon_by_id(
    db: AsyncSession, discount_id: Optional[uuid.UUID]
) -> Optional[Discount]:
    if discount_id is None:
        return None
    result = await db.execute(
        select(Discount).where(
            Discount.id == discount_id,
            Discount.kind == DiscountKind.COUPON,
            _is_valid(),
        )
    )
    return result.scalar_one_or_none()


async def get_user_manual_discounts(db: AsyncSession, user_id: str) -> list[Discount]:
    """Active MANUAL discounts assigned to the user, newest assignment first."""
    result = await db.execute(
        select(Discount)
        .join(
            ManualDiscountAssignment,
            ManualDiscountAssignment.discount_id == Discount.id,
        )
        .where(
            ManualDiscountAssignment.user_id == user_id,
            Discount.kind == DiscountKind.MANUAL,
            _is_valid(),
        )
        .order_by(ManualDiscountAssignment.created_at.desc())
    )
    return list(result.scalars().unique().all())


async def get_template_manual_discounts(
    db: AsyncSession, template_id: uuid.UUID, user_id: str
) -> list[Discount]:
    """Manual discounts usable on a template.

    Includes the user's unscoped assignments and those scoped to this template.
    Template-specific assignments come first, then newest first.
    """
    template_first = case(
        (ManualDiscountAssignment.template_id == template_id, 0), else_=1
    )
    result = await db.execute(
        select(Discount)
        .join(
            ManualDiscountAssignment,
            ManualDiscountAssignment.discount_id == Discount.id,
        )
        .where(
            ManualDiscountAssignment.user_id == user_id,
            or_(
                ManualDiscountAssignment.template_id.is_(None),
                ManualDiscountAssignment.template_id == template_id,
            ),
            Discount.kind == DiscountKind.MANUAL,
            _is_valid(),
        )
        .order_by(template_first, ManualDiscountAssignment.created_at.desc())
    )
    return list(result.scalars().unique().all())


async def get_discount_segments(
    db: AsyncSession, discount_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, set[uuid.UUID]]:
    """Map discount id → segment ids. Discounts with no segments map to an empty set."""
    ids = list(discount_ids)
    segments: dict[uuid.UUID, set[uuid.UUID]] = {did: set() for did in ids}
    if not ids:
        return segments
    result = await db.execute(
        select(DiscountSegment.discount_id, DiscountSegment.segment_id).where(
            DiscountSegment.discount_id.in_(ids)
        )
    )
    for discount_id, segment_id in result.all():
        segments[discount_id].add(segment_id)
    return segments


async def get_product_segments(
    db: AsyncSession, product_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, set[uuid.UUID]]:
    """Map product id → segment ids."""
    ids = list(set(product_ids))
    segments: dict[uuid.UUID, set[uuid.UUID]] = {pid: set() for pid in ids}
    if not ids:
        return segments
    result = await db.execute(
        select(ProductSegment.product_id, ProductSegment.segment_id).where(
            ProductSegment.product_id.in_(ids)
        )
    )
    for product_id, segment_id in result.all():
        segments[product_id].add(segment_id)
    return segments


def is_segment_applicable(
    discount_segments: set[uuid.UUID], product_segments: set[uuid.UUID]
) -> bool:
    """No discount segments → global; else the product must share one."""
    if not discount_segments:
        return True
    return bool(discount_segments & product_segments)
