"""Catalog lookups used by cart and template operations."""

import uuid
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status
from services.store_service.models import Product, ProductVariant
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


async def get_variant(
    db: AsyncSession, variant_id: uuid.UUID, *, require_active: bool = True
) -> ProductVariant:
    """Return the variant (with ``product_id`` and ``price``) or raise 404."""
    query = select(ProductVariant).where(ProductVariant.id == variant_id)
    if require_active:
        query = query.where(ProductVariant.is_active.is_(True))
    variant = (await db.execute(query)).scalar_one_or_none()
    if not variant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product variant not found",
        )
    return variant


async def get_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    product = (
        await db.execute(select(Product).where(Product.id == product_id))
    ).scalar_one_or_none()
    if not product:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Product not found"
        )
    return product


async def get_variant_product_ids(
    db: AsyncSession, variant_ids: list[uuid.UUID]
) -> dict[uuid.UUID, uuid.UUID]:
    """Map variant id → product id."""
    if not variant_ids:
        return {}
    result = await db.execute(
        select(ProductVariant.id, ProductVariant.product_id).where(
            ProductVariant.id.in_(variant_ids)
        )
    )
    return {variant_id: product_id for variant_id, product_id in result.all()}


def snapshot_price(product: Product, variant: Optional[ProductVariant]) -> Decimal:
    """Price captured when a line is added: variant price, else product base price."""
    return variant.price if variant is not None else product.base_price
