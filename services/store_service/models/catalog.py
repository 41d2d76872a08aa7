"""Store catalog read model: categories, products, variants, segments.

Catalog CRUD lives elsewhere; the pricing engine only reads these rows
(variant price at add time, product segment memberships for discount scoping).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# SEGMENTS
# ============================================================================


class Segment(Base):
    """Named grouping of categories/products used to scope discounts."""

    __tablename__ = "store_segments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<Segment {self.name}>"


# ============================================================================
# CATALOG MODELS
# ============================================================================


class Category(Base):
    """Product categories."""

    __tablename__ = "store_categories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<Category {self.name}>"


class Product(Base):
    """Products. Pricing happens on variants; ``base_price`` is the fallback."""

    __tablename__ = "store_products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_code: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("store_categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    category = relationship("Category")
    variants = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Product {self.name}>"


class ProductVariant(Base):
    """Sellable unit (colour/finish/size combination) with its own price."""

    __tablename__ = "store_product_variants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    product = relationship("Product", back_populates="variants")

    def __repr__(self):
        return f"<ProductVariant {self.sku}>"


# ============================================================================
# SEGMENT MEMBERSHIPS
# ============================================================================


class ProductSegment(Base):
    """Product ↔ segment membership."""

    __tablename__ = "store_product_segments"

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("store_products.id", ondelete="CASCADE"), primary_key=True
    )
    segment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("store_segments.id", ondelete="CASCADE"), primary_key=True
    )


class CategorySegment(Base):
    """Category ↔ segment membership."""

    __tablename__ = "store_category_segments"

    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("store_categories.id", ondelete="CASCADE"), primary_key=True
    )
    segment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("store_segments.id", ondelete="CASCADE"), primary_key=True
    )
