"""Order template models: staff-assisted draft orders and their line items."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import JSON_TYPE, Base
from services.store_service.models.enums import (
    TemplateActivityType,
    TemplateItemStatus,
    TemplateStatus,
    enum_values,
)
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class OrderTemplate(Base):
    """A draft order built by staff together with the customer."""

    __tablename__ = "store_order_templates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[TemplateStatus] = mapped_column(
        SAEnum(
            TemplateStatus,
            values_callable=enum_values,
            name="store_template_status_enum",
        ),
        default=TemplateStatus.DRAFT,
    )
    # Σ unit_price_snapshot × quantity over ACTIVE items (see services.templates)
    total_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00")
    )

    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    items = relationship(
        "OrderTemplateItem",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="OrderTemplateItem.created_at",
    )

    def __repr__(self):
        return f"<OrderTemplate {self.id} status={self.status}>"


class OrderTemplateItem(Base):
    """Template line item. IN_CART is entered only by the template→cart move."""

    __tablename__ = "store_order_template_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_order_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("store_products.id"), nullable=False
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("store_product_variants.id"), nullable=True
    )

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price_snapshot: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False
    )
    status: Mapped[TemplateItemStatus] = mapped_column(
        SAEnum(
            TemplateItemStatus,
            values_callable=enum_values,
            name="store_template_item_status_enum",
        ),
        default=TemplateItemStatus.ACTIVE,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    moved_to_cart_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    moved_cart_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("store_carts.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="template_item_positive_quantity"),
    )

    template = relationship("OrderTemplate", back_populates="items")

    def __repr__(self):
        return f"<OrderTemplateItem product={self.product_id} qty={self.quantity}>"


class OrderTemplateActivity(Base):
    """Append-only activity feed for a template."""

    __tablename__ = "store_order_template_activity"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_order_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    activity_type: Mapped[TemplateActivityType] = mapped_column(
        SAEnum(
            TemplateActivityType,
            values_callable=enum_values,
            name="store_template_activity_type_enum",
        ),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON_TYPE, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
