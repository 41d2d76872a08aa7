"""Discount models: coupons, manual (staff-assigned) discounts, scoping, audit."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import JSON_TYPE, Base
from services.store_service.models.enums import (
    CreatorRole,
    DiscountAction,
    DiscountKind,
    DiscountMode,
    enum_values,
)
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class Discount(Base):
    """A coupon (code-activated) or manual (assigned per user) discount.

    FIXED values are an absolute amount per unit; PERCENTAGE values are 0-100.
    A discount with no segments applies to every product.
    """

    __tablename__ = "store_discounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[DiscountKind] = mapped_column(
        SAEnum(
            DiscountKind,
            values_callable=enum_values,
            name="store_discount_kind_enum",
        ),
        nullable=False,
    )
    mode: Mapped[DiscountMode] = mapped_column(
        SAEnum(
            DiscountMode,
            values_callable=enum_values,
            name="store_discount_mode_enum",
        ),
        nullable=False,
    )
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    coupon_code: Mapped[Optional[str]] = mapped_column(
        String(50), unique=True, nullable=True, index=True
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by_role: Mapped[CreatorRole] = mapped_column(
        SAEnum(
            CreatorRole,
            values_callable=enum_values,
            name="store_discount_creator_role_enum",
        ),
        default=CreatorRole.STAFF,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        CheckConstraint("value >= 0", name="discount_value_non_negative"),
        CheckConstraint(
            "mode <> 'percentage' OR value <= 100",
            name="discount_percentage_max_100",
        ),
        CheckConstraint(
            "kind = 'coupon' OR coupon_code IS NULL",
            name="discount_code_only_for_coupons",
        ),
        Index("ix_store_discounts_kind_active", "kind", "is_active"),
    )

    segment_links = relationship(
        "DiscountSegment", back_populates="discount", cascade="all, delete-orphan"
    )

    def __repr__(self):
        label = self.coupon_code or self.kind.value
        return f"<Discount {label} {self.mode.value}={self.value}>"


class DiscountSegment(Base):
    """Scopes a discount to the products of a segment."""

    __tablename__ = "store_discount_segments"

    discount_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("store_discounts.id", ondelete="CASCADE"), primary_key=True
    )
    segment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("store_segments.id", ondelete="CASCADE"), primary_key=True
    )

    discount = relationship("Discount", back_populates="segment_links")


class ManualDiscountAssignment(Base):
    """Assigns a MANUAL discount to one user, optionally for one template only."""

    __tablename__ = "store_manual_discount_assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    discount_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_discounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # NULL: applies to the user everywhere
    template_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("store_order_templates.id", ondelete="CASCADE"),
        nullable=True,
    )
    assigned_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    discount = relationship("Discount")

    def __repr__(self):
        return f"<ManualDiscountAssignment {self.discount_id} -> {self.user_id}>"


class DiscountActivityLog(Base):
    """Append-only log of discount administration."""

    __tablename__ = "store_discount_activity"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    discount_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_discounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[DiscountAction] = mapped_column(
        SAEnum(
            DiscountAction,
            values_callable=enum_values,
            name="store_discount_action_enum",
        ),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON_TYPE, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
