"""Pydantic schemas for store service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from services.store_service.models import (
    CartItemSource,
    DiscountAction,
    DiscountKind,
    DiscountMode,
    OrderStatus,
    ReturnStatus,
    TemplateActivityType,
    TemplateItemStatus,
    TemplateStatus,
)
from services.store_service.services.template_to_cart import MigrationMode

# ============================================================================
# PRICING SCHEMAS
# ============================================================================


class CartTotalsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_original: Decimal
    total_manual_discount: Decimal
    total_coupon_discount: Decimal
    final_total: Decimal


class PricingResolveRequest(BaseModel):
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    coupon_code: Optional[str] = Field(None, max_length=50)


class AppliedDiscountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source: str
    discount_id: uuid.UUID
    mode: DiscountMode
    value: Decimal
    coupon_code: Optional[str] = None


class PricingResolveResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    base_price: Decimal
    final_price: Decimal
    applied_discount: Optional[AppliedDiscountResponse] = None


# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartItemAdd(BaseModel):
    variant_id: uuid.UUID
    quantity: int = Field(1, ge=1)


class CartItemUpdate(BaseModel):
    # 0 removes the line; negatives are rejected by the service with a 400
    quantity: int


class CouponApplyRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)


class CartLineResponse(BaseModel):
    id: uuid.UUID
    variant_id: uuid.UUID
    product_id: Optional[uuid.UUID] = None
    quantity: int
    unit_price_snapshot: Decimal
    manual_discount_amount: Decimal
    coupon_discount_amount: Decimal
    source_type: CartItemSource
    template_id: Optional[uuid.UUID] = None
    template_item_id: Optional[uuid.UUID] = None
    original_subtotal: Decimal
    discount_amount: Decimal
    discount_source: Optional[str] = None
    final_subtotal: Decimal


class SegmentRef(BaseModel):
    id: uuid.UUID
    name: str


class AppliedCouponResponse(BaseModel):
    id: uuid.UUID
    coupon_code: Optional[str] = None
    mode: DiscountMode
    value: Decimal
    kind: DiscountKind
    expires_at: datetime
    segments: list[SegmentRef] = []


class CartResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    applied_coupon_id: Optional[uuid.UUID] = None
    items: list[CartLineResponse] = []
    total_original_cost: Decimal
    total_discount_amount: Decimal
    final_total: Decimal
    applied_coupon: Optional[AppliedCouponResponse] = None


# ============================================================================
# TEMPLATE SCHEMAS
# ============================================================================


class TemplateCreate(BaseModel):
    user_id: str = Field(..., max_length=255)
    title: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class TemplateItemCreate(BaseModel):
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int = Field(1, ge=1)
    notes: Optional[str] = None


class TemplateStatusUpdate(BaseModel):
    status: TemplateStatus


class TemplateItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    template_id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int
    unit_price_snapshot: Decimal
    status: TemplateItemStatus
    notes: Optional[str] = None
    moved_to_cart_at: Optional[datetime] = None
    moved_cart_id: Optional[uuid.UUID] = None
    created_at: datetime


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    title: Optional[str] = None
    notes: Optional[str] = None
    status: TemplateStatus
    total_cost: Decimal
    created_by: str
    created_at: datetime
    updated_at: datetime


class PricedTemplateItemResponse(BaseModel):
    id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int
    status: TemplateItemStatus
    original_unit_price: Decimal
    original_total_price: Decimal
    discounted_unit_price: Decimal
    discounted_total_price: Decimal
    discount_percentage: Decimal
    discount_per_unit: Decimal
    total_discount_amount: Decimal


class TemplateDiscountResponse(BaseModel):
    id: uuid.UUID
    mode: DiscountMode
    value: Decimal
    expires_at: Optional[datetime] = None
    segment_ids: list[uuid.UUID] = []


class TemplateTotalsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_original_cost: Decimal
    total_cost: Decimal
    total_discount_amount: Decimal


class TemplateDetailResponse(TemplateResponse):
    items: list[PricedTemplateItemResponse] = []
    applied_discounts: list[TemplateDiscountResponse] = []
    totals: TemplateTotalsResponse


class MoveToCartRequest(BaseModel):
    item_ids: Optional[list[uuid.UUID]] = None
    mode: MigrationMode = MigrationMode.APPEND


class MoveToCartResponse(BaseModel):
    cart_id: uuid.UUID
    moved_item_ids: list[uuid.UUID]
    pricing: CartTotalsResponse


# ============================================================================
# DISCOUNT SCHEMAS
# ============================================================================


class DiscountCreate(BaseModel):
    kind: DiscountKind
    mode: DiscountMode
    value: Decimal = Field(..., ge=0)
    coupon_code: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    expires_at: datetime
    segment_ids: list[uuid.UUID] = []

    @field_validator("coupon_code")
    @classmethod
    def normalize_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        return v or None

    @model_validator(mode="after")
    def check_kind_rules(self):
        if self.mode == DiscountMode.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage discounts cannot exceed 100")
        if self.kind == DiscountKind.COUPON and not self.coupon_code:
            raise ValueError("Coupons require a coupon_code")
        if self.kind == DiscountKind.MANUAL and self.coupon_code:
            raise ValueError("Manual discounts cannot have a coupon_code")
        return self


class DiscountSegmentsAttach(BaseModel):
    segment_ids: list[uuid.UUID] = Field(..., min_length=1)


class DiscountAssign(BaseModel):
    user_id: str = Field(..., max_length=255)
    template_id: Optional[uuid.UUID] = None


class DiscountToggle(BaseModel):
    is_active: bool


class DiscountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    kind: DiscountKind
    mode: DiscountMode
    value: Decimal
    coupon_code: Optional[str] = None
    description: Optional[str] = None
    expires_at: datetime
    is_active: bool
    created_by: str
    created_at: datetime
    segment_ids: list[uuid.UUID] = []


class DiscountAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    discount_id: uuid.UUID
    user_id: str
    template_id: Optional[uuid.UUID] = None
    assigned_by: str
    created_at: datetime


class DiscountActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    discount_id: uuid.UUID
    action: DiscountAction
    actor_id: str
    actor_role: Optional[str] = None
    details: Optional[dict] = None
    created_at: datetime


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class CheckoutRequest(BaseModel):
    shipping_address_id: uuid.UUID
    billing_address_id: uuid.UUID
    applied_coupon_id: Optional[uuid.UUID] = None
    metadata: Optional[dict] = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    variant_id: uuid.UUID
    quantity: int
    unit_price: Decimal
    manual_discount_amount: Decimal
    coupon_discount_amount: Decimal
    discount_amount: Decimal
    total_price: Decimal


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    user_id: str
    status: OrderStatus
    total_amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    grand_total: Decimal
    applied_coupon_id: Optional[uuid.UUID] = None
    shipping_address_id: Optional[uuid.UUID] = None
    billing_address_id: Optional[uuid.UUID] = None
    metadata: Optional[dict] = Field(None, validation_alias="order_metadata")
    paid_at: Optional[datetime] = None
    created_at: datetime
    items: list[OrderItemResponse] = []


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    page: int
    limit: int


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = None


class OrderStatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    old_status: Optional[OrderStatus] = None
    new_status: OrderStatus
    changed_by: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime


class RefundCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = None


class RefundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    amount: Decimal
    reason: Optional[str] = None
    created_by: str
    created_at: datetime


class OrderNoteCreate(BaseModel):
    note: str = Field(..., min_length=1)
    is_private: bool = True

    @field_validator("note")
    @classmethod
    def note_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Note is required")
        return v


class OrderNoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    author_id: str
    note: str
    is_private: bool
    created_at: datetime


class ReturnRequestCreate(BaseModel):
    order_item_id: Optional[uuid.UUID] = None
    reason: str = Field(..., min_length=1)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Reason is required")
        return v


class ReturnDecision(BaseModel):
    status: ReturnStatus
    admin_notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def decided_status(cls, v: ReturnStatus) -> ReturnStatus:
        if v == ReturnStatus.PENDING:
            raise ValueError("status must be approved or rejected")
        return v


class ReturnRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    user_id: str
    order_item_id: Optional[uuid.UUID] = None
    reason: str
    status: ReturnStatus
    admin_notes: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None


class FullOrderResponse(OrderResponse):
    """Order with everything staff need to handle it, private notes included."""

    status_history: list[OrderStatusHistoryResponse] = []
    notes: list[OrderNoteResponse] = []
    returns: list[ReturnRequestResponse] = []
    refunds: list[RefundResponse] = []


class TemplateActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    activity_type: TemplateActivityType
    actor_id: str
    details: Optional[dict] = None
    created_at: datetime
