"""Enum definitions for store service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class DiscountKind(str, enum.Enum):
    COUPON = "coupon"
    MANUAL = "manual"


class DiscountMode(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CreatorRole(str, enum.Enum):
    STAFF = "staff"
    ADMIN = "admin"


class CartItemSource(str, enum.Enum):
    DIRECT = "direct"
    TEMPLATE = "template"


class TemplateStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TemplateItemStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    IN_CART = "in_cart"
    DELIVERING = "delivering"
    DELIVERED = "delivered"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class ReturnStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DiscountAction(str, enum.Enum):
    CREATED = "created"
    SEGMENTS_ATTACHED = "segments_attached"
    ASSIGNED = "assigned"
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"


class TemplateActivityType(str, enum.Enum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    ITEM_ADDED = "item_added"
    ITEM_CANCELLED = "item_cancelled"
    ITEMS_MOVED_TO_CART = "items_moved_to_cart"


# ============================================================================
# TRANSITION TABLES
# ============================================================================

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PAID: frozenset({OrderStatus.REFUNDED}),
}

# Return requests are decided once
RETURN_TRANSITIONS = {
    ReturnStatus.PENDING: frozenset({ReturnStatus.APPROVED, ReturnStatus.REJECTED}),
}

TEMPLATE_TRANSITIONS = {
    TemplateStatus.DRAFT: frozenset(
        {TemplateStatus.ACTIVE, TemplateStatus.CANCELLED, TemplateStatus.COMPLETED}
    ),
    TemplateStatus.ACTIVE: frozenset(
        {TemplateStatus.COMPLETED, TemplateStatus.CANCELLED}
    ),
}

TEMPLATE_ITEM_TRANSITIONS = {
    TemplateItemStatus.ACTIVE: frozenset(
        {
            TemplateItemStatus.CANCELLED,
            TemplateItemStatus.IN_CART,
            TemplateItemStatus.DELIVERING,
        }
    ),
    TemplateItemStatus.DELIVERING: frozenset({TemplateItemStatus.DELIVERED}),
}
