"""Store Service models package."""

from services.store_service.models.catalog import (
    Category,
    CategorySegment,
    Product,
    ProductSegment,
    ProductVariant,
    Segment,
)
from services.store_service.models.commerce import (
    Cart,
    CartItem,
    Order,
    OrderItem,
    OrderNote,
    OrderStatusHistory,
    Refund,
    ReturnRequest,
)
from services.store_service.models.discounts import (
    Discount,
    DiscountActivityLog,
    DiscountSegment,
    ManualDiscountAssignment,
)
from services.store_service.models.enums import (
    ORDER_TRANSITIONS,
    RETURN_TRANSITIONS,
    TEMPLATE_ITEM_TRANSITIONS,
    TEMPLATE_TRANSITIONS,
    CartItemSource,
    CreatorRole,
    DiscountAction,
    DiscountKind,
    DiscountMode,
    OrderStatus,
    ReturnStatus,
    TemplateActivityType,
    TemplateItemStatus,
    TemplateStatus,
)
from services.store_service.models.templates import (
    OrderTemplate,
    OrderTemplateActivity,
    OrderTemplateItem,
)

__all__ = [
    "Cart",
    "CartItem",
    "CartItemSource",
    "Category",
    "CategorySegment",
    "CreatorRole",
    "Discount",
    "DiscountAction",
    "DiscountActivityLog",
    "DiscountKind",
    "DiscountMode",
    "DiscountSegment",
    "ManualDiscountAssignment",
    "ORDER_TRANSITIONS",
    "Order",
    "OrderItem",
    "OrderNote",
    "OrderStatus",
    "OrderStatusHistory",
    "OrderTemplate",
    "OrderTemplateActivity",
    "OrderTemplateItem",
    "Product",
    "ProductSegment",
    "ProductVariant",
    "RETURN_TRANSITIONS",
    "Refund",
    "ReturnRequest",
    "ReturnStatus",
    "Segment",
    "TEMPLATE_ITEM_TRANSITIONS",
    "TEMPLATE_TRANSITIONS",
    "TemplateActivityType",
    "TemplateItemStatus",
    "TemplateStatus",
]
