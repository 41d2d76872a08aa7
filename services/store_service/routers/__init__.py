"""Store service routers package."""

from services.store_service.routers.admin_orders import router as admin_orders_router
from services.store_service.routers.cart import router as cart_router
from services.store_service.routers.discounts import router as discounts_router
from services.store_service.routers.orders import router as orders_router
from services.store_service.routers.templates import router as templates_router

__all__ = [
    "admin_orders_router",
    "cart_router",
    "discounts_router",
    "orders_router",
    "templates_router",
]
