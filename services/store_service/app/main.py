"""FastAPI application for the Store Service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.store_service.routers import (
    admin_orders_router,
    cart_router,
    discounts_router,
    orders_router,
    templates_router,
)


def create_app() -> FastAPI:
    """Create and configure the Store Service FastAPI app."""
    settings = get_settings()
    app = FastAPI(
        title="Store Service",
        version="0.1.0",
        description="Cart pricing, discounts, order templates, checkout and orders.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Structured logging + request tracing
    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "store"}

    # Customer routes (cart, pricing, templates, checkout, orders)
    app.include_router(cart_router, prefix="/store")
    app.include_router(templates_router, prefix="/store")
    app.include_router(orders_router, prefix="/store")

    # Staff routes (discounts, order management)
    app.include_router(discounts_router, prefix="/admin/store")
    app.include_router(admin_orders_router, prefix="/admin/store")

    return app


app = create_app()
