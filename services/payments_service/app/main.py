"""FastAPI application for the Payments Service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.payments_service.routers import payments_router, webhooks_router


def create_app() -> FastAPI:
    """Create and configure the Payments Service FastAPI app."""
    settings = get_settings()
    app = FastAPI(
        title="Payments Service",
        version="0.1.0",
        description="PhonePe payments for store orders.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "payments"}

    app.include_router(payments_router)
    app.include_router(webhooks_router)

    return app


app = create_app()
