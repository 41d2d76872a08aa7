"""Request tracing for the store and payments apps.

Each request gets an ``X-Request-ID`` (taken from the caller or generated),
bound to the logging context for its lifetime and echoed on the response.
Start and completion are logged with timing; health checks are not.
"""
import time
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
UNLOGGED_PATHS = frozenset({"/health"})


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _log(level: str, message: str, **fields) -> None:
    getattr(logger, level)(message, extra={"extra_fields": fields})


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get(REQUEST_ID_HEADER),
            path=request.url.path,
            method=request.method,
        )
        quiet = request.url.path in UNLOGGED_PATHS
        started = time.perf_counter()
        query: Optional[str] = str(request.url.query) or None

        if not quiet:
            _log("info", "Request started", query=query)

        try:
            response = await call_next(request)
            if not quiet:
                # 4xx/5xx are worth a look; webhook rejections land here too
                _log(
                    "warning" if response.status_code >= 400 else "info",
                    "Request completed",
                    status_code=response.status_code,
                    duration_ms=_elapsed_ms(started),
                )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except Exception as e:
            logger.exception(
                "Request failed with unhandled exception",
                extra={
                    "extra_fields": {"error": str(e), "duration_ms": _elapsed_ms(started)}
                },
            )
            raise
        finally:
            clear_request_context()


def add_observability_middleware(app: FastAPI) -> None:
    """Configure logging and install request tracing on ``app``."""
    configure_logging()
    app.add_middleware(RequestContextMiddleware)
    logger.info("Observability middleware initialized for %s", app.title)
