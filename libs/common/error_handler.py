"""Global exception handlers shared by the services.

- ``InvalidTransition`` (illegal status change) → 409
- anything unhandled → 500 with the request id, logged with traceback
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from libs.common.logging import get_logger, get_request_id
from libs.common.transitions import InvalidTransition

logger = get_logger(__name__)


async def invalid_transition_handler(
    request: Request, exc: InvalidTransition
) -> JSONResponse:
    logger.warning(
        "Rejected status change: %s",
        exc,
        extra={"extra_fields": {"entity": exc.entity}},
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc)},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "request_id": get_request_id()},
    )


def add_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InvalidTransition, invalid_transition_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
