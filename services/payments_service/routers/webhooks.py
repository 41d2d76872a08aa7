"""PhonePe callback endpoint.

Public and unauthenticated; trust comes from the X-VERIFY signature. PhonePe
expects a bare status code and text body, never JSON.
"""

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.payments_service.phonepe_client import PhonePeClient, get_phonepe_client
from services.payments_service.services.webhook import process_webhook
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)


@router.post("/webhook", response_class=PlainTextResponse)
async def phonepe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    client: PhonePeClient = Depends(get_phonepe_client),
):
    raw = await request.body()
    try:
        body = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError):
        body = {}
    payload_b64 = body.get("response") if isinstance(body, dict) else None

    outcome = await process_webhook(
        db, client, payload_b64, request.headers.get("x-verify")
    )
    return PlainTextResponse(outcome.message, status_code=outcome.status_code)
