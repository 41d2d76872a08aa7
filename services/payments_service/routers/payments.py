"""Payment routes: initiate, retry and status for customers, reconcile for staff."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from libs.auth.dependencies import get_current_user, require_staff
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.payments_service.phonepe_client import (
    PhonePeClient,
    PhonePeError,
    get_phonepe_client,
)
from services.payments_service.schemas import (
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentStatusResponse,
)
from services.payments_service.services import payments
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])


def _gateway_error(e: PhonePeError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Payment gateway error: {e.message}",
    )


def _initiation_response(payment) -> InitiatePaymentResponse:
    return InitiatePaymentResponse(
        payment_id=payment.id,
        redirect_url=payment.redirect_url,
        transaction_id=payment.gateway_transaction_id,
    )


@router.post("/initiate", response_model=InitiatePaymentResponse)
async def initiate_payment(
    request: InitiatePaymentRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    client: PhonePeClient = Depends(get_phonepe_client),
):
    """Start a PhonePe payment for a PENDING order and return the pay-page URL."""
    try:
        payment = await payments.initiate_payment(
            db, client, order_id=request.order_id, current_user=current_user
        )
    except PhonePeError as e:
        raise _gateway_error(e) from e
    return _initiation_response(payment)


@router.post("/retry", response_model=InitiatePaymentResponse)
async def retry_payment(
    request: InitiatePaymentRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    client: PhonePeClient = Depends(get_phonepe_client),
):
    try:
        payment = await payments.retry_payment(
            db, client, order_id=request.order_id, current_user=current_user
        )
    except PhonePeError as e:
        raise _gateway_error(e) from e
    return _initiation_response(payment)


@router.get("/status/{order_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await payments.get_payment_status(
        db, order_id=order_id, current_user=current_user
    )


@router.post("/reconcile/{order_id}", response_model=PaymentStatusResponse)
async def reconcile_payment(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
    client: PhonePeClient = Depends(get_phonepe_client),
):
    """Poll PhonePe for the order's latest attempt and apply what it reports."""
    try:
        return await payments.reconcile_payment(
            db, client, order_id=order_id, current_user=current_user
        )
    except PhonePeError as e:
        raise _gateway_error(e) from e
