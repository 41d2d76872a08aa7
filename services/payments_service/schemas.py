import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict
from services.payments_service.models import PaymentStatus
from services.store_service.models import OrderStatus


class InitiatePaymentRequest(BaseModel):
    order_id: uuid.UUID


class InitiatePaymentResponse(BaseModel):
    payment_id: uuid.UUID
    redirect_url: Optional[str] = None
    transaction_id: str


class PaymentStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: uuid.UUID
    order_status: OrderStatus
    payment_status: Optional[PaymentStatus] = None
    transaction_id: Optional[str] = None
