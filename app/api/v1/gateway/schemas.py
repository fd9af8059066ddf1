"""Gateway payment schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import GatewayPaymentStatus


class CreateIntentRequest(BaseModel):
    student_id: UUID
    installment_id: UUID
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="ISO code, defaults to usd")


class GatewayPaymentResponse(BaseModel):
    id: UUID
    intent_id: str
    client_secret: Optional[str] = None
    student_id: UUID
    installment_id: Optional[UUID] = None
    amount: Decimal
    currency: str
    status: GatewayPaymentStatus
    payment_method: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class WebhookResponse(BaseModel):
    """status: applied, already_applied, failed_recorded, already_failed, no_installment or ignored."""

    status: str
    intent_id: Optional[str] = None
