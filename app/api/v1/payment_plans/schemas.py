"""Payment plan and installment schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import InstallmentStatus, PaymentPlanStatus


# --- Installments ---
class InstallmentResponse(BaseModel):
    id: UUID
    payment_plan_id: UUID
    installment_number: int
    amount: Decimal
    due_date: date
    paid_date: Optional[datetime] = None
    status: InstallmentStatus
    receipt_id: Optional[UUID] = None
    external_payment_reference: Optional[str] = None
    payment_method: Optional[str] = None
    remarks: Optional[str] = None
    is_overdue: bool = False
    days_overdue: int = 0

    class Config:
        from_attributes = True


class PayInstallmentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=50, description="Cash, BankTransfer, Stripe, ...")
    remarks: Optional[str] = Field(None, max_length=500)


class PayInstallmentResponse(BaseModel):
    """applied=False means the installment was already paid and nothing changed."""

    installment: InstallmentResponse
    receipt_id: Optional[UUID] = None
    applied: bool
    conflict: bool = False


class ReissueReceiptResponse(BaseModel):
    installment_id: UUID
    receipt_id: UUID


class OverdueSweepResponse(BaseModel):
    promoted: int
    cutoff: date


# --- Payment Plans ---
class PaymentPlanCreate(BaseModel):
    student_id: UUID
    course_id: Optional[UUID] = None
    total_amount: Decimal = Field(..., gt=0, decimal_places=2)
    installment_count: int = Field(..., ge=1, le=120)
    first_due_date: Optional[date] = Field(None, description="Defaults to today + 30 days")
    description: Optional[str] = Field(None, max_length=1000)


class PaymentPlanStatusUpdate(BaseModel):
    status: PaymentPlanStatus


class PaymentPlanUpdate(BaseModel):
    description: Optional[str] = Field(None, max_length=1000)
    status: Optional[PaymentPlanStatus] = None


class PaymentPlanResponse(BaseModel):
    id: UUID
    student_id: UUID
    course_id: Optional[UUID] = None
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    installment_count: int
    status: PaymentPlanStatus
    description: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: datetime
    installments: List[InstallmentResponse] = Field(default_factory=list)
