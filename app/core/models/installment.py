"""Installment: one scheduled obligation within a payment plan."""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)

from app.core.enums import InstallmentStatus
from app.db.session import Base


class Installment(Base):
    """
    Owned by exactly one payment plan (cascade delete while unpaid).
    receipt_id is a back-reference only; external_payment_reference is the gateway idempotency key.
    """

    __tablename__ = "installments"
    __table_args__ = (
        UniqueConstraint("payment_plan_id", "installment_number", name="uq_installment_plan_number"),
        CheckConstraint("amount > 0", name="chk_installment_amount_positive"),
        CheckConstraint("installment_number >= 1", name="chk_installment_number"),
        CheckConstraint("status IN ('Pending','Paid','Overdue')", name="chk_installment_status"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_plan_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("payment_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    installment_number = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default=InstallmentStatus.PENDING.value, index=True)
    receipt_id = Column(Uuid(as_uuid=True), nullable=True)
    external_payment_reference = Column(String(255), nullable=True)
    payment_method = Column(String(50), nullable=True)  # Stripe, Cash, eSewa, ...
    remarks = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
