"""Payment plan: a student's tuition obligation for one course, split into installments."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String, Text, Uuid

from app.core.enums import PaymentPlanStatus
from app.db.session import Base


class PaymentPlan(Base):
    """
    Aggregate financial obligation. balance_amount == total_amount - paid_amount at all times.
    Financial fields are written only by the payment recorder and plan creation.
    """

    __tablename__ = "payment_plans"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="chk_payment_plan_total_non_negative"),
        CheckConstraint("balance_amount >= 0", name="chk_payment_plan_balance_non_negative"),
        CheckConstraint("installment_count >= 1", name="chk_payment_plan_installment_count"),
        CheckConstraint(
            "status IN ('Active','Completed','Suspended','Defaulted','Cancelled')",
            name="chk_payment_plan_status",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    course_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    balance_amount = Column(Numeric(12, 2), nullable=False)
    installment_count = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=PaymentPlanStatus.ACTIVE.value)
    description = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
