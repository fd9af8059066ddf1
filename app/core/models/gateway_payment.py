"""Gateway payment record: one attempt to pay through the external gateway."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Uuid

from app.core.enums import GatewayPaymentStatus
from app.db.session import Base


class GatewayPaymentRecord(Base):
    """external_intent_id is the dedup key for webhook reconciliation."""

    __tablename__ = "gateway_payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_gateway_payment_amount_positive"),
        CheckConstraint("status IN ('Pending','Paid','Failed')", name="chk_gateway_payment_status"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    external_intent_id = Column(String(255), nullable=False, unique=True)
    student_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    installment_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("installments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(20), nullable=False, default=GatewayPaymentStatus.PENDING.value)
    payment_method = Column(String(100), nullable=True)
    client_secret = Column(String(255), nullable=True)
    error_message = Column(String(1000), nullable=True)
    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
