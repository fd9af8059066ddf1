"""Receipt issued after a payment. File rendering happens elsewhere; artifact_ref is opaque."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Numeric, String, Uuid

from app.db.session import Base


class Receipt(Base):
    __tablename__ = "receipts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    receipt_number = Column(String(50), nullable=False, unique=True)  # RCP{YYYY}{MM}{NNNNN}
    student_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    receipt_type = Column(String(30), nullable=False)
    description = Column(String(1000), nullable=True)
    payment_method = Column(String(50), nullable=True)
    artifact_ref = Column(String(500), nullable=True)
    generated_by = Column(String(100), nullable=True)
    generated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
