"""Student: owned by the student-management side; the ledger reads it and advances its status."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Uuid

from app.core.enums import StudentStatus
from app.db.session import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    status = Column(String(30), nullable=False, default=StudentStatus.PENDING_PAYMENT.value)
    admission_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
