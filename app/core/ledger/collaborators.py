"""
Collaborators the ledger calls after a payment commits: receipt issuance, student status
advancement and audit logging. The ledger depends only on the abstract interfaces; the
Db* classes are the default implementations backed by the same database.
"""

import abc
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.enums import ReceiptType, StudentStatus
from app.core.models import AuditLog, Receipt, Student

logger = logging.getLogger(__name__)


class ReceiptIssuer(abc.ABC):
    @abc.abstractmethod
    async def issue(
        self,
        student_id: UUID,
        amount: Decimal,
        kind: ReceiptType,
        description: str,
        payment_method: Optional[str] = None,
        issued_by: Optional[str] = None,
    ) -> UUID:
        """Issue a receipt and return its id."""

    @abc.abstractmethod
    async def void(self, receipt_id: UUID) -> None:
        """Withdraw a receipt that was issued but never attached to a payment."""


class StudentLifecycle(abc.ABC):
    @abc.abstractmethod
    async def advance_from_pending_payment(self, student_id: UUID) -> bool:
        """Move the student from awaiting payment to enrolled. Returns False if nothing changed."""


class AuditSink(abc.ABC):
    @abc.abstractmethod
    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Any,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
        note: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> None:
        """Write-only sink. Must not raise."""


def to_jsonable(value: Any) -> Any:
    """Make audit snapshots JSON-safe (Decimal, UUID, dates, enums)."""
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class DbAuditSink(AuditSink):
    """Fire-and-forget: its own session, failures are logged and swallowed."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Any,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
        note: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> None:
        action = action.value if isinstance(action, Enum) else action
        try:
            async with self._session_factory() as session:
                session.add(
                    AuditLog(
                        action=action,
                        entity_type=entity_type,
                        entity_id=str(entity_id),
                        before=to_jsonable(before),
                        after=to_jsonable(after),
                        note=note,
                        performed_by=performed_by,
                    )
                )
                await session.commit()
        except Exception:
            logger.exception("Audit write failed: %s %s %s", action, entity_type, entity_id)


class DbReceiptIssuer(ReceiptIssuer):
    """Numbers receipts RCP{YYYY}{MM}{NNNNN}, sequential within the month."""

    max_attempts = 5

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @staticmethod
    def receipt_prefix(now: datetime) -> str:
        return f"RCP{now.year}{now.month:02d}"

    async def _next_number(self, session, prefix: str) -> str:
        last = (
            await session.execute(
                select(func.max(Receipt.receipt_number)).where(Receipt.receipt_number.like(f"{prefix}%"))
            )
        ).scalar()
        next_seq = 1
        if last:
            try:
                next_seq = int(last[len(prefix):]) + 1
            except ValueError:
                next_seq = 1
        return f"{prefix}{next_seq:05d}"

    async def issue(
        self,
        student_id: UUID,
        amount: Decimal,
        kind: ReceiptType,
        description: str,
        payment_method: Optional[str] = None,
        issued_by: Optional[str] = None,
    ) -> UUID:
        prefix = self.receipt_prefix(datetime.now(timezone.utc))
        for attempt in range(self.max_attempts):
            async with self._session_factory() as session:
                receipt = Receipt(
                    receipt_number=await self._next_number(session, prefix),
                    student_id=student_id,
                    amount=amount,
                    receipt_type=kind.value if isinstance(kind, Enum) else kind,
                    description=description,
                    payment_method=payment_method,
                    generated_by=issued_by,
                )
                session.add(receipt)
                try:
                    await session.commit()
                except IntegrityError:
                    # Another receipt took this number; pick the next one.
                    await session.rollback()
                    logger.warning("Receipt number collision on attempt %d", attempt + 1)
                    continue
                logger.info("Issued receipt %s for student %s", receipt.receipt_number, student_id)
                return receipt.id
        raise RuntimeError(f"Could not allocate a receipt number after {self.max_attempts} attempts")

    async def void(self, receipt_id: UUID) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(Receipt).where(Receipt.id == receipt_id))
            await session.commit()
        logger.info("Voided unattached receipt %s", receipt_id)


class DbStudentLifecycle(StudentLifecycle):
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def advance_from_pending_payment(self, student_id: UUID) -> bool:
        async with self._session_factory() as session:
            student = await session.get(Student, student_id)
            if not student or student.status != StudentStatus.PENDING_PAYMENT.value:
                return False
            student.status = StudentStatus.ENROLLED.value
            student.admission_date = datetime.now(timezone.utc)
            await session.commit()
        logger.info("Student %s admission completed after first payment", student_id)
        return True
