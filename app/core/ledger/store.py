"""
Ledger persistence. All reads and writes of plans, installments and gateway payment
records go through a LedgerSession obtained from LedgerStore.unit_of_work().

Entities are loaded by id; there are no ORM navigation graphs between them.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.enums import InstallmentStatus, PaymentPlanStatus
from app.core.models import GatewayPaymentRecord, Installment, PaymentPlan, Student

logger = logging.getLogger(__name__)


class StaleLedgerWrite(Exception):
    """A concurrent writer changed a row between our read and our write."""


class DuplicateLedgerRow(Exception):
    """A uniqueness constraint rejected the write."""


class LedgerSession:
    """One open transaction against the ledger tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Plans ---
    async def add_plan(self, plan: PaymentPlan, installments: Sequence[Installment]) -> PaymentPlan:
        self.session.add(plan)
        await self.session.flush()
        for inst in installments:
            inst.payment_plan_id = plan.id
            self.session.add(inst)
        await self.flush()
        return plan

    async def get_plan(self, plan_id: UUID) -> Optional[PaymentPlan]:
        return await self.session.get(PaymentPlan, plan_id)

    async def list_plans_for_student(self, student_id: UUID) -> List[PaymentPlan]:
        result = await self.session.execute(
            select(PaymentPlan)
            .where(PaymentPlan.student_id == student_id)
            .order_by(PaymentPlan.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_plans_for_course(self, course_id: UUID) -> List[PaymentPlan]:
        result = await self.session.execute(
            select(PaymentPlan)
            .where(PaymentPlan.course_id == course_id)
            .order_by(PaymentPlan.created_at.desc())
        )
        return list(result.scalars().all())

    async def has_active_plan(self, student_id: UUID, course_id: UUID) -> bool:
        result = await self.session.execute(
            select(PaymentPlan.id).where(
                PaymentPlan.student_id == student_id,
                PaymentPlan.course_id == course_id,
                PaymentPlan.status == PaymentPlanStatus.ACTIVE.value,
            )
        )
        return result.first() is not None

    async def delete_plan(self, plan: PaymentPlan) -> None:
        # Explicit child delete: SQLite ignores ON DELETE CASCADE unless foreign keys are enabled.
        await self.session.execute(delete(Installment).where(Installment.payment_plan_id == plan.id))
        await self.session.delete(plan)
        await self.flush()

    # --- Installments ---
    async def get_installment(self, installment_id: UUID) -> Optional[Installment]:
        return await self.session.get(Installment, installment_id)

    async def list_installments(self, plan_id: UUID) -> List[Installment]:
        result = await self.session.execute(
            select(Installment)
            .where(Installment.payment_plan_id == plan_id)
            .order_by(Installment.installment_number)
        )
        return list(result.scalars().all())

    async def list_overdue(self, cutoff: date) -> List[Installment]:
        """Overdue rows plus Pending rows already past the cutoff (not yet swept)."""
        result = await self.session.execute(
            select(Installment)
            .where(
                Installment.status.in_(
                    (InstallmentStatus.PENDING.value, InstallmentStatus.OVERDUE.value)
                ),
                Installment.due_date < cutoff,
            )
            .order_by(Installment.due_date)
        )
        return list(result.scalars().all())

    async def list_upcoming(self, start: date, end: date) -> List[Installment]:
        result = await self.session.execute(
            select(Installment)
            .where(
                Installment.status == InstallmentStatus.PENDING.value,
                Installment.due_date >= start,
                Installment.due_date <= end,
            )
            .order_by(Installment.due_date)
        )
        return list(result.scalars().all())

    async def promote_overdue(self, cutoff: date) -> int:
        """Pending -> Overdue for rows due before cutoff. Bumps version so in-flight payers retry."""
        result = await self.session.execute(
            update(Installment)
            .where(
                Installment.status == InstallmentStatus.PENDING.value,
                Installment.due_date < cutoff,
            )
            .values(
                status=InstallmentStatus.OVERDUE.value,
                version=Installment.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def attach_receipt(self, installment_id: UUID, receipt_id: UUID) -> bool:
        """Set receipt_id only if the installment has none yet. False means another caller got there first."""
        result = await self.session.execute(
            update(Installment)
            .where(Installment.id == installment_id, Installment.receipt_id.is_(None))
            .values(receipt_id=receipt_id, version=Installment.version + 1)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    # --- Gateway payment records ---
    async def add_gateway_record(self, record: GatewayPaymentRecord) -> GatewayPaymentRecord:
        self.session.add(record)
        await self.flush()
        return record

    async def get_gateway_record(self, record_id: UUID) -> Optional[GatewayPaymentRecord]:
        return await self.session.get(GatewayPaymentRecord, record_id)

    async def get_gateway_record_by_intent(self, intent_id: str) -> Optional[GatewayPaymentRecord]:
        result = await self.session.execute(
            select(GatewayPaymentRecord).where(GatewayPaymentRecord.external_intent_id == intent_id)
        )
        return result.scalar_one_or_none()

    async def list_gateway_records_for_student(self, student_id: UUID) -> List[GatewayPaymentRecord]:
        result = await self.session.execute(
            select(GatewayPaymentRecord)
            .where(GatewayPaymentRecord.student_id == student_id)
            .order_by(GatewayPaymentRecord.created_at.desc())
        )
        return list(result.scalars().all())

    # --- Students (read-only here) ---
    async def get_student(self, student_id: UUID) -> Optional[Student]:
        return await self.session.get(Student, student_id)

    async def flush(self) -> None:
        try:
            await self.session.flush()
        except StaleDataError as e:
            raise StaleLedgerWrite(str(e)) from e
        except IntegrityError as e:
            raise DuplicateLedgerRow(str(e.orig)) from e


class LedgerStore:
    """Hands out units of work; each one is a fresh session with its own transaction."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[LedgerSession]:
        """Begin on entry, commit on normal exit, roll back on any exception. Always closes the session."""
        async with self._session_factory() as session:
            try:
                yield LedgerSession(session)
                await session.commit()
            except StaleDataError as e:
                await session.rollback()
                logger.debug("Optimistic write conflict on commit: %s", e)
                raise StaleLedgerWrite(str(e)) from e
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateLedgerRow(str(e.orig)) from e
            except Exception:
                await session.rollback()
                raise
