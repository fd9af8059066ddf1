"""Payment plan service: plan creation from a schedule, plan status, installment queries and payments."""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from app.core.config import settings
from app.core.enums import AuditAction, InstallmentStatus
from app.core.exceptions import (
    ConcurrencyError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.core.ledger.collaborators import AuditSink
from app.core.ledger.recorder import PaymentRecorder, plan_snapshot, to_decimal
from app.core.ledger.scheduler import schedule
from app.core.ledger.store import DuplicateLedgerRow, LedgerStore, StaleLedgerWrite
from app.core.ledger.sweeper import OverdueSweeper, overdue_cutoff
from app.core.ledger.transitions import FORCEABLE_PLAN_STATUSES, PAYMENT_PLAN, is_noop, transition
from app.core.models import Installment, PaymentPlan

from .schemas import (
    InstallmentResponse,
    OverdueSweepResponse,
    PayInstallmentRequest,
    PayInstallmentResponse,
    PaymentPlanCreate,
    PaymentPlanResponse,
    PaymentPlanUpdate,
    ReissueReceiptResponse,
)

logger = logging.getLogger(__name__)


def _to_uuid(val):
    if val is None:
        return None
    return val if isinstance(val, UUID) else UUID(str(val))


def _installment_to_response(inst: Installment, today: Optional[date] = None) -> InstallmentResponse:
    today = today or date.today()
    overdue = inst.status == InstallmentStatus.OVERDUE.value or (
        inst.status == InstallmentStatus.PENDING.value and inst.due_date < today
    )
    return InstallmentResponse(
        id=_to_uuid(inst.id),
        payment_plan_id=_to_uuid(inst.payment_plan_id),
        installment_number=inst.installment_number,
        amount=to_decimal(inst.amount),
        due_date=inst.due_date,
        paid_date=inst.paid_date,
        status=inst.status,
        receipt_id=_to_uuid(inst.receipt_id),
        external_payment_reference=inst.external_payment_reference,
        payment_method=inst.payment_method,
        remarks=inst.remarks,
        is_overdue=overdue,
        days_overdue=(today - inst.due_date).days if overdue else 0,
    )


def _plan_to_response(plan: PaymentPlan, installments: List[Installment]) -> PaymentPlanResponse:
    return PaymentPlanResponse(
        id=_to_uuid(plan.id),
        student_id=_to_uuid(plan.student_id),
        course_id=_to_uuid(plan.course_id),
        total_amount=to_decimal(plan.total_amount),
        paid_amount=to_decimal(plan.paid_amount),
        balance_amount=to_decimal(plan.balance_amount),
        installment_count=plan.installment_count,
        status=plan.status,
        description=plan.description,
        created_by=plan.created_by,
        created_at=plan.created_at,
        updated_at=plan.updated_at,
        installments=[_installment_to_response(i) for i in installments],
    )


# --- Payment Plans ---
async def create_payment_plan(
    store: LedgerStore,
    audit: AuditSink,
    payload: PaymentPlanCreate,
    created_by: str,
) -> PaymentPlanResponse:
    first_due_date = payload.first_due_date or (date.today() + timedelta(days=settings.default_first_due_days))
    scheduled = schedule(payload.total_amount, payload.installment_count, first_due_date)
    total = to_decimal(payload.total_amount)
    try:
        async with store.unit_of_work() as uow:
            if not await uow.get_student(payload.student_id):
                raise NotFoundError(f"Student with ID {payload.student_id} not found")
            if await uow.has_active_plan(payload.student_id, payload.course_id):
                raise ConflictError("An active payment plan already exists for this student and course")
            plan = PaymentPlan(
                student_id=payload.student_id,
                course_id=payload.course_id,
                total_amount=total,
                paid_amount=Decimal("0"),
                balance_amount=total,
                installment_count=payload.installment_count,
                description=payload.description.strip() if payload.description else None,
                created_by=created_by,
            )
            installments = [
                Installment(
                    installment_number=item.number,
                    amount=item.amount,
                    due_date=item.due_date,
                    status=InstallmentStatus.PENDING.value,
                )
                for item in scheduled
            ]
            await uow.add_plan(plan, installments)
    except DuplicateLedgerRow:
        raise ConflictError("Payment plan could not be created: duplicate installment schedule")

    logger.info(
        "Payment plan %s created for student %s: %s in %d installment(s)",
        plan.id, plan.student_id, total, plan.installment_count,
    )
    await audit.record(
        AuditAction.CREATE,
        "PaymentPlan",
        plan.id,
        after=plan_snapshot(plan),
        note=f"Payment plan created: {total} in {plan.installment_count} installments",
        performed_by=created_by,
    )
    return _plan_to_response(plan, installments)


async def get_payment_plan(store: LedgerStore, plan_id: UUID) -> PaymentPlanResponse:
    async with store.unit_of_work() as uow:
        plan = await uow.get_plan(plan_id)
        if not plan:
            raise NotFoundError(f"Payment plan with ID {plan_id} not found")
        installments = await uow.list_installments(plan.id)
    return _plan_to_response(plan, installments)


async def list_plans_for_student(store: LedgerStore, student_id: UUID) -> List[PaymentPlanResponse]:
    async with store.unit_of_work() as uow:
        plans = await uow.list_plans_for_student(student_id)
        return [_plan_to_response(p, await uow.list_installments(p.id)) for p in plans]


async def list_plans_for_course(store: LedgerStore, course_id: UUID) -> List[PaymentPlanResponse]:
    async with store.unit_of_work() as uow:
        plans = await uow.list_plans_for_course(course_id)
        return [_plan_to_response(p, await uow.list_installments(p.id)) for p in plans]


async def update_payment_plan_status(
    store: LedgerStore,
    audit: AuditSink,
    plan_id: UUID,
    new_status,
    updated_by: str,
) -> PaymentPlanResponse:
    """Status-only change. Completed is reached by paying, never forced."""
    if new_status not in FORCEABLE_PLAN_STATUSES:
        raise ValidationError(f"Payment plan status cannot be set to {new_status.value} manually")
    return await update_payment_plan(store, audit, plan_id, PaymentPlanUpdate(status=new_status), updated_by)


async def update_payment_plan(
    store: LedgerStore,
    audit: AuditSink,
    plan_id: UUID,
    payload: PaymentPlanUpdate,
    updated_by: str,
) -> PaymentPlanResponse:
    if payload.status is not None and payload.status not in FORCEABLE_PLAN_STATUSES:
        raise ValidationError(f"Payment plan status cannot be set to {payload.status.value} manually")
    try:
        async with store.unit_of_work() as uow:
            plan = await uow.get_plan(plan_id)
            if not plan:
                raise NotFoundError(f"Payment plan with ID {plan_id} not found")
            before = {"status": plan.status, "description": plan.description}
            if payload.status is not None and not is_noop(PAYMENT_PLAN, plan.status, payload.status):
                plan.status = transition(PAYMENT_PLAN, plan.status, payload.status)
            if payload.description is not None:
                plan.description = payload.description.strip() or None
            await uow.flush()
            installments = await uow.list_installments(plan.id)
    except StaleLedgerWrite:
        raise ConcurrencyError("Payment plan was modified concurrently; please retry")

    after = {"status": plan.status, "description": plan.description}
    if after != before:
        logger.info("Payment plan %s updated: %s -> %s", plan.id, before, after)
        await audit.record(
            AuditAction.UPDATE,
            "PaymentPlan",
            plan.id,
            before=before,
            after=after,
            note="Payment plan updated",
            performed_by=updated_by,
        )
    return _plan_to_response(plan, installments)


async def delete_payment_plan(store: LedgerStore, audit: AuditSink, plan_id: UUID, deleted_by: str) -> None:
    try:
        async with store.unit_of_work() as uow:
            plan = await uow.get_plan(plan_id)
            if not plan:
                raise NotFoundError(f"Payment plan with ID {plan_id} not found")
            installments = await uow.list_installments(plan.id)
            if to_decimal(plan.paid_amount) != 0 or any(
                i.status == InstallmentStatus.PAID.value for i in installments
            ):
                raise ConflictError("Cannot delete a payment plan with recorded payments")
            snapshot = plan_snapshot(plan)
            await uow.delete_plan(plan)
    except StaleLedgerWrite:
        raise ConcurrencyError("Payment plan was modified concurrently; please retry")

    logger.info("Payment plan %s deleted", plan_id)
    await audit.record(
        AuditAction.DELETE,
        "PaymentPlan",
        plan_id,
        before=snapshot,
        note="Payment plan deleted",
        performed_by=deleted_by,
    )


# --- Installments ---
async def get_installment(store: LedgerStore, installment_id: UUID) -> InstallmentResponse:
    async with store.unit_of_work() as uow:
        inst = await uow.get_installment(installment_id)
    if not inst:
        raise NotFoundError(f"Installment with ID {installment_id} not found")
    return _installment_to_response(inst)


async def pay_installment(
    recorder: PaymentRecorder,
    installment_id: UUID,
    payload: PayInstallmentRequest,
    performed_by: str,
) -> PayInstallmentResponse:
    result = await recorder.record_payment(
        installment_id,
        payload.amount,
        payload.payment_method,
        remarks=payload.remarks,
        performed_by=performed_by,
    )
    return PayInstallmentResponse(
        installment=_installment_to_response(result.installment),
        receipt_id=_to_uuid(result.receipt_id),
        applied=result.applied,
        conflict=result.conflict,
    )


async def reissue_receipt(
    recorder: PaymentRecorder,
    installment_id: UUID,
    performed_by: str,
) -> ReissueReceiptResponse:
    receipt_id = await recorder.reissue_receipt(installment_id, performed_by=performed_by)
    return ReissueReceiptResponse(installment_id=installment_id, receipt_id=receipt_id)


async def list_overdue(
    store: LedgerStore,
    days: Optional[int] = None,
    today: Optional[date] = None,
) -> List[InstallmentResponse]:
    """Read-only: installments past due by more than `days`, whether or not the sweep has run yet."""
    today = today or date.today()
    async with store.unit_of_work() as uow:
        rows = await uow.list_overdue(overdue_cutoff(today, days))
    return [_installment_to_response(i, today) for i in rows]


async def list_upcoming(
    store: LedgerStore,
    days: Optional[int] = None,
    today: Optional[date] = None,
) -> List[InstallmentResponse]:
    today = today or date.today()
    window = settings.upcoming_window_days if days is None else days
    async with store.unit_of_work() as uow:
        rows = await uow.list_upcoming(today, today + timedelta(days=window))
    return [_installment_to_response(i, today) for i in rows]


async def sweep_overdue(
    sweeper: OverdueSweeper,
    days: Optional[int] = None,
    today: Optional[date] = None,
) -> OverdueSweepResponse:
    today = today or date.today()
    promoted = await sweeper.sweep(days, today=today)
    return OverdueSweepResponse(promoted=promoted, cutoff=overdue_cutoff(today, days))
