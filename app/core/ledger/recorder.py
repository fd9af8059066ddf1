"""
Payment recorder: the single place where a confirmed payment is applied to the ledger.

Admin confirmations and gateway webhooks both end up in PaymentRecorder.record_payment.
An installment that is already Paid turns every later call into a no-op, so whichever
path arrives first wins and the second changes nothing.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import NamedTuple, Optional
from uuid import UUID

from app.core.config import settings
from app.core.enums import AuditAction, InstallmentStatus, PaymentPlanStatus, ReceiptType
from app.core.exceptions import (
    ConcurrencyError,
    LedgerInvariantError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from app.core.ledger.collaborators import AuditSink, ReceiptIssuer, StudentLifecycle
from app.core.ledger.store import LedgerStore, StaleLedgerWrite
from app.core.ledger.transitions import INSTALLMENT, PAYMENT_PLAN, transition
from app.core.models import Installment, PaymentPlan

logger = logging.getLogger(__name__)


class PaymentResult(NamedTuple):
    installment: Installment
    plan: PaymentPlan
    applied: bool  # False: installment was already paid, nothing changed
    conflict: bool  # already paid under a different external reference
    receipt_id: Optional[UUID] = None


def to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def plan_snapshot(plan: PaymentPlan) -> dict:
    return {
        "total_amount": to_decimal(plan.total_amount),
        "paid_amount": to_decimal(plan.paid_amount),
        "balance_amount": to_decimal(plan.balance_amount),
        "status": plan.status,
    }


def installment_snapshot(inst: Installment) -> dict:
    return {
        "installment_number": inst.installment_number,
        "amount": to_decimal(inst.amount),
        "status": inst.status,
        "paid_date": inst.paid_date,
        "payment_method": inst.payment_method,
        "external_payment_reference": inst.external_payment_reference,
    }


def check_plan_balance(plan: PaymentPlan) -> None:
    total = to_decimal(plan.total_amount)
    paid = to_decimal(plan.paid_amount)
    balance = to_decimal(plan.balance_amount)
    if balance != total - paid or balance < 0:
        raise LedgerInvariantError(
            f"Payment plan {plan.id} is inconsistent: total={total} paid={paid} balance={balance}"
        )


class PaymentRecorder:
    def __init__(
        self,
        store: LedgerStore,
        receipts: ReceiptIssuer,
        students: StudentLifecycle,
        audit: AuditSink,
        tolerance: Optional[Decimal] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        self.store = store
        self.receipts = receipts
        self.students = students
        self.audit = audit
        self.tolerance = to_decimal(tolerance if tolerance is not None else settings.ledger_amount_tolerance)
        self.max_attempts = max_attempts or settings.ledger_max_write_attempts

    async def record_payment(
        self,
        installment_id: UUID,
        amount,
        method: str,
        external_ref: Optional[str] = None,
        remarks: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> PaymentResult:
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")
        if not method or not method.strip():
            raise ValidationError("Payment method is required")
        method = method.strip()

        for attempt in range(1, self.max_attempts + 1):
            try:
                result, before, first_payment = await self._apply(
                    installment_id, amount, method, external_ref, remarks
                )
            except StaleLedgerWrite:
                logger.warning(
                    "Concurrent write on installment %s, retrying (%d/%d)",
                    installment_id, attempt, self.max_attempts,
                )
                continue
            break
        else:
            logger.error("Gave up recording payment for installment %s after %d attempts", installment_id, self.max_attempts)
            raise ConcurrencyError("Installment is being updated concurrently; please retry")

        if not result.applied:
            await self._report_replay(result, external_ref, performed_by)
            return result

        logger.info(
            "Installment %s #%s paid (%s) via %s; plan %s balance now %s",
            result.installment.id, result.installment.installment_number,
            result.installment.amount, method, result.plan.id, result.plan.balance_amount,
        )
        await self.audit.record(
            AuditAction.PAYMENT_APPLIED,
            "Installment",
            result.installment.id,
            before=before,
            after={"installment": installment_snapshot(result.installment), "plan": plan_snapshot(result.plan)},
            note=f"Installment paid via {method}",
            performed_by=performed_by,
        )
        receipt_id = await self._issue_receipt(result.installment, result.plan, method, performed_by)
        if first_payment:
            await self._advance_student(result.plan, performed_by)
        return result._replace(receipt_id=receipt_id)

    async def _apply(self, installment_id, amount, method, external_ref, remarks):
        async with self.store.unit_of_work() as uow:
            inst = await uow.get_installment(installment_id)
            if not inst:
                raise NotFoundError(f"Installment with ID {installment_id} not found")
            plan = await uow.get_plan(inst.payment_plan_id)
            if not plan:
                raise NotFoundError("Payment plan not found for this installment")

            if inst.status == InstallmentStatus.PAID.value:
                conflict = external_ref is not None and external_ref != inst.external_payment_reference
                return PaymentResult(inst, plan, applied=False, conflict=conflict, receipt_id=inst.receipt_id), None, False

            if plan.status == PaymentPlanStatus.CANCELLED.value:
                raise ValidationError("Cannot record a payment on a cancelled payment plan")
            check_plan_balance(plan)

            due = to_decimal(inst.amount)
            balance = to_decimal(plan.balance_amount)
            if amount > balance + self.tolerance:
                raise OverpaymentError(
                    f"Payment amount ({amount}) exceeds remaining balance ({balance})"
                )
            if abs(amount - due) > self.tolerance:
                raise ValidationError(
                    f"Payment amount ({amount}) does not match installment amount ({due})"
                )

            before = {"installment": installment_snapshot(inst), "plan": plan_snapshot(plan)}
            first_payment = to_decimal(plan.paid_amount) == 0

            # The ledger books the scheduled amount so paid_amount stays the exact sum of paid installments.
            inst.status = transition(INSTALLMENT, inst.status, InstallmentStatus.PAID)
            inst.paid_date = datetime.now(timezone.utc)
            inst.payment_method = method
            inst.external_payment_reference = external_ref
            if remarks:
                inst.remarks = remarks

            new_paid = to_decimal(plan.paid_amount) + due
            new_balance = to_decimal(plan.total_amount) - new_paid
            if new_balance < 0:
                raise LedgerInvariantError(
                    f"Payment plan {plan.id} would be overpaid by {-new_balance}"
                )
            plan.paid_amount = new_paid
            plan.balance_amount = new_balance
            if new_balance == 0:
                plan.status = transition(PAYMENT_PLAN, plan.status, PaymentPlanStatus.COMPLETED)

            await uow.flush()
        return PaymentResult(inst, plan, applied=True, conflict=False), before, first_payment

    async def _report_replay(self, result: PaymentResult, external_ref, performed_by) -> None:
        inst = result.installment
        if not result.conflict:
            logger.info("Installment %s already paid; duplicate confirmation ignored", inst.id)
            return
        logger.warning(
            "Installment %s already paid under reference %r; confirmation with %r not applied",
            inst.id, inst.external_payment_reference, external_ref,
        )
        await self.audit.record(
            AuditAction.PAYMENT_REFERENCE_CONFLICT,
            "Installment",
            inst.id,
            before=installment_snapshot(inst),
            after={"rejected_external_reference": external_ref},
            note="Second payment confirmation for an already paid installment; money not applied twice",
            performed_by=performed_by,
        )

    async def _issue_receipt(self, inst: Installment, plan: PaymentPlan, method, performed_by) -> Optional[UUID]:
        """Receipt failures never undo the payment; the installment keeps receipt_id=None for manual reissue."""
        try:
            receipt_id = await self.receipts.issue(
                plan.student_id,
                to_decimal(inst.amount),
                ReceiptType.TUITION_FEE,
                f"Payment for Installment #{inst.installment_number}",
                payment_method=method,
                issued_by=performed_by,
            )
        except Exception as e:
            logger.exception("Receipt issuance failed for installment %s", inst.id)
            await self._receipt_failed(inst.id, f"Receipt issuance failed: {e}", performed_by)
            return None
        try:
            attached = await self._attach_receipt(inst.id, receipt_id)
        except Exception as e:
            logger.exception("Could not attach receipt %s to installment %s", receipt_id, inst.id)
            await self._void_receipt(receipt_id, inst.id)
            await self._receipt_failed(inst.id, f"Receipt could not be attached: {e}", performed_by)
            return None
        inst.receipt_id = attached
        return attached

    async def _receipt_failed(self, installment_id: UUID, note: str, performed_by) -> None:
        await self.audit.record(
            AuditAction.RECEIPT_FAILED,
            "Installment",
            installment_id,
            note=note,
            performed_by=performed_by,
        )

    async def _attach_receipt(self, installment_id: UUID, receipt_id: UUID) -> UUID:
        """Claim the installment's receipt slot. Returns whichever receipt ends up attached."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.store.unit_of_work() as uow:
                    if await uow.attach_receipt(installment_id, receipt_id):
                        return receipt_id
                    winner = (await uow.get_installment(installment_id)).receipt_id
            except StaleLedgerWrite:
                logger.warning(
                    "Concurrent write attaching receipt to installment %s, retrying (%d/%d)",
                    installment_id, attempt, self.max_attempts,
                )
                continue
            break
        else:
            raise ConcurrencyError("Installment is being updated concurrently; please retry")

        # Another caller attached a receipt first; ours was never handed out.
        logger.info("Installment %s already has receipt %s; voiding duplicate %s", installment_id, winner, receipt_id)
        await self._void_receipt(receipt_id, installment_id)
        return winner

    async def _void_receipt(self, receipt_id: UUID, installment_id: UUID) -> None:
        try:
            await self.receipts.void(receipt_id)
        except Exception:
            logger.exception("Could not void unattached receipt %s for installment %s", receipt_id, installment_id)

    async def _advance_student(self, plan: PaymentPlan, performed_by) -> None:
        try:
            advanced = await self.students.advance_from_pending_payment(plan.student_id)
        except Exception as e:
            logger.exception("Student status advancement failed for student %s", plan.student_id)
            await self.audit.record(
                AuditAction.STUDENT_ADVANCE_FAILED,
                "Student",
                plan.student_id,
                note=f"Advancement after first payment failed: {e}",
                performed_by=performed_by,
            )
            return
        if advanced:
            await self.audit.record(
                AuditAction.UPDATE,
                "Student",
                plan.student_id,
                before={"status": "PendingPayment"},
                after={"status": "Enrolled"},
                note="Student admission completed after payment",
                performed_by=performed_by,
            )

    async def reissue_receipt(self, installment_id: UUID, performed_by: Optional[str] = None) -> UUID:
        """Manual reissue for a paid installment whose receipt is missing. Returns the existing id if present."""
        async with self.store.unit_of_work() as uow:
            inst = await uow.get_installment(installment_id)
            if not inst:
                raise NotFoundError(f"Installment with ID {installment_id} not found")
            plan = await uow.get_plan(inst.payment_plan_id)
        if inst.status != InstallmentStatus.PAID.value:
            raise ValidationError("Only paid installments have receipts")
        if inst.receipt_id:
            return inst.receipt_id
        receipt_id = await self.receipts.issue(
            plan.student_id,
            to_decimal(inst.amount),
            ReceiptType.TUITION_FEE,
            f"Payment for Installment #{inst.installment_number} (reissued)",
            payment_method=inst.payment_method,
            issued_by=performed_by,
        )
        try:
            attached = await self._attach_receipt(inst.id, receipt_id)
        except Exception:
            await self._void_receipt(receipt_id, inst.id)
            raise
        if attached != receipt_id:
            # A concurrent reissue won; report its receipt.
            return attached
        await self.audit.record(
            AuditAction.UPDATE,
            "Installment",
            inst.id,
            before={"receipt_id": None},
            after={"receipt_id": receipt_id},
            note="Receipt reissued manually",
            performed_by=performed_by,
        )
        return receipt_id
