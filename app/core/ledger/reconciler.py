"""
Webhook reconciliation: apply gateway outcomes to the ledger exactly once.

Deduplication is keyed on the gateway's intent id (GatewayPaymentRecord.external_intent_id).
A redelivered Succeeded event finds the record already Paid and the installment already
Paid, so the recorder reports a no-op instead of moving money again.
"""

import logging
from typing import NamedTuple, Optional
from uuid import UUID

from app.core.enums import AuditAction, GatewayPaymentStatus
from app.core.exceptions import ConcurrencyError, NotFoundError
from app.core.ledger.collaborators import AuditSink
from app.core.ledger.gateway import PaymentFailed, PaymentOutcome, PaymentSucceeded
from app.core.ledger.recorder import PaymentRecorder, PaymentResult
from app.core.ledger.store import LedgerStore, StaleLedgerWrite
from app.core.ledger.transitions import GATEWAY_PAYMENT, is_noop, transition
from app.core.models import GatewayPaymentRecord

logger = logging.getLogger(__name__)

APPLIED = "applied"
ALREADY_APPLIED = "already_applied"
FAILED_RECORDED = "failed_recorded"
ALREADY_FAILED = "already_failed"
NO_INSTALLMENT = "no_installment"


class ReconcileResult(NamedTuple):
    status: str
    record_id: UUID
    installment_id: Optional[UUID] = None
    payment: Optional[PaymentResult] = None


class WebhookReconciler:
    def __init__(self, store: LedgerStore, recorder: PaymentRecorder, audit: AuditSink) -> None:
        self.store = store
        self.recorder = recorder
        self.audit = audit

    async def handle(self, outcome: PaymentOutcome) -> ReconcileResult:
        if not outcome.verified:
            logger.warning("Reconciling UNVERIFIED outcome for intent %s (insecure webhook mode)", outcome.intent_id)
        if isinstance(outcome, PaymentSucceeded):
            return await self._succeeded(outcome)
        if isinstance(outcome, PaymentFailed):
            return await self._failed(outcome)
        raise TypeError(f"Unsupported payment outcome: {outcome!r}")

    async def _mark(self, intent_id: str, target: GatewayPaymentStatus, **fields) -> tuple:
        """Move the record to target. Returns (record snapshot, changed). Idempotent for a repeated target."""
        for _ in range(self.recorder.max_attempts):
            try:
                async with self.store.unit_of_work() as uow:
                    record = await uow.get_gateway_record_by_intent(intent_id)
                    if not record:
                        raise NotFoundError(f"No gateway payment for intent {intent_id}")
                    if is_noop(GATEWAY_PAYMENT, record.status, target):
                        return record, False
                    record.status = transition(GATEWAY_PAYMENT, record.status, target)
                    for key, value in fields.items():
                        setattr(record, key, value)
                    await uow.flush()
                return record, True
            except StaleLedgerWrite:
                logger.warning("Concurrent update of gateway payment %s, retrying", intent_id)
        logger.error("Gave up updating gateway payment %s after %d attempts", intent_id, self.recorder.max_attempts)
        raise ConcurrencyError("Gateway payment is being updated concurrently; please retry")

    async def _succeeded(self, outcome: PaymentSucceeded) -> ReconcileResult:
        record, changed = await self._mark(
            outcome.intent_id,
            GatewayPaymentStatus.PAID,
            payment_method=outcome.method,
        )
        if changed:
            await self._audit(record, AuditAction.GATEWAY_PAYMENT_SUCCEEDED, "Payment succeeded via webhook")
        if not record.installment_id:
            logger.warning("Gateway payment %s succeeded but is not linked to an installment", record.id)
            return ReconcileResult(NO_INSTALLMENT, record.id)

        # Runs on every delivery: the recorder's own idempotence makes repeats no-ops and
        # completes the ledger side if an earlier delivery stopped after marking the record.
        payment = await self.recorder.record_payment(
            record.installment_id,
            record.amount,
            method="Stripe",
            external_ref=record.external_intent_id,
            remarks="Paid via gateway - webhook confirmed",
            performed_by="System",
        )
        status = APPLIED if payment.applied else ALREADY_APPLIED
        logger.info("Webhook for intent %s reconciled: %s", outcome.intent_id, status)
        return ReconcileResult(status, record.id, record.installment_id, payment)

    async def _failed(self, outcome: PaymentFailed) -> ReconcileResult:
        record, changed = await self._mark(
            outcome.intent_id,
            GatewayPaymentStatus.FAILED,
            error_message=(outcome.reason or "Payment failed")[:1000],
        )
        if not changed:
            return ReconcileResult(ALREADY_FAILED, record.id, record.installment_id)
        await self._audit(record, AuditAction.GATEWAY_PAYMENT_FAILED, f"Payment failed: {record.error_message}")
        logger.info("Gateway payment %s failed: %s", outcome.intent_id, record.error_message)
        return ReconcileResult(FAILED_RECORDED, record.id, record.installment_id)

    async def _audit(self, record: GatewayPaymentRecord, action: AuditAction, note: str) -> None:
        await self.audit.record(
            action,
            "GatewayPayment",
            record.id,
            after={
                "external_intent_id": record.external_intent_id,
                "status": record.status,
                "payment_method": record.payment_method,
                "amount": record.amount,
            },
            note=note,
            performed_by="System",
        )
