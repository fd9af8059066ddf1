"""Gateway service: payment intents, gateway payment records, confirmation and webhooks."""

import logging
from typing import List, Optional
from uuid import UUID

from app.core.config import settings
from app.core.enums import AuditAction, GatewayPaymentStatus, InstallmentStatus, PaymentPlanStatus
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.ledger.collaborators import AuditSink
from app.core.ledger.gateway import GatewayAdapter
from app.core.ledger.reconciler import WebhookReconciler
from app.core.ledger.recorder import to_decimal
from app.core.ledger.store import DuplicateLedgerRow, LedgerStore
from app.core.ledger.transitions import GATEWAY_PAYMENT, is_terminal
from app.core.models import GatewayPaymentRecord

from .schemas import CreateIntentRequest, GatewayPaymentResponse, WebhookResponse

logger = logging.getLogger(__name__)

IGNORED = "ignored"


def _record_to_response(record: GatewayPaymentRecord) -> GatewayPaymentResponse:
    return GatewayPaymentResponse(
        id=record.id,
        intent_id=record.external_intent_id,
        client_secret=record.client_secret,
        student_id=record.student_id,
        installment_id=record.installment_id,
        amount=to_decimal(record.amount),
        currency=record.currency,
        status=record.status,
        payment_method=record.payment_method,
        error_message=record.error_message,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


async def create_intent(
    store: LedgerStore,
    gateway: GatewayAdapter,
    audit: AuditSink,
    payload: CreateIntentRequest,
    created_by: str,
) -> GatewayPaymentResponse:
    """Gateway first, then the Pending record: a gateway failure leaves nothing behind."""
    currency = (payload.currency or settings.gateway_default_currency).lower()
    amount = to_decimal(payload.amount)
    async with store.unit_of_work() as uow:
        if not await uow.get_student(payload.student_id):
            raise NotFoundError(f"Student with ID {payload.student_id} not found")
        inst = await uow.get_installment(payload.installment_id)
        if not inst:
            raise NotFoundError(f"Installment with ID {payload.installment_id} not found")
        plan = await uow.get_plan(inst.payment_plan_id)
    if not plan or plan.student_id != payload.student_id:
        raise ValidationError("Installment does not belong to this student")
    if plan.status == PaymentPlanStatus.CANCELLED.value:
        raise ValidationError("Cannot pay an installment of a cancelled payment plan")
    if inst.status == InstallmentStatus.PAID.value:
        raise ValidationError("Installment is already paid")
    if abs(amount - to_decimal(inst.amount)) > settings.ledger_amount_tolerance:
        raise ValidationError(
            f"Payment amount ({amount}) does not match installment amount ({to_decimal(inst.amount)})"
        )

    intent = await gateway.create_intent(
        payload.student_id,
        payload.installment_id,
        amount,
        currency,
        metadata={"installment_number": str(inst.installment_number), "payment_plan_id": str(plan.id)},
    )
    try:
        async with store.unit_of_work() as uow:
            record = await uow.add_gateway_record(
                GatewayPaymentRecord(
                    external_intent_id=intent.intent_id,
                    student_id=payload.student_id,
                    installment_id=payload.installment_id,
                    amount=amount,
                    currency=currency,
                    status=GatewayPaymentStatus.PENDING.value,
                    client_secret=intent.client_secret,
                    created_by=created_by,
                )
            )
    except DuplicateLedgerRow:
        raise ConflictError(f"Payment intent {intent.intent_id} is already recorded")

    logger.info(
        "Payment intent %s created for installment %s (%s %s)",
        intent.intent_id, payload.installment_id, amount, currency,
    )
    await audit.record(
        AuditAction.GATEWAY_INTENT_CREATED,
        "GatewayPayment",
        record.id,
        after={"external_intent_id": intent.intent_id, "amount": amount, "currency": currency},
        note=f"Payment intent created for installment #{inst.installment_number}",
        performed_by=created_by,
    )
    return _record_to_response(record)


async def get_gateway_payment(store: LedgerStore, record_id: UUID) -> GatewayPaymentResponse:
    async with store.unit_of_work() as uow:
        record = await uow.get_gateway_record(record_id)
    if not record:
        raise NotFoundError(f"Gateway payment with ID {record_id} not found")
    return _record_to_response(record)


async def list_gateway_payments_for_student(store: LedgerStore, student_id: UUID) -> List[GatewayPaymentResponse]:
    async with store.unit_of_work() as uow:
        records = await uow.list_gateway_records_for_student(student_id)
    return [_record_to_response(r) for r in records]


async def confirm_gateway_payment(
    store: LedgerStore,
    gateway: GatewayAdapter,
    reconciler: WebhookReconciler,
    record_id: UUID,
) -> GatewayPaymentResponse:
    """Ask the gateway for the outcome instead of waiting for the webhook. Same reconciliation path."""
    async with store.unit_of_work() as uow:
        record = await uow.get_gateway_record(record_id)
    if not record:
        raise NotFoundError(f"Gateway payment with ID {record_id} not found")
    if is_terminal(GATEWAY_PAYMENT, record.status):
        return _record_to_response(record)

    outcome = await gateway.retrieve_outcome(record.external_intent_id)
    if outcome is None:
        logger.info("Payment intent %s not settled yet", record.external_intent_id)
        return _record_to_response(record)
    await reconciler.handle(outcome)
    return await get_gateway_payment(store, record_id)


async def handle_webhook(
    gateway: GatewayAdapter,
    reconciler: WebhookReconciler,
    raw_payload: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
) -> WebhookResponse:
    # Verification happens before any ledger read.
    outcome = gateway.verify_and_parse_webhook(raw_payload, signature_header, secret)
    if outcome is None:
        return WebhookResponse(status=IGNORED)
    result = await reconciler.handle(outcome)
    return WebhookResponse(status=result.status, intent_id=outcome.intent_id)
