"""Gateway router: payment intents, gateway payments, manual confirmation and the webhook."""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.deps import get_audit, get_gateway, get_ledger_store, get_reconciler
from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.exceptions import GatewayVerificationError, ServiceError
from app.core.ledger.collaborators import AuditSink
from app.core.ledger.gateway import SIGNATURE_HEADER, GatewayAdapter
from app.core.ledger.reconciler import WebhookReconciler
from app.core.ledger.store import LedgerStore

from .schemas import CreateIntentRequest, GatewayPaymentResponse, WebhookResponse
from . import service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/gateway", tags=["gateway"])


@router.post(
    "/create-intent",
    response_model=GatewayPaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment_intent(
    payload: CreateIntentRequest,
    store: LedgerStore = Depends(get_ledger_store),
    gateway: GatewayAdapter = Depends(get_gateway),
    audit: AuditSink = Depends(get_audit),
    current_user: CurrentUser = Depends(get_current_user),
) -> GatewayPaymentResponse:
    try:
        return await service.create_intent(store, gateway, audit, payload, created_by=current_user.actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/payments/student/{student_id}",
    response_model=List[GatewayPaymentResponse],
    dependencies=[Depends(get_current_user)],
)
async def list_student_gateway_payments(
    student_id: UUID,
    store: LedgerStore = Depends(get_ledger_store),
) -> List[GatewayPaymentResponse]:
    return await service.list_gateway_payments_for_student(store, student_id)


@router.get(
    "/payments/{record_id}",
    response_model=GatewayPaymentResponse,
    dependencies=[Depends(get_current_user)],
)
async def get_gateway_payment(
    record_id: UUID,
    store: LedgerStore = Depends(get_ledger_store),
) -> GatewayPaymentResponse:
    try:
        return await service.get_gateway_payment(store, record_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/payments/{record_id}/confirm",
    response_model=GatewayPaymentResponse,
    dependencies=[Depends(get_current_user)],
)
async def confirm_gateway_payment(
    record_id: UUID,
    store: LedgerStore = Depends(get_ledger_store),
    gateway: GatewayAdapter = Depends(get_gateway),
    reconciler: WebhookReconciler = Depends(get_reconciler),
) -> GatewayPaymentResponse:
    try:
        return await service.confirm_gateway_payment(store, gateway, reconciler, record_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/webhook", response_model=WebhookResponse)
async def gateway_webhook(
    request: Request,
    gateway: GatewayAdapter = Depends(get_gateway),
    reconciler: WebhookReconciler = Depends(get_reconciler),
) -> WebhookResponse:
    """Unauthenticated; the signature header is the credential. Non-200 makes the gateway redeliver."""
    raw_payload = await request.body()
    try:
        return await service.handle_webhook(
            gateway,
            reconciler,
            raw_payload,
            request.headers.get(SIGNATURE_HEADER),
            settings.gateway_webhook_secret,
        )
    except GatewayVerificationError as e:
        logger.warning("Webhook rejected from %s: %s", request.client.host if request.client else "unknown", e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except ServiceError as e:
        logger.error("Webhook processing failed: %s", e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message)
