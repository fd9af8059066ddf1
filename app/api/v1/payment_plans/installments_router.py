"""Installments router: payment, receipt reissue, overdue and upcoming queries, overdue sweep."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_ledger_store, get_recorder, get_sweeper
from app.auth.dependencies import get_current_user
from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.ledger.recorder import PaymentRecorder
from app.core.ledger.store import LedgerStore
from app.core.ledger.sweeper import OverdueSweeper

from .schemas import (
    InstallmentResponse,
    OverdueSweepResponse,
    PayInstallmentRequest,
    PayInstallmentResponse,
    ReissueReceiptResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/installments", tags=["installments"])


# Fixed paths first: /{installment_id} would otherwise capture them.
@router.get(
    "/overdue",
    response_model=List[InstallmentResponse],
    dependencies=[Depends(require_roles("ADMIN", "STAFF"))],
)
async def list_overdue_installments(
    days: Optional[int] = Query(None, ge=0, description="Only installments overdue by more than this many days"),
    store: LedgerStore = Depends(get_ledger_store),
) -> List[InstallmentResponse]:
    return await service.list_overdue(store, days)


@router.post(
    "/overdue/sweep",
    response_model=OverdueSweepResponse,
    dependencies=[Depends(require_roles("ADMIN", "STAFF"))],
)
async def sweep_overdue_installments(
    days: Optional[int] = Query(None, ge=0),
    sweeper: OverdueSweeper = Depends(get_sweeper),
) -> OverdueSweepResponse:
    return await service.sweep_overdue(sweeper, days)


@router.get(
    "/upcoming",
    response_model=List[InstallmentResponse],
    dependencies=[Depends(require_roles("ADMIN", "STAFF"))],
)
async def list_upcoming_installments(
    days: Optional[int] = Query(None, ge=0, description="Window in days, defaults to 7"),
    store: LedgerStore = Depends(get_ledger_store),
) -> List[InstallmentResponse]:
    return await service.list_upcoming(store, days)


@router.get(
    "/{installment_id}",
    response_model=InstallmentResponse,
    dependencies=[Depends(get_current_user)],
)
async def get_installment(
    installment_id: UUID,
    store: LedgerStore = Depends(get_ledger_store),
) -> InstallmentResponse:
    try:
        return await service.get_installment(store, installment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{installment_id}/pay", response_model=PayInstallmentResponse)
async def pay_installment(
    installment_id: UUID,
    payload: PayInstallmentRequest,
    recorder: PaymentRecorder = Depends(get_recorder),
    current_user: CurrentUser = Depends(get_current_user),
) -> PayInstallmentResponse:
    try:
        return await service.pay_installment(recorder, installment_id, payload, performed_by=current_user.actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{installment_id}/receipt", response_model=ReissueReceiptResponse)
async def reissue_installment_receipt(
    installment_id: UUID,
    recorder: PaymentRecorder = Depends(get_recorder),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "STAFF")),
) -> ReissueReceiptResponse:
    try:
        return await service.reissue_receipt(recorder, installment_id, performed_by=current_user.actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
