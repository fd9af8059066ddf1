"""Payment plans router: create, read, status, update, delete."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.api.deps import get_audit, get_ledger_store
from app.auth.dependencies import get_current_user
from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.ledger.collaborators import AuditSink
from app.core.ledger.store import LedgerStore

from .schemas import (
    PaymentPlanCreate,
    PaymentPlanResponse,
    PaymentPlanStatusUpdate,
    PaymentPlanUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/payment-plans", tags=["payment-plans"])


@router.post(
    "",
    response_model=PaymentPlanResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment_plan(
    payload: PaymentPlanCreate,
    store: LedgerStore = Depends(get_ledger_store),
    audit: AuditSink = Depends(get_audit),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "STAFF")),
) -> PaymentPlanResponse:
    try:
        return await service.create_payment_plan(store, audit, payload, created_by=current_user.actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/student/{student_id}",
    response_model=List[PaymentPlanResponse],
    dependencies=[Depends(get_current_user)],
)
async def list_student_payment_plans(
    student_id: UUID,
    store: LedgerStore = Depends(get_ledger_store),
) -> List[PaymentPlanResponse]:
    return await service.list_plans_for_student(store, student_id)


@router.get(
    "/course/{course_id}",
    response_model=List[PaymentPlanResponse],
    dependencies=[Depends(require_roles("ADMIN", "STAFF"))],
)
async def list_course_payment_plans(
    course_id: UUID,
    store: LedgerStore = Depends(get_ledger_store),
) -> List[PaymentPlanResponse]:
    return await service.list_plans_for_course(store, course_id)


@router.get(
    "/{plan_id}",
    response_model=PaymentPlanResponse,
    dependencies=[Depends(get_current_user)],
)
async def get_payment_plan(
    plan_id: UUID,
    store: LedgerStore = Depends(get_ledger_store),
) -> PaymentPlanResponse:
    try:
        return await service.get_payment_plan(store, plan_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{plan_id}/status", response_model=PaymentPlanResponse)
async def update_payment_plan_status(
    plan_id: UUID,
    payload: PaymentPlanStatusUpdate,
    store: LedgerStore = Depends(get_ledger_store),
    audit: AuditSink = Depends(get_audit),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "STAFF")),
) -> PaymentPlanResponse:
    try:
        return await service.update_payment_plan_status(
            store, audit, plan_id, payload.status, updated_by=current_user.actor
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{plan_id}", response_model=PaymentPlanResponse)
async def update_payment_plan(
    plan_id: UUID,
    payload: PaymentPlanUpdate,
    store: LedgerStore = Depends(get_ledger_store),
    audit: AuditSink = Depends(get_audit),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "STAFF")),
) -> PaymentPlanResponse:
    try:
        return await service.update_payment_plan(store, audit, plan_id, payload, updated_by=current_user.actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payment_plan(
    plan_id: UUID,
    store: LedgerStore = Depends(get_ledger_store),
    audit: AuditSink = Depends(get_audit),
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
) -> Response:
    try:
        await service.delete_payment_plan(store, audit, plan_id, deleted_by=current_user.actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
