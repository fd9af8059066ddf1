"""
Request-scoped wiring for the ledger components.

Everything hangs off get_ledger_store and get_gateway; tests override those two
through app.dependency_overrides and the rest follows.
"""

from typing import Optional

from fastapi import Depends

from app.core.ledger.collaborators import (
    AuditSink,
    DbAuditSink,
    DbReceiptIssuer,
    DbStudentLifecycle,
)
from app.core.ledger.gateway import GatewayAdapter, StripeGatewayAdapter
from app.core.ledger.reconciler import WebhookReconciler
from app.core.ledger.recorder import PaymentRecorder
from app.core.ledger.store import LedgerStore
from app.core.ledger.sweeper import OverdueSweeper
from app.db.session import AsyncSessionLocal

_gateway: Optional[StripeGatewayAdapter] = None


def get_ledger_store() -> LedgerStore:
    return LedgerStore(AsyncSessionLocal)


def get_gateway() -> GatewayAdapter:
    """One adapter (and its pooled httpx client) per process."""
    global _gateway
    if _gateway is None:
        _gateway = StripeGatewayAdapter()
    return _gateway


async def close_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None


def get_audit(store: LedgerStore = Depends(get_ledger_store)) -> AuditSink:
    return DbAuditSink(store.session_factory)


def get_recorder(
    store: LedgerStore = Depends(get_ledger_store),
    audit: AuditSink = Depends(get_audit),
) -> PaymentRecorder:
    return PaymentRecorder(
        store,
        DbReceiptIssuer(store.session_factory),
        DbStudentLifecycle(store.session_factory),
        audit,
    )


def get_reconciler(
    store: LedgerStore = Depends(get_ledger_store),
    recorder: PaymentRecorder = Depends(get_recorder),
    audit: AuditSink = Depends(get_audit),
) -> WebhookReconciler:
    return WebhookReconciler(store, recorder, audit)


def get_sweeper(
    store: LedgerStore = Depends(get_ledger_store),
    audit: AuditSink = Depends(get_audit),
) -> OverdueSweeper:
    return OverdueSweeper(store, audit)
