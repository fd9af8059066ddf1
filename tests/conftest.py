import os
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID

# Settings are read at import time; configure before importing the app.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./ledger_unused.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("GATEWAY_WEBHOOK_SECRET", None)

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from app.api.deps import get_gateway, get_ledger_store
from app.api.v1.payment_plans import service as plan_service
from app.api.v1.payment_plans.schemas import PaymentPlanCreate
from app.core.enums import StudentStatus
from app.core.ledger.collaborators import DbAuditSink, DbReceiptIssuer, DbStudentLifecycle
from app.core.ledger.gateway import StripeGatewayAdapter
from app.core.ledger.reconciler import WebhookReconciler
from app.core.ledger.recorder import PaymentRecorder
from app.core.ledger.store import LedgerStore
from app.core.ledger.sweeper import OverdueSweeper
from app.core.models import Student
from app.db.session import build_session_factory, create_tables
from app.main import app

from tests.support import GATEWAY_API_BASE, GatewayStub


@pytest.fixture()
async def engine(tmp_path):
    """File-backed SQLite: every session sees the same database, unlike :memory:."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False, future=True)
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture()
def store(session_factory) -> LedgerStore:
    return LedgerStore(session_factory)


@pytest.fixture()
def audit(session_factory) -> DbAuditSink:
    return DbAuditSink(session_factory)


@pytest.fixture()
def recorder(store, session_factory, audit) -> PaymentRecorder:
    return PaymentRecorder(
        store,
        DbReceiptIssuer(session_factory),
        DbStudentLifecycle(session_factory),
        audit,
        tolerance=Decimal("0.01"),
        max_attempts=3,
    )


@pytest.fixture()
def reconciler(store, recorder, audit) -> WebhookReconciler:
    return WebhookReconciler(store, recorder, audit)


@pytest.fixture()
def sweeper(store, audit) -> OverdueSweeper:
    return OverdueSweeper(store, audit)


@pytest.fixture()
async def student(session_factory) -> UUID:
    async with session_factory() as session:
        row = Student(full_name="Asha Rai", email="asha@example.com", status=StudentStatus.PENDING_PAYMENT.value)
        session.add(row)
        await session.commit()
        return row.id


@pytest.fixture()
def make_plan(store, audit, student):
    """Create a plan through the service, the way the API does."""

    async def _make(total="900.00", count=3, first_due_date=None, student_id=None, course_id=None):
        payload = PaymentPlanCreate(
            student_id=student_id or student,
            course_id=course_id,
            total_amount=Decimal(str(total)),
            installment_count=count,
            first_due_date=first_due_date,
        )
        return await plan_service.create_payment_plan(store, audit, payload, created_by="tester")

    return _make


@pytest.fixture()
def gateway_stub() -> GatewayStub:
    return GatewayStub()


@pytest.fixture()
async def gateway(gateway_stub) -> AsyncGenerator[StripeGatewayAdapter, None]:
    adapter = StripeGatewayAdapter(
        api_key="sk_test_123",
        api_base=GATEWAY_API_BASE,
        timeout=2,
        allow_unsigned=False,
        client=httpx.AsyncClient(transport=httpx.MockTransport(gateway_stub.handler)),
    )
    yield adapter
    await adapter.aclose()


@pytest.fixture()
async def client(store, gateway) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, wired to the per-test database and gateway stub."""
    app.dependency_overrides[get_ledger_store] = lambda: store
    app.dependency_overrides[get_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
