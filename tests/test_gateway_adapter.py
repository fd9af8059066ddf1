import logging
import time
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from app.core.exceptions import GatewayCommunicationError, GatewayVerificationError
from app.core.ledger.gateway import (
    PaymentFailed,
    PaymentSucceeded,
    StripeGatewayAdapter,
    parse_signature_header,
    sign_payload,
    to_minor_units,
)

from tests.support import GATEWAY_API_BASE, WEBHOOK_SECRET, gateway_event


@pytest.fixture()
def adapter() -> StripeGatewayAdapter:
    return StripeGatewayAdapter(api_key="sk_test_123", api_base=GATEWAY_API_BASE, allow_unsigned=False)


def test_minor_units() -> None:
    assert to_minor_units(Decimal("300.00"), "usd") == 30000
    assert to_minor_units(Decimal("19.995"), "usd") == 2000
    assert to_minor_units(Decimal("1500"), "JPY") == 1500


def test_signature_header_parsing() -> None:
    assert parse_signature_header("t=1700000000,v1=abc,v0=old,v1=def") == (1700000000, ["abc", "def"])
    with pytest.raises(GatewayVerificationError):
        parse_signature_header("v1=abc")
    with pytest.raises(GatewayVerificationError):
        parse_signature_header("t=soon,v1=abc")


def test_valid_signature_yields_succeeded_outcome(adapter) -> None:
    raw = gateway_event("pi_123")

    outcome = adapter.verify_and_parse_webhook(raw, sign_payload(raw, WEBHOOK_SECRET), WEBHOOK_SECRET)

    assert isinstance(outcome, PaymentSucceeded)
    assert outcome.intent_id == "pi_123"
    assert outcome.method == "card"
    assert outcome.verified is True


def test_failed_event_carries_reason(adapter) -> None:
    raw = gateway_event(
        "pi_123",
        "payment_intent.payment_failed",
        last_payment_error={"message": "Your card has insufficient funds."},
    )

    outcome = adapter.verify_and_parse_webhook(raw, sign_payload(raw, WEBHOOK_SECRET), WEBHOOK_SECRET)

    assert isinstance(outcome, PaymentFailed)
    assert outcome.reason == "Your card has insufficient funds."


def test_unhandled_event_type_is_ignored(adapter) -> None:
    raw = gateway_event("pi_123", "charge.refunded")
    assert adapter.verify_and_parse_webhook(raw, sign_payload(raw, WEBHOOK_SECRET), WEBHOOK_SECRET) is None


def test_tampered_payload_rejected(adapter, caplog) -> None:
    raw = gateway_event("pi_123")
    header = sign_payload(raw, WEBHOOK_SECRET)
    tampered = raw.replace(b"pi_123", b"pi_999")

    with caplog.at_level(logging.WARNING, logger="app.security"):
        with pytest.raises(GatewayVerificationError):
            adapter.verify_and_parse_webhook(tampered, header, WEBHOOK_SECRET)
    assert any(r.name == "app.security" for r in caplog.records)


def test_wrong_secret_and_missing_header_rejected(adapter) -> None:
    raw = gateway_event("pi_123")
    with pytest.raises(GatewayVerificationError):
        adapter.verify_and_parse_webhook(raw, sign_payload(raw, "whsec_other"), WEBHOOK_SECRET)
    with pytest.raises(GatewayVerificationError):
        adapter.verify_and_parse_webhook(raw, None, WEBHOOK_SECRET)


def test_stale_timestamp_rejected(adapter) -> None:
    raw = gateway_event("pi_123")
    header = sign_payload(raw, WEBHOOK_SECRET, timestamp=int(time.time()) - 3600)

    with pytest.raises(GatewayVerificationError):
        adapter.verify_and_parse_webhook(raw, header, WEBHOOK_SECRET)


def test_malformed_json_rejected(adapter) -> None:
    raw = b"{not json"
    with pytest.raises(GatewayVerificationError):
        adapter.verify_and_parse_webhook(raw, sign_payload(raw, WEBHOOK_SECRET), WEBHOOK_SECRET)


def test_unsigned_webhook_refused_without_insecure_mode(adapter) -> None:
    with pytest.raises(GatewayVerificationError):
        adapter.verify_and_parse_webhook(gateway_event("pi_123"), None, None)


def test_insecure_mode_is_flagged(caplog) -> None:
    adapter = StripeGatewayAdapter(api_key="sk_test", allow_unsigned=True)

    with caplog.at_level(logging.WARNING, logger="app.security"):
        outcome = adapter.verify_and_parse_webhook(gateway_event("pi_123"), None, None)

    assert outcome.verified is False
    assert "INSECURE MODE" in caplog.text


@pytest.mark.asyncio
async def test_create_intent_posts_minor_units_and_metadata(gateway, gateway_stub) -> None:
    student_id, installment_id = uuid4(), uuid4()

    intent = await gateway.create_intent(student_id, installment_id, Decimal("300.00"), "USD", {"plan": "p1"})

    assert intent.intent_id == "pi_test_0001"
    assert intent.client_secret == "pi_test_0001_secret_abc"
    request = gateway_stub.requests[-1]
    assert request.headers["Authorization"] == "Bearer sk_test_123"
    stored = gateway_stub.intents["pi_test_0001"]
    assert stored["amount"] == 30000
    assert stored["currency"] == "usd"
    assert stored["metadata"] == {
        "student_id": str(student_id),
        "installment_id": str(installment_id),
        "plan": "p1",
    }


@pytest.mark.asyncio
async def test_gateway_error_status_surfaces_as_communication_error(gateway, gateway_stub) -> None:
    gateway_stub.fail_with = 500
    with pytest.raises(GatewayCommunicationError) as exc:
        await gateway.create_intent(uuid4(), uuid4(), Decimal("10"), "usd")
    assert exc.value.status_code == 502
    assert "gateway unavailable" in exc.value.message


@pytest.mark.asyncio
async def test_gateway_timeout_is_not_retried(gateway, gateway_stub) -> None:
    gateway_stub.timeout = True
    with pytest.raises(GatewayCommunicationError):
        await gateway.create_intent(uuid4(), uuid4(), Decimal("10"), "usd")
    assert len(gateway_stub.requests) == 1


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_any_request(gateway_stub) -> None:
    adapter = StripeGatewayAdapter(
        api_key="",
        api_base=GATEWAY_API_BASE,
        client=httpx.AsyncClient(transport=httpx.MockTransport(gateway_stub.handler)),
    )
    with pytest.raises(GatewayCommunicationError):
        await adapter.create_intent(uuid4(), uuid4(), Decimal("10"), "usd")
    assert gateway_stub.requests == []
    await adapter.aclose()


@pytest.mark.asyncio
async def test_retrieve_outcome_follows_intent_status(gateway, gateway_stub) -> None:
    intent = await gateway.create_intent(uuid4(), uuid4(), Decimal("10"), "usd")
    assert await gateway.retrieve_outcome(intent.intent_id) is None

    gateway_stub.settle(intent.intent_id, succeeded=False, reason="Card expired")
    failed = await gateway.retrieve_outcome(intent.intent_id)
    assert isinstance(failed, PaymentFailed)
    assert failed.reason == "Card expired"

    gateway_stub.settle(intent.intent_id, succeeded=True)
    succeeded = await gateway.retrieve_outcome(intent.intent_id)
    assert isinstance(succeeded, PaymentSucceeded)
    assert succeeded.intent_id == intent.intent_id
