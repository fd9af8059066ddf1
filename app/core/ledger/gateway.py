"""
Payment gateway adapter.

The ledger never sees gateway-specific payloads: webhooks are verified and translated into a
PaymentOutcome (PaymentSucceeded | PaymentFailed) before reconciliation.

StripeGatewayAdapter talks to the Stripe REST API with httpx and verifies the
`Stripe-Signature` header (HMAC-SHA256 over "{timestamp}.{payload}").
"""

import abc
import hashlib
import hmac
import json
import logging
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Literal, NamedTuple, Optional, Union
from uuid import UUID

import httpx
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import GatewayCommunicationError, GatewayVerificationError

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("app.security")

SIGNATURE_HEADER = "Stripe-Signature"
EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"

# Currencies whose smallest unit is the major unit.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}
)


class PaymentSucceeded(BaseModel):
    kind: Literal["succeeded"] = "succeeded"
    intent_id: str
    method: Optional[str] = None
    event_id: Optional[str] = None
    verified: bool = True  # False only in insecure (no webhook secret) mode


class PaymentFailed(BaseModel):
    kind: Literal["failed"] = "failed"
    intent_id: str
    reason: Optional[str] = None
    event_id: Optional[str] = None
    verified: bool = True


PaymentOutcome = Union[PaymentSucceeded, PaymentFailed]


class GatewayIntent(NamedTuple):
    intent_id: str
    client_secret: Optional[str]


class GatewayAdapter(abc.ABC):
    @abc.abstractmethod
    async def create_intent(
        self,
        student_id: UUID,
        installment_id: UUID,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> GatewayIntent:
        """Create a payment intent. No internal retry: a failure surfaces as GatewayCommunicationError."""

    @abc.abstractmethod
    def verify_and_parse_webhook(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        secret: Optional[str],
    ) -> Optional[PaymentOutcome]:
        """Verify authenticity and translate. None means an event type the ledger ignores."""

    @abc.abstractmethod
    async def retrieve_outcome(self, intent_id: str) -> Optional[PaymentOutcome]:
        """Ask the gateway for the current outcome of an intent. None while still undecided."""


def to_minor_units(amount: Decimal, currency: str) -> int:
    amount = Decimal(str(amount))
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_signature_header(header: str) -> tuple:
    """'t=1700000000,v1=abc,v1=def' -> (timestamp, [signatures])."""
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise GatewayVerificationError("Malformed signature timestamp") from None
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise GatewayVerificationError("Malformed signature header")
    return timestamp, signatures


def compute_signature(raw_payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + raw_payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def sign_payload(raw_payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a signature header the way the gateway does (used by tests and local tooling)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={compute_signature(raw_payload, timestamp, secret)}"


def outcome_from_event(event: dict, verified: bool = True) -> Optional[PaymentOutcome]:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    intent_id = obj.get("id")
    if event_type not in (EVENT_SUCCEEDED, EVENT_FAILED):
        return None
    if not intent_id:
        raise GatewayVerificationError("Event has no payment intent id")
    if event_type == EVENT_SUCCEEDED:
        methods = obj.get("payment_method_types") or []
        return PaymentSucceeded(
            intent_id=intent_id,
            method=methods[0] if methods else None,
            event_id=event.get("id"),
            verified=verified,
        )
    error = obj.get("last_payment_error") or {}
    return PaymentFailed(
        intent_id=intent_id,
        reason=error.get("message"),
        event_id=event.get("id"),
        verified=verified,
    )


class StripeGatewayAdapter(GatewayAdapter):
    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        tolerance_seconds: Optional[int] = None,
        allow_unsigned: Optional[bool] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.gateway_api_key
        self.api_base = (api_base or settings.gateway_api_base).rstrip("/")
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.tolerance_seconds = (
            tolerance_seconds if tolerance_seconds is not None else settings.gateway_signature_tolerance_seconds
        )
        # Unsigned webhooks are never accepted in production.
        self.allow_unsigned = (not settings.is_production) if allow_unsigned is None else allow_unsigned
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        if not self.api_key:
            raise GatewayCommunicationError("Payment gateway is not configured")
        try:
            response = await self._http().request(
                method,
                f"{self.api_base}{path}",
                data=data,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.error("Gateway timeout on %s %s", method, path)
            raise GatewayCommunicationError("Payment gateway timed out") from e
        except httpx.HTTPError as e:
            logger.error("Gateway transport error on %s %s: %s", method, path, e)
            raise GatewayCommunicationError("Could not reach payment gateway") from e
        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message")
            except ValueError:
                message = None
            logger.error("Gateway returned %s on %s %s: %s", response.status_code, method, path, message)
            raise GatewayCommunicationError(f"Payment gateway error: {message or response.status_code}")
        return response.json()

    async def create_intent(
        self,
        student_id: UUID,
        installment_id: UUID,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> GatewayIntent:
        currency = currency.lower()
        data = {
            "amount": str(to_minor_units(amount, currency)),
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
            "metadata[student_id]": str(student_id),
            "metadata[installment_id]": str(installment_id),
        }
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)
        body = await self._request("POST", "/payment_intents", data)
        return GatewayIntent(intent_id=body["id"], client_secret=body.get("client_secret"))

    async def retrieve_outcome(self, intent_id: str) -> Optional[PaymentOutcome]:
        obj = await self._request("GET", f"/payment_intents/{intent_id}")
        status = obj.get("status")
        if status == "succeeded":
            return outcome_from_event({"type": EVENT_SUCCEEDED, "data": {"object": obj}})
        if status == "canceled" or (status == "requires_payment_method" and obj.get("last_payment_error")):
            return outcome_from_event({"type": EVENT_FAILED, "data": {"object": obj}})
        return None

    def verify_and_parse_webhook(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        secret: Optional[str],
    ) -> Optional[PaymentOutcome]:
        verified = True
        if secret:
            self._verify_signature(raw_payload, signature_header, secret)
        elif self.allow_unsigned:
            verified = False
            security_logger.warning(
                "INSECURE MODE: webhook accepted without signature verification (no webhook secret configured)"
            )
        else:
            security_logger.error("Webhook rejected: no webhook secret configured")
            raise GatewayVerificationError("Webhook secret not configured")

        try:
            event = json.loads(raw_payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise GatewayVerificationError("Webhook payload is not valid JSON") from e
        if not isinstance(event, dict):
            raise GatewayVerificationError("Webhook payload is not an event object")
        return outcome_from_event(event, verified=verified)

    def _verify_signature(self, raw_payload: bytes, signature_header: Optional[str], secret: str) -> None:
        if not signature_header:
            security_logger.warning("Webhook received without signature header")
            raise GatewayVerificationError("Missing signature")
        timestamp, signatures = parse_signature_header(signature_header)
        expected = compute_signature(raw_payload, timestamp, secret)
        if not any(hmac.compare_digest(expected, sig) for sig in signatures):
            security_logger.warning("Webhook signature mismatch")
            raise GatewayVerificationError("Invalid signature")
        if self.tolerance_seconds and abs(time.time() - timestamp) > self.tolerance_seconds:
            security_logger.warning("Webhook signature timestamp outside tolerance")
            raise GatewayVerificationError("Signature timestamp outside tolerance")
