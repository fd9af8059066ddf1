"""Test helpers shared by fixtures and test modules."""

import json
from typing import Optional
from urllib.parse import parse_qsl
from uuid import UUID, uuid4

import httpx

from app.auth.security import create_access_token

GATEWAY_API_BASE = "https://api.gateway.test/v1"
WEBHOOK_SECRET = "whsec_test_secret"


class GatewayStub:
    """In-memory stand-in for the gateway REST API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.intents = {}
        self.requests = []
        self.fail_with: Optional[int] = None
        self.timeout = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"error": {"message": "gateway unavailable"}})

        path = request.url.path
        if request.method == "POST" and path == "/v1/payment_intents":
            form = dict(parse_qsl(request.content.decode("utf-8")))
            intent_id = f"pi_test_{len(self.intents) + 1:04d}"
            self.intents[intent_id] = {
                "id": intent_id,
                "object": "payment_intent",
                "amount": int(form["amount"]),
                "currency": form["currency"],
                "status": "requires_payment_method",
                "client_secret": f"{intent_id}_secret_abc",
                "payment_method_types": ["card"],
                "metadata": {k[len("metadata["):-1]: v for k, v in form.items() if k.startswith("metadata[")},
            }
            return httpx.Response(200, json=self.intents[intent_id])
        if request.method == "GET" and path.startswith("/v1/payment_intents/"):
            intent = self.intents.get(path.rsplit("/", 1)[-1])
            if intent is None:
                return httpx.Response(404, json={"error": {"message": "No such payment_intent"}})
            return httpx.Response(200, json=intent)
        return httpx.Response(404, json={"error": {"message": "Unrecognized request URL"}})

    def settle(self, intent_id: str, succeeded: bool = True, reason: str = "Your card was declined.") -> None:
        intent = self.intents[intent_id]
        if succeeded:
            intent["status"] = "succeeded"
        else:
            intent["status"] = "requires_payment_method"
            intent["last_payment_error"] = {"message": reason}


def gateway_event(intent_id: str, event_type: str = "payment_intent.succeeded", **obj) -> bytes:
    body = {"id": obj.pop("event_id", "evt_" + intent_id), "type": event_type}
    body["data"] = {"object": {"id": intent_id, "payment_method_types": ["card"], **obj}}
    return json.dumps(body).encode("utf-8")


def auth_headers(role: str = "ADMIN", user_id: Optional[UUID] = None) -> dict:
    token = create_access_token(subject={"sub": str(user_id or uuid4()), "role": role})
    return {"Authorization": f"Bearer {token}"}
