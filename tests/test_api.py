"""HTTP tests for the webhook and cron routes."""

from __future__ import annotations

import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

import api
import db
import ledger
from models import MemberStatus

client = TestClient(api.app)


@pytest.fixture(autouse=True)
def override_config(cfg):
    """Ensure dependency overrides are isolated per test."""
    api.app.dependency_overrides[api.get_config] = lambda: cfg
    yield
    api.app.dependency_overrides.clear()


def _webhook_body(member_id, payment_id="pay_abc", amount=25000) -> bytes:
    return json.dumps(
        {
            "event": "payment_link.paid",
            "payload": {
                "payment": {"entity": {"id": payment_id, "amount": amount, "created_at": 1760832000}},
                "payment_link": {"entity": {"notes": {"member_id": str(member_id)}}},
            },
        }
    ).encode()


def _sign(body: bytes) -> str:
    return hmac.new(b"whsec", body, hashlib.sha256).hexdigest()


def test_webhook_applies_payment(make_member):
    member = make_member(months_ago=1)
    body = _webhook_body(member.id)

    response = client.post("/api/razorpay-webhook", content=body, headers={"x-razorpay-signature": _sign(body)})

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert ledger.get_member(member.id).pending == Decimal("250")


def test_webhook_replay_returns_ok_without_double_credit(make_member):
    member = make_member(months_ago=1)
    body = _webhook_body(member.id)
    headers = {"x-razorpay-signature": _sign(body)}

    client.post("/api/razorpay-webhook", content=body, headers=headers)
    response = client.post("/api/razorpay-webhook", content=body, headers=headers)

    assert response.status_code == 200
    assert ledger.get_member(member.id).total_paid == Decimal("250")


def test_webhook_missing_signature():
    response = client.post("/api/razorpay-webhook", content=b"{}")
    assert response.status_code == 400
    assert response.json() == {"error": "Signature missing"}


def test_webhook_invalid_signature():
    response = client.post("/api/razorpay-webhook", content=b"{}", headers={"x-razorpay-signature": "nope"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid signature"}


def test_webhook_secret_not_configured(cfg):
    api.app.dependency_overrides[api.get_config] = lambda: cfg.model_copy(update={"razorpay_webhook_secret": None})
    response = client.post("/api/razorpay-webhook", content=b"{}", headers={"x-razorpay-signature": "x"})
    assert response.status_code == 500


def test_webhook_unknown_member_fails():
    body = _webhook_body(4242)
    response = client.post("/api/razorpay-webhook", content=body, headers={"x-razorpay-signature": _sign(body)})
    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}


MALFORMED_BODIES = [
    [{"event": "payment_link.paid"}],
    {
        "event": "payment_link.paid",
        "payload": {
            "payment": {"entity": {"id": "pay_x", "created_at": 1760832000}},
            "payment_link": {"entity": {"notes": {"member_id": "1"}}},
        },
    },
    {
        "event": "payment_link.paid",
        "payload": {
            "payment": {"entity": {"id": "pay_x", "amount": 25000}},
            "payment_link": {"entity": {"notes": "oops"}},
        },
    },
    {
        "event": "payment_link.paid",
        "payload": {
            "payment": {"entity": {"id": "pay_x", "amount": "lots"}},
            "payment_link": {"entity": {"notes": {"member_id": "1"}}},
        },
    },
]


@pytest.mark.parametrize("payload", MALFORMED_BODIES, ids=["list", "no-amount", "string-notes", "bad-amount"])
def test_webhook_malformed_signed_body_is_rejected(make_member, payload):
    make_member(months_ago=1)
    body = json.dumps(payload).encode()

    response = client.post("/api/razorpay-webhook", content=body, headers={"x-razorpay-signature": _sign(body)})

    assert response.status_code == 400
    assert response.json() == {"error": "Malformed payment event."}
    assert db.fetch_all("SELECT id FROM payments") == []


def test_webhook_ignores_other_events():
    body = json.dumps({"event": "payment.authorized", "payload": {}}).encode()
    response = client.post("/api/razorpay-webhook", content=body, headers={"x-razorpay-signature": _sign(body)})
    assert response.status_code == 200


def test_cron_requires_bearer_secret():
    assert client.get("/api/cron/monthly-billing").status_code == 401
    response = client.get("/api/cron/monthly-billing", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


def test_cron_bills_active_members(make_member):
    a = make_member("A")
    b = make_member("B")
    ledger.mark_deceased(b.id)
    db.set_setting("monthly_amount", "300")

    response = client.get("/api/cron/monthly-billing", headers={"Authorization": "Bearer cron-secret"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Successfully billed 1 members."}
    assert ledger.get_member(a.id).pending == Decimal("550")
    deceased = ledger.get_member(b.id)
    assert deceased.pending == Decimal("250")
    assert deceased.status is MemberStatus.DECEASED
