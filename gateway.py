"""
gateway.py
Razorpay payment links and the payment_link.paid webhook.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import requests
from requests.auth import HTTPBasicAuth

import ledger
from config import Config
from errors import GatewayError, ValidationError
from models import BillingSettings, Member, Payment, PaymentSource

logger = logging.getLogger(__name__)

RAZORPAY_API_URL = "https://api.razorpay.com/v1"
PAID_EVENT = "payment_link.paid"
REQUEST_TIMEOUT = 15


@dataclass(frozen=True)
class GatewayPayment:
    member_id: int
    amount: Decimal
    gateway_payment_id: str
    paid_on: datetime
    order_id: str | None = None


def create_payment_link(member: Member, settings: BillingSettings, config: Config) -> str:
    """Create a link for the member's whole pending balance and return its short URL."""
    if member.pending <= 0:
        raise ValidationError("No pending amount.")
    if not config.razorpay_key_id or not config.razorpay_key_secret:
        raise GatewayError("Payment processing is unavailable.")

    body = {
        "amount": int((member.pending * 100).to_integral_value()),
        "currency": config.currency,
        "description": f"{config.committee_name} - Total Dues",
        "customer": {"name": member.name, "email": member.email or "", "contact": member.phone or ""},
        "notify": {"sms": True, "email": True},
        "reminder_enable": settings.reminders_enabled,
        "notes": {"member_id": str(member.id), "type": "total_due"},
        "callback_url": f"{config.app_url}/",
        "callback_method": "get",
    }
    try:
        r = requests.post(
            f"{RAZORPAY_API_URL}/payment_links",
            json=body,
            auth=HTTPBasicAuth(config.razorpay_key_id, config.razorpay_key_secret),
            timeout=REQUEST_TIMEOUT,
        )
        r.raise_for_status()
        url = r.json().get("short_url")
    except (requests.RequestException, ValueError) as exc:
        logger.error("Payment link creation failed for member %s: %s", member.id, exc)
        raise GatewayError("Could not create a payment link. Please try again later.") from exc
    if not url:
        raise GatewayError("Could not create a payment link. Please try again later.")

    logger.info("Created payment link for member %s (%s)", member.id, member.pending)
    return url


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, signature)


def parse_payment_event(payload: dict) -> GatewayPayment | None:
    """
    Extract the confirmed payment from a webhook payload.
    Returns None for events other than payment_link.paid.
    """
    if payload.get("event") != PAID_EVENT:
        return None
    try:
        payment = payload["payload"]["payment"]["entity"]
        link = payload["payload"]["payment_link"]["entity"]
        raw_member = (link.get("notes") or {}).get("member_id")
        # Razorpay amounts are in paise, timestamps in epoch seconds
        amount = Decimal(int(payment["amount"])) / 100
        paid_on = datetime.fromtimestamp(int(payment.get("created_at") or 0), tz=timezone.utc)
        gateway_payment_id = str(payment["id"])
        order_id = payment.get("order_id")
    except (KeyError, TypeError, ValueError, AttributeError, OverflowError, OSError):
        raise ValidationError("Malformed payment event.") from None

    if not raw_member:
        raise ValidationError("Member ID missing.")
    try:
        member_id = int(raw_member)
    except (TypeError, ValueError):
        raise ValidationError("Member ID missing.") from None
    if amount <= 0:
        raise ValidationError("Malformed payment event.")

    return GatewayPayment(
        member_id=member_id,
        amount=amount,
        gateway_payment_id=gateway_payment_id,
        paid_on=paid_on,
        order_id=order_id,
    )


def apply_gateway_payment(event: GatewayPayment) -> Payment:
    return ledger.retry_once(
        ledger.record_payment,
        event.member_id,
        event.amount,
        paid_on=event.paid_on.date(),
        notes=f"Paid via Razorpay. Payment ID: {event.gateway_payment_id}",
        source=PaymentSource.GATEWAY,
        gateway_payment_id=event.gateway_payment_id,
    )


def handle_webhook(body: bytes, signature: str | None, config: Config) -> Payment | None:
    """
    Verify and apply one webhook delivery. Raises GatewayError for
    configuration/signature problems and ValidationError for bad payloads.
    """
    if not signature:
        raise ValidationError("Signature missing")
    if not config.razorpay_webhook_secret:
        raise GatewayError("Webhook secret not configured")
    if not verify_signature(body, signature, config.razorpay_webhook_secret):
        logger.error("Webhook signature mismatch")
        raise ValidationError("Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationError("Malformed payment event.") from None
    if not isinstance(payload, dict):
        raise ValidationError("Malformed payment event.")

    event = parse_payment_event(payload)
    if event is None:
        logger.info("Ignoring webhook event %r", payload.get("event"))
        return None
    logger.info("Processing gateway payment %s for member %s: %s",
                event.gateway_payment_id, event.member_id, event.amount)
    return apply_gateway_payment(event)
