"""Polar webhook verification and payload parsing.

Polar delivers through Standard Webhooks: ``webhook-id``, ``webhook-timestamp``
and ``webhook-signature`` headers, the signature being a base64 HMAC-SHA256 of
``{id}.{timestamp}.{body}``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import structlog

from craftmeter.billing.events import (
    BillingEvent,
    CustomerRef,
    OrderPaid,
    OrderRefunded,
    SubscriptionChanged,
)
from craftmeter.exceptions import ValidationError
from craftmeter.types import PaymentProvider, SubscriptionChange

logger = structlog.get_logger(__name__)

PROVIDER = PaymentProvider.POLAR

# Signature timestamp tolerance in seconds (5 minutes)
SIGNATURE_TOLERANCE = 300

_SUBSCRIPTION_CHANGES: dict[str, SubscriptionChange] = {
    "subscription.active": SubscriptionChange.ACTIVE,
    "subscription.canceled": SubscriptionChange.CANCELED,
    "subscription.uncanceled": SubscriptionChange.UNCANCELED,
    "subscription.revoked": SubscriptionChange.REVOKED,
}


def verify_signature(
    payload: bytes, headers: Mapping[str, str], secret: str, now: float | None = None
) -> bool:
    """Check the Standard Webhooks signature of a delivery."""
    msg_id = headers.get("webhook-id", "")
    timestamp = headers.get("webhook-timestamp", "")
    signatures = headers.get("webhook-signature", "")

    if not msg_id or not timestamp or not signatures:
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False
    now = time.time() if now is None else now
    if abs(now - ts) > SIGNATURE_TOLERANCE:
        logger.warning("webhook_timestamp_expired", provider=PROVIDER, delta=abs(now - ts))
        return False

    secret_bytes = _secret_bytes(secret)
    to_sign = f"{msg_id}.{timestamp}.".encode() + payload
    expected = base64.b64encode(hmac.new(secret_bytes, to_sign, hashlib.sha256).digest()).decode()

    # Space-separated list, each entry "v1,<signature>"
    for sig in signatures.split(" "):
        parts = sig.split(",", 1)
        if len(parts) == 2 and parts[0] == "v1" and hmac.compare_digest(parts[1], expected):
            return True
    return False


def sign(payload: bytes, msg_id: str, timestamp: int, secret: str) -> str:
    """Produce a ``webhook-signature`` header value for ``payload``."""
    to_sign = f"{msg_id}.{timestamp}.".encode() + payload
    digest = hmac.new(_secret_bytes(secret), to_sign, hashlib.sha256).digest()
    return f"v1,{base64.b64encode(digest).decode()}"


def _secret_bytes(secret: str) -> bytes:
    # "whsec_" secrets carry base64 key material; anything else is used as raw bytes
    if secret.startswith("whsec_"):
        try:
            return base64.b64decode(secret[len("whsec_") :])
        except binascii.Error:
            return secret.encode()
    return secret.encode()


def event_identity(headers: Mapping[str, str], body: Mapping[str, Any]) -> tuple[str, str]:
    """Return ``(event_id, event_type)`` for the event log."""
    event_type = str(body.get("type", ""))
    event_id = headers.get("webhook-id") or ""
    if not event_id:
        msg = "Polar delivery has no webhook-id"
        raise ValidationError(msg)
    return event_id, event_type


def parse(event_type: str, body: Mapping[str, Any]) -> BillingEvent | None:
    """Translate a Polar event into a billing event; None when unsupported."""
    data = body.get("data") or {}
    if event_type == "order.paid":
        return _order_paid(data)
    if event_type == "order.refunded":
        return OrderRefunded(
            provider=PROVIDER,
            payment_id=_require(data, "id"),
            checkout_id=data.get("checkout_id"),
        )
    change = _SUBSCRIPTION_CHANGES.get(event_type)
    if change is not None:
        return SubscriptionChanged(
            provider=PROVIDER,
            change=change,
            subscription_id=_require(data, "id"),
            customer=_customer(data),
            period_start=_parse_time(data.get("current_period_start")),
            period_end=_parse_time(data.get("current_period_end")),
        )
    return None


def _order_paid(data: Mapping[str, Any]) -> OrderPaid:
    subscription = data.get("subscription") or {}
    return OrderPaid(
        provider=PROVIDER,
        payment_id=_require(data, "id"),
        checkout_id=data.get("checkout_id"),
        billing_reason=str(data.get("billing_reason", "")),
        customer=_customer(data),
        product_id=data.get("product_id"),
        amount_minor=int(data.get("total_amount", data.get("amount", 0)) or 0),
        currency=str(data.get("currency") or "usd").upper(),
        period_start=_parse_time(subscription.get("current_period_start")),
        period_end=_parse_time(subscription.get("current_period_end")),
        subscription_id=data.get("subscription_id") or subscription.get("id"),
    )


def _customer(data: Mapping[str, Any]) -> CustomerRef:
    customer = data.get("customer") or {}
    metadata = data.get("metadata") or {}
    return CustomerRef(
        user_id=customer.get("external_id") or metadata.get("user_id"),
        email=customer.get("email"),
        provider_customer_id=data.get("customer_id") or customer.get("id"),
    )


def _require(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not value:
        msg = f"Polar payload is missing {key!r}"
        raise ValidationError(msg)
    return str(value)


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError as exc:
        msg = f"Invalid timestamp in Polar payload: {value!r}"
        raise ValidationError(msg) from exc
