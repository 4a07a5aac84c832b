"""Razorpay webhook verification and payload parsing.

Razorpay signs the raw body with HMAC-SHA256 (hex) in ``X-Razorpay-Signature``.
Amounts arrive in the smallest currency unit and timestamps as Unix seconds.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from craftmeter.billing.events import (
    BillingEvent,
    CustomerRef,
    OrderPaid,
    OrderRefunded,
    PaymentFailed,
    SubscriptionChanged,
)
from craftmeter.exceptions import ValidationError
from craftmeter.types import BillingReason, PaymentProvider, SubscriptionChange

PROVIDER = PaymentProvider.RAZORPAY

# notes.purchase_type set when the order was created
_PURCHASE_TYPES: dict[str, BillingReason] = {
    "tokens": BillingReason.PURCHASE,
    "token_purchase": BillingReason.PURCHASE,
    "subscription": BillingReason.SUBSCRIPTION_CREATE,
    "subscription_create": BillingReason.SUBSCRIPTION_CREATE,
    "subscription_update": BillingReason.SUBSCRIPTION_UPDATE,
}

_SUBSCRIPTION_CHANGES: dict[str, SubscriptionChange] = {
    "subscription.activated": SubscriptionChange.ACTIVE,
    "subscription.resumed": SubscriptionChange.UNCANCELED,
    "subscription.paused": SubscriptionChange.CANCELED,
    "subscription.cancelled": SubscriptionChange.REVOKED,
    "subscription.halted": SubscriptionChange.REVOKED,
    "subscription.completed": SubscriptionChange.REVOKED,
}


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, expected)


def sign(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def event_identity(
    headers: Mapping[str, str], body: Mapping[str, Any], payload: bytes
) -> tuple[str, str]:
    """Return ``(event_id, event_type)`` for the event log.

    Prefers the ``X-Razorpay-Event-Id`` header; older deliveries without it are
    keyed by account, creation time and type, or finally by a body digest.
    """
    event_type = str(body.get("event", ""))
    event_id = headers.get("x-razorpay-event-id", "")
    if not event_id and body.get("account_id") and body.get("created_at"):
        event_id = f"{body['account_id']}_{body['created_at']}_{event_type}"
    if not event_id:
        event_id = hashlib.sha256(payload).hexdigest()
    return event_id, event_type


def parse(event_type: str, body: Mapping[str, Any]) -> BillingEvent | None:
    """Translate a Razorpay event into a billing event; None when unsupported."""
    payload = body.get("payload") or {}
    payment = _entity(payload, "payment")
    subscription = _entity(payload, "subscription")

    if event_type in ("order.paid", "payment.captured"):
        order = _entity(payload, "order")
        notes = _notes(payment, order)
        purchase_type = str(notes.get("purchase_type", ""))
        return OrderPaid(
            provider=PROVIDER,
            payment_id=_require(payment, "id", event_type),
            checkout_id=payment.get("order_id") or order.get("id"),
            billing_reason=_PURCHASE_TYPES.get(purchase_type, purchase_type),
            customer=_customer(payment, notes),
            product_id=notes.get("product_id"),
            amount_minor=int(payment.get("amount") or order.get("amount_paid") or 0),
            currency=str(payment.get("currency") or order.get("currency") or "INR").upper(),
        )

    if event_type == "subscription.charged":
        notes = _notes(payment, subscription)
        return OrderPaid(
            provider=PROVIDER,
            payment_id=_require(payment, "id", event_type),
            checkout_id=payment.get("order_id"),
            billing_reason=BillingReason.SUBSCRIPTION_CYCLE,
            customer=_customer(subscription or payment, notes),
            amount_minor=int(payment.get("amount") or 0),
            currency=str(payment.get("currency") or "INR").upper(),
            period_start=_from_unix(subscription.get("current_start")),
            period_end=_from_unix(subscription.get("current_end")),
            subscription_id=subscription.get("id"),
        )

    change = _SUBSCRIPTION_CHANGES.get(event_type)
    if change is not None:
        return SubscriptionChanged(
            provider=PROVIDER,
            change=change,
            subscription_id=_require(subscription, "id", event_type),
            customer=_customer(subscription, _notes(subscription)),
            period_start=_from_unix(subscription.get("current_start")),
            period_end=_from_unix(subscription.get("current_end")),
        )

    if event_type == "refund.processed":
        refund = _entity(payload, "refund")
        return OrderRefunded(
            provider=PROVIDER,
            payment_id=_require(refund, "payment_id", event_type),
            checkout_id=payment.get("order_id"),
        )

    if event_type == "payment.refunded":
        return OrderRefunded(
            provider=PROVIDER,
            payment_id=_require(payment, "id", event_type),
            checkout_id=payment.get("order_id"),
        )

    if event_type == "payment.failed":
        notes = _notes(payment)
        return PaymentFailed(
            provider=PROVIDER,
            payment_id=_require(payment, "id", event_type),
            customer=_customer(payment, notes),
            amount_minor=int(payment.get("amount") or 0),
            currency=str(payment.get("currency") or "INR").upper(),
            reason=payment.get("error_description") or "Payment failed",
        )

    return None


def _entity(payload: Mapping[str, Any], name: str) -> dict[str, Any]:
    return dict((payload.get(name) or {}).get("entity") or {})


def _notes(*entities: Mapping[str, Any]) -> dict[str, Any]:
    """Merge notes, earlier entities winning. Razorpay sends [] for empty notes."""
    merged: dict[str, Any] = {}
    for entity in reversed(entities):
        notes = entity.get("notes")
        if isinstance(notes, Mapping):
            merged.update(notes)
    return merged


def _customer(entity: Mapping[str, Any], notes: Mapping[str, Any]) -> CustomerRef:
    return CustomerRef(
        user_id=notes.get("user_id"),
        email=entity.get("email") or notes.get("email"),
        provider_customer_id=entity.get("customer_id"),
    )


def _require(entity: Mapping[str, Any], key: str, event_type: str) -> str:
    value = entity.get(key)
    if not value:
        msg = f"Razorpay {event_type} payload is missing {key!r}"
        raise ValidationError(msg)
    return str(value)


def _from_unix(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), UTC)
    except (TypeError, ValueError, OverflowError) as exc:
        msg = f"Invalid timestamp in Razorpay payload: {value!r}"
        raise ValidationError(msg) from exc
