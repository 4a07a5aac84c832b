"""Unit tests for Razorpay signature verification and payload parsing."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime

import pytest

from craftmeter.billing.events import OrderPaid, OrderRefunded, PaymentFailed, SubscriptionChanged
from craftmeter.billing.providers import razorpay
from craftmeter.exceptions import ValidationError
from craftmeter.types import BillingReason, PaymentProvider, SubscriptionChange

SECRET = "rzp-test-secret"


def _payment(**fields) -> dict:
    entity = {"id": "pay_1", "order_id": "order_1", "amount": 150000, "currency": "INR"}
    entity.update(fields)
    return {"payment": {"entity": entity}}


@pytest.mark.unit
class TestVerifySignature:
    def test_valid(self) -> None:
        body = b'{"event":"payment.captured"}'
        assert razorpay.verify_signature(body, razorpay.sign(body, SECRET), SECRET)

    def test_invalid(self) -> None:
        body = b'{"event":"payment.captured"}'
        assert not razorpay.verify_signature(body, razorpay.sign(body, "other"), SECRET)

    def test_empty_signature(self) -> None:
        assert not razorpay.verify_signature(b"{}", "", SECRET)


@pytest.mark.unit
class TestEventIdentity:
    def test_header_wins(self) -> None:
        identity = razorpay.event_identity(
            {"x-razorpay-event-id": "evt_1"}, {"event": "order.paid"}, b"{}"
        )
        assert identity == ("evt_1", "order.paid")

    def test_account_and_timestamp(self) -> None:
        body = {"event": "order.paid", "account_id": "acc_1", "created_at": 1780000000}
        assert razorpay.event_identity({}, body, b"{}")[0] == "acc_1_1780000000_order.paid"

    def test_body_digest_last(self) -> None:
        payload = b'{"event":"order.paid"}'
        event_id, _ = razorpay.event_identity({}, {"event": "order.paid"}, payload)
        assert event_id == hashlib.sha256(payload).hexdigest()


@pytest.mark.unit
class TestParseOrders:
    def test_token_purchase(self) -> None:
        body = {
            "payload": _payment(
                notes={"purchase_type": "tokens", "user_id": "user-1", "product_id": "tok_1m"},
                email="a@example.com",
                customer_id="cust_1",
            )
        }
        event = razorpay.parse("payment.captured", body)
        assert isinstance(event, OrderPaid)
        assert event.provider == PaymentProvider.RAZORPAY
        assert event.billing_reason == BillingReason.PURCHASE
        assert event.checkout_id == "order_1"
        assert event.product_id == "tok_1m"
        assert event.amount_minor == 150000
        assert event.currency == "INR"
        assert event.customer.user_id == "user-1"
        assert event.customer.provider_customer_id == "cust_1"

    def test_payment_notes_override_order_notes(self) -> None:
        body = {
            "payload": {
                **_payment(notes={"purchase_type": "subscription"}),
                "order": {"entity": {"id": "order_1", "notes": {"purchase_type": "tokens"}}},
            }
        }
        event = razorpay.parse("order.paid", body)
        assert isinstance(event, OrderPaid)
        assert event.billing_reason == BillingReason.SUBSCRIPTION_CREATE

    def test_empty_notes_list_ignored(self) -> None:
        event = razorpay.parse("payment.captured", {"payload": _payment(notes=[])})
        assert isinstance(event, OrderPaid)
        assert event.customer.user_id is None

    def test_unknown_purchase_type_passes_through(self) -> None:
        body = {"payload": _payment(notes={"purchase_type": "gift"})}
        event = razorpay.parse("payment.captured", body)
        assert isinstance(event, OrderPaid)
        assert event.billing_reason == "gift"

    def test_subscription_charged(self) -> None:
        body = {
            "payload": {
                **_payment(),
                "subscription": {
                    "entity": {
                        "id": "sub_1",
                        "customer_id": "cust_1",
                        "current_start": 1780000000,
                        "current_end": 1782592000,
                        "notes": {"user_id": "user-1"},
                    }
                },
            }
        }
        event = razorpay.parse("subscription.charged", body)
        assert isinstance(event, OrderPaid)
        assert event.billing_reason == BillingReason.SUBSCRIPTION_CYCLE
        assert event.subscription_id == "sub_1"
        assert event.period_start == datetime.fromtimestamp(1780000000, UTC)
        assert event.customer.user_id == "user-1"

    def test_missing_payment_id(self) -> None:
        with pytest.raises(ValidationError):
            razorpay.parse("payment.captured", {"payload": {}})


@pytest.mark.unit
class TestParseOther:
    @pytest.mark.parametrize(
        ("event_type", "change"),
        [
            ("subscription.activated", SubscriptionChange.ACTIVE),
            ("subscription.resumed", SubscriptionChange.UNCANCELED),
            ("subscription.paused", SubscriptionChange.CANCELED),
            ("subscription.cancelled", SubscriptionChange.REVOKED),
            ("subscription.halted", SubscriptionChange.REVOKED),
            ("subscription.completed", SubscriptionChange.REVOKED),
        ],
    )
    def test_subscription_changes(self, event_type: str, change: SubscriptionChange) -> None:
        body = {"payload": {"subscription": {"entity": {"id": "sub_1", "customer_id": "c"}}}}
        event = razorpay.parse(event_type, body)
        assert isinstance(event, SubscriptionChanged)
        assert event.change == change

    def test_refund_processed(self) -> None:
        body = {"payload": {"refund": {"entity": {"id": "rfnd_1", "payment_id": "pay_1"}}}}
        event = razorpay.parse("refund.processed", body)
        assert event == OrderRefunded(provider=PaymentProvider.RAZORPAY, payment_id="pay_1")

    def test_payment_refunded(self) -> None:
        event = razorpay.parse("payment.refunded", {"payload": _payment()})
        assert event == OrderRefunded(
            provider=PaymentProvider.RAZORPAY, payment_id="pay_1", checkout_id="order_1"
        )

    def test_payment_failed(self) -> None:
        body = {"payload": _payment(error_description="Card declined", notes={"user_id": "u"})}
        event = razorpay.parse("payment.failed", body)
        assert isinstance(event, PaymentFailed)
        assert event.reason == "Card declined"
        assert event.customer.user_id == "u"

    def test_unsupported_event(self) -> None:
        assert razorpay.parse("invoice.paid", {"payload": {}}) is None
