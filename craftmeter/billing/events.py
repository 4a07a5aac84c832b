"""Provider-neutral billing events.

Each payment provider's webhook payload is parsed into one of these before
anything touches the database, so the state transitions in
:mod:`craftmeter.billing.sync` never see provider JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from craftmeter.types import BillingReason, PaymentProvider, SubscriptionChange


@dataclass(frozen=True, slots=True)
class CustomerRef:
    """Whatever the provider told us about who paid."""

    user_id: str | None = None
    email: str | None = None
    provider_customer_id: str | None = None


@dataclass(frozen=True, slots=True)
class OrderPaid:
    provider: PaymentProvider
    payment_id: str
    billing_reason: BillingReason | str
    customer: CustomerRef
    checkout_id: str | None = None
    product_id: str | None = None
    amount_minor: int = 0
    currency: str = "USD"
    period_start: datetime | None = None
    period_end: datetime | None = None
    subscription_id: str | None = None


@dataclass(frozen=True, slots=True)
class SubscriptionChanged:
    provider: PaymentProvider
    change: SubscriptionChange
    subscription_id: str
    customer: CustomerRef
    period_start: datetime | None = None
    period_end: datetime | None = None


@dataclass(frozen=True, slots=True)
class OrderRefunded:
    provider: PaymentProvider
    payment_id: str | None = None
    checkout_id: str | None = None


@dataclass(frozen=True, slots=True)
class PaymentFailed:
    provider: PaymentProvider
    payment_id: str
    customer: CustomerRef
    amount_minor: int = 0
    currency: str = "USD"
    reason: str | None = None


BillingEvent = OrderPaid | SubscriptionChanged | OrderRefunded | PaymentFailed
