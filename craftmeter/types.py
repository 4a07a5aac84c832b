"""Enums and type aliases for CraftMeter."""

from enum import StrEnum


class PlanName(StrEnum):
    HOBBY = "HOBBY"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class PurchaseStatus(StrEnum):
    COMPLETED = "completed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class PaymentStatus(StrEnum):
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"


class WebhookStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class PaymentProvider(StrEnum):
    POLAR = "polar"
    RAZORPAY = "razorpay"


class BillingReason(StrEnum):
    SUBSCRIPTION_CREATE = "subscription_create"
    SUBSCRIPTION_CYCLE = "subscription_cycle"
    SUBSCRIPTION_UPDATE = "subscription_update"
    PURCHASE = "purchase"


class SubscriptionChange(StrEnum):
    ACTIVE = "active"
    CANCELED = "canceled"
    UNCANCELED = "uncanceled"
    REVOKED = "revoked"
