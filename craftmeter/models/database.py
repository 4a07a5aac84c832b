"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str = ""
    polar_customer_id: str | None = Field(default=None, unique=True)
    razorpay_customer_id: str | None = Field(default=None, unique=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(foreign_key="users.id", unique=True, index=True)
    plan: str = Field(default="HOBBY")  # HOBBY | PRO | ENTERPRISE
    status: str = Field(default="active")  # active | cancelled
    provider: str | None = None  # polar | razorpay
    provider_subscription_id: str | None = Field(default=None, unique=True)
    provider_customer_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = Field(default=False)
    cancelled_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Usage ledger
# ---------------------------------------------------------------------------


class AITokenUsage(SQLModel, table=True):
    __tablename__ = "ai_token_usage"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(index=True)
    project_id: str = Field(index=True)
    model: str
    input_tokens: int = Field(default=0)
    output_tokens: int = Field(default=0)
    total_tokens: int = Field(default=0)
    cost_usd: float = Field(default=0.0)
    endpoint: str | None = None
    created_at: datetime = Field(default_factory=_utc_now, index=True)


class UsageRecord(SQLModel, table=True):
    __tablename__ = "usage_records"
    __table_args__ = (
        UniqueConstraint("user_id", "billing_period_start", name="uq_usage_records_user_period"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(index=True)
    billing_period_start: datetime
    billing_period_end: datetime
    ai_tokens_used: int = Field(default=0)
    ai_cost_usd: float = Field(default=0.0)
    database_size_gb: float = Field(default=0.0)
    database_cost_usd: float = Field(default=0.0)
    storage_size_gb: float = Field(default=0.0)
    storage_cost_usd: float = Field(default=0.0)
    bandwidth_gb: float = Field(default=0.0)
    bandwidth_cost_usd: float = Field(default=0.0)
    auth_mau: int = Field(default=0)
    auth_cost_usd: float = Field(default=0.0)
    edge_function_invocations: int = Field(default=0)
    edge_function_cost_usd: float = Field(default=0.0)
    total_cost_usd: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    def recompute_total(self) -> None:
        """Keep total_cost_usd equal to the sum of the component costs."""
        self.total_cost_usd = (
            self.ai_cost_usd
            + self.database_cost_usd
            + self.storage_cost_usd
            + self.bandwidth_cost_usd
            + self.auth_cost_usd
            + self.edge_function_cost_usd
        )


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class TokenPurchase(SQLModel, table=True):
    __tablename__ = "token_purchases"
    __table_args__ = (
        CheckConstraint("tokens_remaining >= 0", name="ck_token_purchases_remaining"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    token_amount: int
    tokens_remaining: int
    price_usd: float = Field(default=0.0)
    status: str = Field(default="completed")  # completed | refunded | expired
    provider: str | None = None
    checkout_id: str | None = Field(default=None, unique=True)
    payment_id: str | None = Field(default=None, unique=True)
    purchased_at: datetime = Field(default_factory=_utc_now, index=True)
    expires_at: datetime | None = None
    refunded_at: datetime | None = None


class PaymentTransaction(SQLModel, table=True):
    __tablename__ = "payment_transactions"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    amount: float = Field(default=0.0)  # major currency units
    currency: str = Field(default="USD")
    status: str = Field(default="completed")  # completed | refunded | failed
    provider: str
    provider_payment_id: str = Field(unique=True)
    checkout_id: str | None = Field(default=None, index=True)
    billing_reason: str | None = None
    failure_reason: str | None = None
    metadata_json: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )

    id: int | None = Field(default=None, primary_key=True)
    provider: str = Field(index=True)
    event_id: str
    event_type: str
    payload_json: str
    status: str = Field(default="pending", index=True)
    error_message: str | None = None
    retry_count: int = Field(default=0)
    processed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)
