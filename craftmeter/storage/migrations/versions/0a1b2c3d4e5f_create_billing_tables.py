"""create billing and usage tables

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel.sql.sqltypes
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1b2c3d4e5f"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create users, subscriptions, usage ledger, purchases and webhook log."""
    op.create_table(
        "users",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("email", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("polar_customer_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("razorpay_customer_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("polar_customer_id"),
        sa.UniqueConstraint("razorpay_customer_id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column(
            "plan", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default="HOBBY"
        ),
        sa.Column(
            "status", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default="active"
        ),
        sa.Column("provider", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("provider_subscription_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("provider_customer_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column(
            "cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_subscription_id"),
    )
    op.create_index(op.f("ix_subscriptions_user_id"), "subscriptions", ["user_id"], unique=True)

    op.create_table(
        "ai_token_usage",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("project_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("model", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("output_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("endpoint", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_token_usage_user_id"), "ai_token_usage", ["user_id"])
    op.create_index(op.f("ix_ai_token_usage_project_id"), "ai_token_usage", ["project_id"])
    op.create_index(op.f("ix_ai_token_usage_created_at"), "ai_token_usage", ["created_at"])

    op.create_table(
        "usage_records",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("billing_period_start", sa.DateTime(), nullable=False),
        sa.Column("billing_period_end", sa.DateTime(), nullable=False),
        sa.Column("ai_tokens_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("database_size_gb", sa.Float(), nullable=False, server_default="0"),
        sa.Column("database_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("storage_size_gb", sa.Float(), nullable=False, server_default="0"),
        sa.Column("storage_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("bandwidth_gb", sa.Float(), nullable=False, server_default="0"),
        sa.Column("bandwidth_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("auth_mau", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("auth_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("edge_function_invocations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("edge_function_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "billing_period_start", name="uq_usage_records_user_period"
        ),
    )
    op.create_index(op.f("ix_usage_records_user_id"), "usage_records", ["user_id"])

    op.create_table(
        "token_purchases",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("token_amount", sa.Integer(), nullable=False),
        sa.Column("tokens_remaining", sa.Integer(), nullable=False),
        sa.Column("price_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sqlmodel.sql.sqltypes.AutoString(),
            nullable=False,
            server_default="completed",
        ),
        sa.Column("provider", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("checkout_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("payment_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("purchased_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("checkout_id"),
        sa.UniqueConstraint("payment_id"),
        sa.CheckConstraint("tokens_remaining >= 0", name="ck_token_purchases_remaining"),
    )
    op.create_index(op.f("ix_token_purchases_user_id"), "token_purchases", ["user_id"])
    op.create_index(op.f("ix_token_purchases_purchased_at"), "token_purchases", ["purchased_at"])

    op.create_table(
        "payment_transactions",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "currency", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default="USD"
        ),
        sa.Column(
            "status",
            sqlmodel.sql.sqltypes.AutoString(),
            nullable=False,
            server_default="completed",
        ),
        sa.Column("provider", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("provider_payment_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("checkout_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("billing_reason", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("failure_reason", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("metadata_json", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_payment_id"),
    )
    op.create_index(op.f("ix_payment_transactions_user_id"), "payment_transactions", ["user_id"])
    op.create_index(
        op.f("ix_payment_transactions_checkout_id"), "payment_transactions", ["checkout_id"]
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("provider", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("event_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("event_type", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("payload_json", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column(
            "status", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default="pending"
        ),
        sa.Column("error_message", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )
    op.create_index(op.f("ix_webhook_events_provider"), "webhook_events", ["provider"])
    op.create_index(op.f("ix_webhook_events_status"), "webhook_events", ["status"])


def downgrade() -> None:
    """Drop all billing and usage tables."""
    op.drop_index(op.f("ix_webhook_events_status"), table_name="webhook_events")
    op.drop_index(op.f("ix_webhook_events_provider"), table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index(op.f("ix_payment_transactions_checkout_id"), table_name="payment_transactions")
    op.drop_index(op.f("ix_payment_transactions_user_id"), table_name="payment_transactions")
    op.drop_table("payment_transactions")

    op.drop_index(op.f("ix_token_purchases_purchased_at"), table_name="token_purchases")
    op.drop_index(op.f("ix_token_purchases_user_id"), table_name="token_purchases")
    op.drop_table("token_purchases")

    op.drop_index(op.f("ix_usage_records_user_id"), table_name="usage_records")
    op.drop_table("usage_records")

    op.drop_index(op.f("ix_ai_token_usage_created_at"), table_name="ai_token_usage")
    op.drop_index(op.f("ix_ai_token_usage_project_id"), table_name="ai_token_usage")
    op.drop_index(op.f("ix_ai_token_usage_user_id"), table_name="ai_token_usage")
    op.drop_table("ai_token_usage")

    op.drop_index(op.f("ix_subscriptions_user_id"), table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
