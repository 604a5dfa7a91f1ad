"""m1_subscription_codes_schema

Revision ID: 5c1e9a7b3d20
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e9a7b3d20"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("role", sa.String(16), nullable=False, server_default=sa.text("'USER'")),
        sa.Column("stripe_customer_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("role IN ('USER','MANAGER','ADMIN')", name="ck_users_role"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("stripe_customer_id", name="uq_users_stripe_customer_id"),
    )
    op.create_index("idx_users_created_at", "users", ["created_at"])

    op.create_table(
        "code_purchases",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("issuer_user_id", sa.BigInteger(), nullable=False),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("stripe_customer_id", sa.String(64), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(64), nullable=True),
        sa.Column("stripe_checkout_session_id", sa.String(128), nullable=True),
        sa.Column("stripe_price_id", sa.String(64), nullable=False),
        sa.Column("stripe_product_id", sa.String(64), nullable=True),
        sa.Column("plan_name", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_amount", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'usd'")),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("codes_generated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("codes_review_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("source IN ('CHECKOUT','ADMIN_GRANT')", name="ck_code_purchases_source"),
        sa.CheckConstraint(
            "status IN ('pending','completed','failed','refunded')",
            name="ck_code_purchases_status",
        ),
        sa.CheckConstraint("quantity BETWEEN 1 AND 100", name="ck_code_purchases_quantity_range"),
        sa.CheckConstraint("unit_amount >= 0", name="ck_code_purchases_unit_amount_non_negative"),
        sa.CheckConstraint("total_amount >= 0", name="ck_code_purchases_total_amount_non_negative"),
        sa.CheckConstraint("duration_days > 0", name="ck_code_purchases_duration_positive"),
        sa.ForeignKeyConstraint(["issuer_user_id"], ["users.id"]),
        sa.UniqueConstraint("stripe_subscription_id", name="uq_code_purchases_stripe_subscription_id"),
        sa.UniqueConstraint(
            "stripe_checkout_session_id",
            name="uq_code_purchases_stripe_checkout_session_id",
        ),
    )
    op.create_index("idx_code_purchases_issuer_created", "code_purchases", ["issuer_user_id", "created_at"])
    op.create_index(
        "idx_code_purchases_codes_pending",
        "code_purchases",
        ["created_at"],
        postgresql_where=sa.text("codes_generated = false AND status = 'completed'"),
    )

    op.create_table(
        "subscription_codes",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(19), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("purchase_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("issuer_user_id", sa.BigInteger(), nullable=False),
        sa.Column("stripe_price_id", sa.String(64), nullable=False),
        sa.Column("stripe_product_id", sa.String(64), nullable=True),
        sa.Column("plan_name", sa.Text(), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("redeemed_by_user_id", sa.BigInteger(), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(256), nullable=True),
        sa.Column("previously_redeemed_by_user_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('available','redeemed','revoked','expired')",
            name="ck_subscription_codes_status",
        ),
        sa.CheckConstraint(
            "(status = 'redeemed') = (redeemed_by_user_id IS NOT NULL)",
            name="ck_subscription_codes_redeemed_by_matches_status",
        ),
        sa.CheckConstraint("duration_days > 0", name="ck_subscription_codes_duration_positive"),
        sa.ForeignKeyConstraint(["purchase_id"], ["code_purchases.id"]),
        sa.ForeignKeyConstraint(["issuer_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["redeemed_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["previously_redeemed_by_user_id"], ["users.id"]),
        sa.UniqueConstraint("code", name="uq_subscription_codes_code"),
    )
    op.create_index("idx_subscription_codes_purchase", "subscription_codes", ["purchase_id"])
    op.create_index(
        "idx_subscription_codes_issuer_status",
        "subscription_codes",
        ["issuer_user_id", "status"],
    )
    op.create_index("idx_subscription_codes_redeemed_by", "subscription_codes", ["redeemed_by_user_id"])
    op.create_index("idx_subscription_codes_expires_at", "subscription_codes", ["expires_at"])

    op.create_table(
        "user_subscriptions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("stripe_customer_id", sa.String(64), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(64), nullable=True),
        sa.Column("stripe_price_id", sa.String(64), nullable=True),
        sa.Column("stripe_product_id", sa.String(64), nullable=True),
        sa.Column("plan_name", sa.Text(), nullable=True),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_code_id", sa.BigInteger(), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("source IN ('BILLING','CODE')", name="ck_user_subscriptions_source"),
        sa.CheckConstraint(
            "status IN ('incomplete','incomplete_expired','trialing','active','past_due',"
            "'canceled','unpaid','paused')",
            name="ck_user_subscriptions_status",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["subscription_code_id"], ["subscription_codes.id"]),
        sa.UniqueConstraint("user_id", name="uq_user_subscriptions_user_id"),
        sa.UniqueConstraint("stripe_subscription_id", name="uq_user_subscriptions_stripe_subscription_id"),
    )
    op.create_index("idx_user_subscriptions_customer", "user_subscriptions", ["stripe_customer_id"])
    op.create_index("idx_user_subscriptions_code", "user_subscriptions", ["subscription_code_id"])
    op.create_index(
        "idx_user_subscriptions_code_period_end",
        "user_subscriptions",
        ["current_period_end"],
        postgresql_where=sa.text("source = 'CODE' AND status = 'active'"),
    )

    op.create_table(
        "billing_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("stripe_event_id", sa.String(128), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("purchase_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("stripe_customer_id", sa.String(64), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(64), nullable=True),
        sa.Column("stripe_invoice_id", sa.String(64), nullable=True),
        sa.Column("stripe_charge_id", sa.String(64), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(64), nullable=True),
        sa.Column("raw_event_type", sa.String(64), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("amount_refunded", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'usd'")),
        sa.Column("stripe_price_id", sa.String(64), nullable=True),
        sa.Column("stripe_product_id", sa.String(64), nullable=True),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "type IN ('subscription_created','subscription_renewed','subscription_updated',"
            "'subscription_canceled','payment_succeeded','payment_failed','refund',"
            "'bulk_subscription_purchase','bulk_subscription_updated','bulk_subscription_canceled',"
            "'code_redeemed','code_reactivated')",
            name="ck_billing_transactions_type",
        ),
        sa.CheckConstraint(
            "status IN ('pending','succeeded','failed','refunded','canceled')",
            name="ck_billing_transactions_status",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_billing_transactions_amount_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["purchase_id"], ["code_purchases.id"]),
        sa.UniqueConstraint("stripe_event_id", name="uq_billing_transactions_stripe_event_id"),
    )
    op.create_index(
        "idx_billing_transactions_user_created",
        "billing_transactions",
        ["user_id", "created_at"],
    )
    op.create_index(
        "idx_billing_transactions_customer_created",
        "billing_transactions",
        ["stripe_customer_id", "created_at"],
    )
    op.create_index(
        "idx_billing_transactions_subscription",
        "billing_transactions",
        ["stripe_subscription_id"],
    )
    op.create_index("idx_billing_transactions_charge", "billing_transactions", ["stripe_charge_id"])
    op.create_index("idx_billing_transactions_purchase", "billing_transactions", ["purchase_id"])

    op.create_table(
        "processed_billing_events",
        sa.Column("event_id", sa.String(128), primary_key=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attempts", sa.SmallInteger(), nullable=False, server_default=sa.text("1")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('PROCESSING','PROCESSED','FAILED','FAILED_REVIEW','IGNORED')",
            name="ck_processed_billing_events_status",
        ),
    )
    op.create_index(
        "idx_processed_billing_events_processed_at",
        "processed_billing_events",
        ["processed_at"],
    )
    op.create_index(
        "idx_processed_billing_events_failed_age",
        "processed_billing_events",
        ["processed_at"],
        postgresql_where=sa.text("status = 'FAILED'"),
    )

    op.create_table(
        "reconciliation_runs",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("diff_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.CheckConstraint("status IN ('OK','DIFF')", name="ck_reconciliation_runs_status"),
    )


def downgrade() -> None:
    op.drop_table("reconciliation_runs")
    op.drop_index("idx_processed_billing_events_failed_age", table_name="processed_billing_events")
    op.drop_index("idx_processed_billing_events_processed_at", table_name="processed_billing_events")
    op.drop_table("processed_billing_events")
    op.drop_index("idx_billing_transactions_purchase", table_name="billing_transactions")
    op.drop_index("idx_billing_transactions_charge", table_name="billing_transactions")
    op.drop_index("idx_billing_transactions_subscription", table_name="billing_transactions")
    op.drop_index("idx_billing_transactions_customer_created", table_name="billing_transactions")
    op.drop_index("idx_billing_transactions_user_created", table_name="billing_transactions")
    op.drop_table("billing_transactions")
    op.drop_index("idx_user_subscriptions_code_period_end", table_name="user_subscriptions")
    op.drop_index("idx_user_subscriptions_code", table_name="user_subscriptions")
    op.drop_index("idx_user_subscriptions_customer", table_name="user_subscriptions")
    op.drop_table("user_subscriptions")
    op.drop_index("idx_subscription_codes_expires_at", table_name="subscription_codes")
    op.drop_index("idx_subscription_codes_redeemed_by", table_name="subscription_codes")
    op.drop_index("idx_subscription_codes_issuer_status", table_name="subscription_codes")
    op.drop_index("idx_subscription_codes_purchase", table_name="subscription_codes")
    op.drop_table("subscription_codes")
    op.drop_index("idx_code_purchases_codes_pending", table_name="code_purchases")
    op.drop_index("idx_code_purchases_issuer_created", table_name="code_purchases")
    op.drop_table("code_purchases")
    op.drop_index("idx_users_created_at", table_name="users")
    op.drop_table("users")
