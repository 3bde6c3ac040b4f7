"""entitlement_ledger_core

Revision ID: 5d2e8f1a7c30
Revises:
Create Date: 2026-10-18 10:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5d2e8f1a7c30"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "user_credits",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("trial_available", sa.Integer(), nullable=False),
        sa.Column("trial_used", sa.Integer(), nullable=False),
        sa.Column("purchased_available", sa.Integer(), nullable=False),
        sa.Column("purchased_used", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("trial_available >= 0", name="ck_user_credits_trial_available_non_negative"),
        sa.CheckConstraint("trial_used >= 0", name="ck_user_credits_trial_used_non_negative"),
        sa.CheckConstraint(
            "purchased_available >= 0",
            name="ck_user_credits_purchased_available_non_negative",
        ),
        sa.CheckConstraint("purchased_used >= 0", name="ck_user_credits_purchased_used_non_negative"),
    )

    op.create_table(
        "attraction_usage",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("attraction_id", sa.String(128), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "attraction_id", name="uq_attraction_usage_user_attraction"),
    )
    op.create_index("idx_attraction_usage_user_time", "attraction_usage", ["user_id", "used_at"])

    op.create_table(
        "user_subscriptions",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("product_id", sa.String(128), nullable=False),
        sa.Column("transaction_id", sa.String(255), nullable=False),
        sa.Column("platform", sa.String(32), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "kind IN ('NONE','UNLIMITED_MONTHLY','PREMIUM_MONTHLY','PREMIUM_YEARLY','LIFETIME')",
            name="ck_user_subscriptions_kind",
        ),
    )

    op.create_table(
        "purchase_records",
        sa.Column("transaction_id", sa.String(255), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("product_id", sa.String(128), nullable=False),
        sa.Column("product_kind", sa.String(32), nullable=False),
        sa.Column("credit_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("platform", sa.String(32), nullable=False),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "product_kind IN ('SUBSCRIPTION','CONSUMABLE_PACKAGE','CONSUMABLE_SINGLE_ATTRACTION','LEGACY_PACK')",
            name="ck_purchase_records_product_kind",
        ),
        sa.CheckConstraint("credit_amount >= 0", name="ck_purchase_records_credit_amount_non_negative"),
    )
    op.create_index("idx_purchase_records_user_time", "purchase_records", ["user_id", "purchased_at"])

    op.create_table(
        "owned_attractions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("attraction_id", sa.String(128), nullable=False),
        sa.Column("source_product_id", sa.String(128), nullable=False),
        sa.Column("source_transaction_id", sa.String(255), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "attraction_id", name="uq_owned_attractions_user_attraction"),
    )

    op.create_table(
        "analytics_events",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=True),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("happened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("source IN ('API','WEBHOOK','SYSTEM')", name="ck_analytics_events_source"),
    )
    op.create_index("idx_analytics_events_type_time", "analytics_events", ["event_type", "happened_at"])
    op.create_index(
        "idx_analytics_events_user_type_time",
        "analytics_events",
        ["user_id", "event_type", "happened_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_analytics_events_user_type_time", table_name="analytics_events")
    op.drop_index("idx_analytics_events_type_time", table_name="analytics_events")
    op.drop_table("analytics_events")
    op.drop_table("owned_attractions")
    op.drop_index("idx_purchase_records_user_time", table_name="purchase_records")
    op.drop_table("purchase_records")
    op.drop_table("user_subscriptions")
    op.drop_index("idx_attraction_usage_user_time", table_name="attraction_usage")
    op.drop_table("attraction_usage")
    op.drop_table("user_credits")
