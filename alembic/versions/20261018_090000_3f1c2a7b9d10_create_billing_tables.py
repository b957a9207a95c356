"""Create subscription, usage quota and win-back tables

Creates subscriptions, subscription_history, winback_offers and
usage_quotas with their enum types and indexes.

Revision ID: 3f1c2a7b9d10
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f1c2a7b9d10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum values are stored by member name
TIER_VALUES = ("NONE", "TRIAL", "MONTHLY", "YEARLY", "LIFETIME")
EVENT_TYPE_VALUES = (
    "INITIAL_PURCHASE",
    "RENEWAL",
    "CANCELLATION",
    "UNCANCELLATION",
    "NON_RENEWING_PURCHASE",
    "EXPIRATION",
    "BILLING_ISSUE",
    "PRODUCT_CHANGE",
    "TRIAL_STARTED",
    "TRIAL_EXPIRED",
    "GRACE_PERIOD_EXPIRED",
)


def upgrade() -> None:
    """Upgrade database schema."""

    # ------------------------------------------------------------------
    # 1. Enum types
    # ------------------------------------------------------------------
    tier_enum = postgresql.ENUM(*TIER_VALUES, name="subscriptiontier", create_type=False)
    event_enum = postgresql.ENUM(*EVENT_TYPE_VALUES, name="subscriptioneventtype", create_type=False)
    tier_enum.create(op.get_bind(), checkfirst=True)
    event_enum.create(op.get_bind(), checkfirst=True)

    # ------------------------------------------------------------------
    # 2. subscriptions
    # ------------------------------------------------------------------
    op.create_table(
        "subscriptions",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("tier", tier_enum, nullable=False, server_default="NONE"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("trial_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=100), nullable=True),
        sa.Column("billing_issue", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("billing_issue_detected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("grace_period_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revenuecat_customer_id", sa.String(length=255), nullable=True),
        sa.Column("product_identifier", sa.String(length=100), nullable=True),
        sa.Column("last_payment_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("last_payment_currency", sa.String(length=3), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_event_id", sa.String(length=255), nullable=True),
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_subscription_active", "subscriptions", ["is_active"])
    op.create_index("idx_subscription_trial_ends", "subscriptions", ["trial_ends_at"])

    # ------------------------------------------------------------------
    # 3. subscription_history
    # ------------------------------------------------------------------
    op.create_table(
        "subscription_history",
        sa.Column("history_id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", event_enum, nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=True),
        sa.Column("previous_tier", tier_enum, nullable=True),
        sa.Column("new_tier", tier_enum, nullable=False),
        sa.Column("was_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("raw_event", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "idx_sub_history_user_created", "subscription_history", ["user_id", "created_at"]
    )
    op.create_index(
        "idx_sub_history_event_date", "subscription_history", ["event_type", "created_at"]
    )

    # ------------------------------------------------------------------
    # 4. winback_offers
    # ------------------------------------------------------------------
    op.create_table(
        "winback_offers",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("discount_percent", sa.Integer(), nullable=False),
        sa.Column("duration_months", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # ------------------------------------------------------------------
    # 5. usage_quotas
    # ------------------------------------------------------------------
    op.create_table(
        "usage_quotas",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("barcode_scans_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("photo_scans_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_messages_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "barcode_scans_today >= 0 AND photo_scans_today >= 0 AND ai_messages_today >= 0",
            name="ck_usage_quotas_non_negative",
        ),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("usage_quotas")
    op.drop_table("winback_offers")
    op.drop_index("idx_sub_history_event_date", table_name="subscription_history")
    op.drop_index("idx_sub_history_user_created", table_name="subscription_history")
    op.drop_table("subscription_history")
    op.drop_index("idx_subscription_trial_ends", table_name="subscriptions")
    op.drop_index("idx_subscription_active", table_name="subscriptions")
    op.drop_table("subscriptions")

    sa.Enum(name="subscriptioneventtype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="subscriptiontier").drop(op.get_bind(), checkfirst=True)
