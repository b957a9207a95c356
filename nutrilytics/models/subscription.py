"""
Subscription Models
===================

SQLAlchemy models for the per-user subscription record, its audit
history and the win-back offer issued on cancellation.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Enum as SQLEnum,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from nutrilytics.db.base import Base, TimestampMixin, UTCDateTime
from nutrilytics.utils.helpers import utc_now

JSONType = JSON().with_variant(JSONB(), "postgresql")


class SubscriptionTier(str, Enum):
    """Subscription tier levels."""
    NONE = "none"
    TRIAL = "trial"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class SubscriptionEventType(str, Enum):
    """Types of subscription events recorded in history."""
    INITIAL_PURCHASE = "initial_purchase"
    RENEWAL = "renewal"
    CANCELLATION = "cancellation"
    UNCANCELLATION = "uncancellation"
    NON_RENEWING_PURCHASE = "non_renewing_purchase"
    EXPIRATION = "expiration"
    BILLING_ISSUE = "billing_issue"
    PRODUCT_CHANGE = "product_change"
    TRIAL_STARTED = "trial_started"
    TRIAL_EXPIRED = "trial_expired"
    GRACE_PERIOD_EXPIRED = "grace_period_expired"


class Subscription(Base, TimestampMixin):
    """
    Subscription record, one row per user.

    ``is_active`` is a persisted snapshot of ``compute_is_active`` so the
    scheduled jobs can filter on it; it is only ever written through
    ``refresh_active``.
    """

    __tablename__ = "subscriptions"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    tier: Mapped[SubscriptionTier] = mapped_column(
        SQLEnum(SubscriptionTier),
        default=SubscriptionTier.NONE,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Trial window
    trial_started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    trial_reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # Paid billing window (no end for lifetime)
    subscription_started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    subscription_ends_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # Cancellation
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Failed renewal
    billing_issue: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    billing_issue_detected_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    grace_period_ends_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # RevenueCat provenance
    revenuecat_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    product_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_payment_amount: Mapped[Optional[float]] = mapped_column(Numeric(10, 2), nullable=True)
    last_payment_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    last_payment_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_event_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_subscription_active", "is_active"),
        Index("idx_subscription_trial_ends", "trial_ends_at"),
    )

    def __repr__(self) -> str:
        return f"<Subscription(user_id={self.user_id}, tier={self.tier}, active={self.is_active})>"

    def is_in_trial(self, now: datetime) -> bool:
        """Check if the trial window is still open."""
        return self.trial_ends_at is not None and now < self.trial_ends_at

    def compute_is_active(self, now: datetime) -> bool:
        """Derive premium entitlement from the trial and billing windows."""
        if self.expired_at is not None:
            return False
        if self.is_in_trial(now):
            return True
        if self.subscription_ends_at is not None and now < self.subscription_ends_at:
            return True
        if self.is_in_grace_period(now):
            return True
        return self.tier == SubscriptionTier.LIFETIME

    def is_in_grace_period(self, now: datetime) -> bool:
        """Failed renewal still inside its grace window."""
        return (
            self.billing_issue
            and self.grace_period_ends_at is not None
            and now < self.grace_period_ends_at
        )

    def refresh_active(self, now: datetime) -> bool:
        """Recompute the ``is_active`` snapshot and return it."""
        self.is_active = self.compute_is_active(now)
        return self.is_active


class SubscriptionHistory(Base):
    """
    Subscription history model.

    Append-only audit trail of every applied lifecycle event.
    """

    __tablename__ = "subscription_history"

    history_id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)

    event_type: Mapped[SubscriptionEventType] = mapped_column(
        SQLEnum(SubscriptionEventType),
        nullable=False,
    )
    event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    previous_tier: Mapped[Optional[SubscriptionTier]] = mapped_column(
        SQLEnum(SubscriptionTier),
        nullable=True,
    )
    new_tier: Mapped[SubscriptionTier] = mapped_column(
        SQLEnum(SubscriptionTier),
        nullable=False,
    )
    was_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    price: Mapped[Optional[float]] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    raw_event: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False,
    )

    __table_args__ = (
        Index("idx_sub_history_user_created", "user_id", "created_at"),
        Index("idx_sub_history_event_date", "event_type", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionHistory(user_id={self.user_id}, event={self.event_type})>"


class WinBackOffer(Base):
    """Discount offer issued when a user cancels auto-renew."""

    __tablename__ = "winback_offers"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    discount_percent: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_months: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<WinBackOffer(user_id={self.user_id}, expires_at={self.expires_at})>"

    def is_valid(self, now: datetime) -> bool:
        """An offer stays redeemable up to and including ``expires_at``."""
        return now <= self.expires_at
