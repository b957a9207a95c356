"""
Subscription Service
====================

Read models and local lifecycle actions for the app:
status summary, usage quota, win-back offer, trial start and
cancellation.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from nutrilytics.config import settings
from nutrilytics.core.errors import ConflictError, ErrorCodes, ValidationError
from nutrilytics.models.subscription import (
    Subscription,
    SubscriptionEventType,
    SubscriptionTier,
)
from nutrilytics.schemas.subscription import (
    SubscriptionStatusView,
    UsageQuotaView,
    WinBackOfferView,
)
from nutrilytics.services.premium_cache import PremiumStatusCache
from nutrilytics.services.subscription_store import SubscriptionStore
from nutrilytics.services.usage_quota import UsageQuotaService
from nutrilytics.services.webhook_processor import DEFAULT_CANCELLATION_REASON
from nutrilytics.services.winback import WinBackOfferManager
from nutrilytics.utils.helpers import Clock, days_until, utc_now

logger = logging.getLogger(__name__)

# Tiers that are not reported to the app as a plan
_UNREPORTED_TIERS = (SubscriptionTier.NONE, SubscriptionTier.TRIAL)


class SubscriptionService:
    """Service for user-facing subscription operations."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        premium_cache: Optional[PremiumStatusCache] = None,
    ):
        self.db = db
        self.clock = clock
        self.store = SubscriptionStore(db)
        self.quota = UsageQuotaService(db, clock)
        self.winback = WinBackOfferManager(db, clock)
        self.premium_cache = premium_cache or PremiumStatusCache(clock)

    # -------------------------------------------------------------------------
    # Read models
    # -------------------------------------------------------------------------

    async def get_subscription_status(self, user_id: str) -> SubscriptionStatusView:
        """
        Summarize the subscription for display.

        ``days_remaining`` counts whole days rounded up; an open trial
        takes precedence over the paid period.
        """
        subscription = await self.store.get(user_id)
        if subscription is None:
            return SubscriptionStatusView(is_active=False)

        now = self.clock()
        is_in_trial = subscription.is_in_trial(now)

        if is_in_trial:
            days_remaining = days_until(subscription.trial_ends_at, now)
        elif subscription.subscription_ends_at is not None and subscription.compute_is_active(now):
            days_remaining = days_until(subscription.subscription_ends_at, now)
        else:
            days_remaining = 0

        tier = None if subscription.tier in _UNREPORTED_TIERS else subscription.tier.value

        return SubscriptionStatusView(
            is_active=subscription.compute_is_active(now),
            tier=tier,
            expires_at=subscription.subscription_ends_at,
            is_in_trial=is_in_trial,
            trial_ends_at=subscription.trial_ends_at,
            days_remaining=days_remaining,
            is_cancelled=subscription.is_cancelled,
            billing_issue=subscription.billing_issue,
            grace_period_ends_at=subscription.grace_period_ends_at,
        )

    async def get_usage_quota(self, user_id: str) -> UsageQuotaView:
        """Current daily usage for a user."""
        return await self.quota.get_quota(user_id)

    async def get_winback_offer(self, user_id: str) -> Optional[WinBackOfferView]:
        """The user's win-back offer while it is still valid."""
        offer = await self.winback.get_offer(user_id)
        if offer is None:
            return None
        return WinBackOfferView(
            discount_percent=offer.discount_percent,
            duration_months=offer.duration_months,
            expires_at=offer.expires_at,
        )

    # -------------------------------------------------------------------------
    # Local lifecycle actions
    # -------------------------------------------------------------------------

    async def start_trial(self, user_id: str) -> Subscription:
        """
        Start the free trial.

        Raises:
            ConflictError: If the user has already had a trial or already
                has premium access.
        """
        subscription = await self.store.get_or_create(user_id)
        if subscription.trial_started_at is not None:
            raise ConflictError(
                code=ErrorCodes.SUB_TRIAL_ALREADY_USED,
                message="Free trial has already been used",
            )

        now = self.clock()
        if subscription.compute_is_active(now):
            raise ConflictError(
                code=ErrorCodes.SUB_ALREADY_ACTIVE,
                message="Subscription is already active",
            )

        previous_tier = subscription.tier
        was_active = subscription.is_active

        subscription.tier = SubscriptionTier.TRIAL
        subscription.trial_started_at = now
        subscription.trial_ends_at = now + timedelta(days=settings.TRIAL_DURATION_DAYS)
        subscription.is_cancelled = False
        subscription.expired_at = None
        subscription.refresh_active(now)

        await self.store.add_history(
            subscription,
            SubscriptionEventType.TRIAL_STARTED,
            previous_tier=previous_tier,
            was_active=was_active,
        )
        await self.quota.reset_user(user_id)
        await self.db.flush()
        await self.premium_cache.store(user_id, True)

        logger.info("Trial started for user %s, ends %s", user_id, subscription.trial_ends_at)
        return subscription

    async def cancel(self, user_id: str, reason: Optional[str] = None) -> Subscription:
        """
        Turn off renewal locally. Access continues until the period ends.

        Raises:
            ValidationError: If there is no active subscription.
            ConflictError: If the subscription is already cancelled.
        """
        now = self.clock()
        subscription = await self.store.get(user_id)
        if subscription is None or not subscription.compute_is_active(now):
            raise ValidationError(
                message="No active subscription to cancel",
                code=ErrorCodes.SUB_NO_ACTIVE_SUB,
            )
        if subscription.is_cancelled:
            raise ConflictError(
                code=ErrorCodes.SUB_ALREADY_CANCELLED,
                message="Subscription is already cancelled",
            )

        previous_tier = subscription.tier
        was_active = subscription.is_active

        subscription.is_cancelled = True
        subscription.cancelled_at = now
        subscription.cancellation_reason = reason or DEFAULT_CANCELLATION_REASON
        subscription.refresh_active(now)

        await self.winback.create_offer(user_id)
        await self.store.add_history(
            subscription,
            SubscriptionEventType.CANCELLATION,
            previous_tier=previous_tier,
            was_active=was_active,
        )
        await self.db.flush()

        logger.info(
            "Subscription cancelled locally for user %s (%s)",
            user_id,
            subscription.cancellation_reason,
        )
        return subscription
