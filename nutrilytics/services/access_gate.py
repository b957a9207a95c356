"""
Feature Access Gate
===================

Decides whether a user may use a gated feature right now.

Premium status is resolved in this order:
1. a fresh (at most one hour old) entry in the premium status cache
2. the live RevenueCat entitlement
3. the local subscription record

A RevenueCat failure falls through to the record. A record failure falls
back to the last cached value of any age, and finally to "not premium".
The gate never grants access because a dependency failed.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nutrilytics.core.errors import BillingProviderError
from nutrilytics.core.feature_limits import (
    FEATURE_USAGE_KIND,
    PREMIUM_ONLY_REASONS,
    Feature,
    UsageKind,
    get_limit,
    limit_reached_reason,
)
from nutrilytics.schemas.subscription import FeatureDecision
from nutrilytics.services.premium_cache import PremiumStatusCache
from nutrilytics.services.revenuecat import RevenueCatClient
from nutrilytics.services.subscription_store import SubscriptionStore
from nutrilytics.services.usage_quota import UsageQuotaService
from nutrilytics.utils.helpers import Clock, utc_now

logger = logging.getLogger(__name__)

ACCESS_CHECK_FAILED_REASON = "Unable to verify access right now"


class FeatureAccessGate:
    """Service combining premium status and free-tier quotas."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        revenuecat: Optional[RevenueCatClient] = None,
        premium_cache: Optional[PremiumStatusCache] = None,
    ):
        self.db = db
        self.clock = clock
        self.store = SubscriptionStore(db)
        self.quota = UsageQuotaService(db, clock)
        self.revenuecat = revenuecat or RevenueCatClient(clock=clock)
        self.premium_cache = premium_cache or PremiumStatusCache(clock)

    async def _discard_transaction(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.warning("Rollback after failed access check also failed: %s", e)

    # -------------------------------------------------------------------------
    # Premium status
    # -------------------------------------------------------------------------

    async def check_premium_access(self, user_id: str) -> bool:
        """Resolve whether *user_id* currently has premium access."""
        cached = await self.premium_cache.get(user_id)
        if cached is not None:
            return cached

        try:
            if await self.revenuecat.has_active_entitlement(user_id):
                await self.premium_cache.store(user_id, True)
                return True
        except BillingProviderError as e:
            logger.warning("RevenueCat entitlement check failed for %s: %s", user_id, e)

        try:
            subscription = await self.store.get(user_id)
        except SQLAlchemyError:
            logger.exception("Subscription lookup failed for %s", user_id)
            await self._discard_transaction()
            stale = await self.premium_cache.get(user_id, max_age=None)
            return bool(stale)

        is_premium = (
            subscription.compute_is_active(self.clock())
            if subscription is not None
            else False
        )
        await self.premium_cache.store(user_id, is_premium)
        return is_premium

    # -------------------------------------------------------------------------
    # Feature checks
    # -------------------------------------------------------------------------

    async def can_use_feature(self, user_id: str, feature: Feature) -> FeatureDecision:
        """Check a feature without consuming quota."""
        try:
            if await self.check_premium_access(user_id):
                return FeatureDecision(allowed=True)

            kind = FEATURE_USAGE_KIND[feature]
            if kind is None:
                return FeatureDecision(allowed=False, reason=PREMIUM_ONLY_REASONS[feature])

            used = await self.quota.peek_used(user_id, kind)
        except SQLAlchemyError:
            logger.exception("Feature check failed for %s/%s", user_id, feature.value)
            await self._discard_transaction()
            return FeatureDecision(allowed=False, reason=ACCESS_CHECK_FAILED_REASON)

        if used < get_limit(kind):
            return FeatureDecision(allowed=True)
        return FeatureDecision(allowed=False, reason=limit_reached_reason(kind))

    async def increment_usage(self, user_id: str, kind: UsageKind) -> bool:
        """
        Record one use of a rate-limited action.

        Premium users are never counted. Returns False when the daily
        limit is already reached or the quota store is unavailable.
        """
        try:
            if await self.check_premium_access(user_id):
                return True
            return await self.quota.try_increment(user_id, kind)
        except SQLAlchemyError:
            logger.exception("Usage increment failed for %s/%s", user_id, kind.value)
            await self._discard_transaction()
            return False
