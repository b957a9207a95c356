"""
Scheduled Jobs
==============

Background tasks for maintenance operations:
- Daily free-tier quota reset (00:00 UTC)
- Trial expiration and billing grace period checks (every 6 hours)
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from nutrilytics.config import settings
from nutrilytics.models.subscription import (
    Subscription,
    SubscriptionEventType,
    SubscriptionTier,
)
from nutrilytics.services.premium_cache import PremiumStatusCache
from nutrilytics.services.subscription_store import SubscriptionStore
from nutrilytics.services.usage_quota import UsageQuotaService
from nutrilytics.utils.helpers import Clock, utc_now

logger = logging.getLogger(__name__)

TRIAL_REMINDER_WINDOW = timedelta(days=2)


class ScheduledJobService:
    """Service for scheduled background jobs."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        batch_size: Optional[int] = None,
        premium_cache: Optional[PremiumStatusCache] = None,
    ):
        self.db = db
        self.clock = clock
        self.batch_size = batch_size or settings.QUOTA_RESET_BATCH_SIZE
        self.store = SubscriptionStore(db)
        self.quota = UsageQuotaService(db, clock)
        self.premium_cache = premium_cache or PremiumStatusCache(clock)

    async def daily_quota_reset(self) -> dict:
        """
        Zero the daily counters of every non-premium user.

        Run daily at 00:00 UTC. Users are processed in batches of
        ``batch_size`` and each batch is committed on its own, so a failed
        batch does not undo earlier ones. Running it twice in a day leaves
        the same counters as running it once.

        Returns:
            Summary of the sweep
        """
        now = self.clock()
        processed = 0
        reset = 0
        skipped_premium = 0
        batches = 0
        errors = []

        logger.info("Starting daily quota reset")

        async for user_ids in self.quota.iter_user_id_batches(self.batch_size):
            batches += 1
            try:
                subscriptions = await self.store.get_many(user_ids)
                free_user_ids = [
                    user_id
                    for user_id in user_ids
                    if user_id not in subscriptions
                    or not subscriptions[user_id].compute_is_active(now)
                ]
                batch_reset = await self.quota.reset_many(free_user_ids)
                await self.db.commit()
            except Exception as e:
                logger.exception("Quota reset batch %d failed", batches)
                await self.db.rollback()
                errors.append({"batch": batches, "error": str(e)})
                continue

            processed += len(user_ids)
            reset += batch_reset
            skipped_premium += len(user_ids) - len(free_user_ids)

        logger.info(
            "Daily quota reset done: processed=%d reset=%d skipped_premium=%d batches=%d",
            processed,
            reset,
            skipped_premium,
            batches,
        )

        return {
            "job": "daily_quota_reset",
            "processed": processed,
            "reset": reset,
            "skipped_premium": skipped_premium,
            "batches": batches,
            "errors": errors,
            "run_at": now.isoformat(),
        }

    async def check_trial_expirations(self) -> dict:
        """
        Handle trials that end soon or have ended, and lapsed grace periods.

        Run every 6 hours. Each user is updated inside its own savepoint,
        so a failing user is rolled back and reported while the rest of
        the batch is still committed.

        Returns:
            Summary of processed subscriptions
        """
        now = self.clock()
        processed = 0
        counts: Counter[str] = Counter()
        errors = []
        changed: list[Subscription] = []

        async for batch in self.store.iter_lifecycle_batches(self.batch_size):
            for subscription in batch:
                processed += 1
                # Attributes are expired if the savepoint rolls back
                user_id = subscription.user_id
                try:
                    async with self.db.begin_nested():
                        outcomes = await self._check_subscription(subscription, now)
                        await self.db.flush()
                except Exception as e:
                    logger.exception("Trial check failed for user %s", user_id)
                    errors.append({
                        "user_id": user_id,
                        "error": str(e),
                    })
                    continue

                counts.update(outcomes)
                if outcomes - {"reminders_flagged"}:
                    changed.append(subscription)

            await self.db.commit()

        for subscription in changed:
            await self.premium_cache.store(subscription.user_id, subscription.is_active)

        logger.info(
            "Trial check done: processed=%d reminders=%d expired=%d awaiting_renewal=%d grace_expired=%d",
            processed,
            counts["reminders_flagged"],
            counts["trials_expired"],
            counts["trials_awaiting_renewal"],
            counts["grace_periods_expired"],
        )

        return {
            "job": "check_trial_expirations",
            "processed": processed,
            "reminders_flagged": counts["reminders_flagged"],
            "trials_expired": counts["trials_expired"],
            "trials_awaiting_renewal": counts["trials_awaiting_renewal"],
            "grace_periods_expired": counts["grace_periods_expired"],
            "errors": errors,
            "run_at": now.isoformat(),
        }

    async def _check_subscription(self, subscription: Subscription, now: datetime) -> set[str]:
        """Apply the trial and grace period rules to one record. Returns the summary keys hit."""
        outcomes: set[str] = set()

        # ---- trial ends within two days ----
        if (
            subscription.trial_ends_at is not None
            and now < subscription.trial_ends_at <= now + TRIAL_REMINDER_WINDOW
            and subscription.trial_reminder_sent_at is None
        ):
            subscription.trial_reminder_sent_at = now
            outcomes.add("reminders_flagged")
            logger.info(
                "Trial for user %s ends %s, reminder flagged",
                subscription.user_id,
                subscription.trial_ends_at,
            )

        # ---- trial ended while still marked active ----
        if (
            subscription.trial_ends_at is not None
            and subscription.trial_ends_at <= now
            and subscription.is_active
            and not subscription.compute_is_active(now)
        ):
            previous_tier = subscription.tier
            if subscription.is_cancelled:
                subscription.tier = SubscriptionTier.NONE
                subscription.expired_at = now
                outcomes.add("trials_expired")
            else:
                outcomes.add("trials_awaiting_renewal")
            subscription.refresh_active(now)
            await self.store.add_history(
                subscription,
                SubscriptionEventType.TRIAL_EXPIRED,
                previous_tier=previous_tier,
                was_active=True,
            )

        # ---- grace period lapsed without a renewal ----
        if (
            subscription.billing_issue
            and subscription.grace_period_ends_at is not None
            and subscription.grace_period_ends_at <= now
            and subscription.expired_at is None
        ):
            was_active = subscription.is_active
            subscription.expired_at = now
            subscription.refresh_active(now)
            await self.store.add_history(
                subscription,
                SubscriptionEventType.GRACE_PERIOD_EXPIRED,
                previous_tier=subscription.tier,
                was_active=was_active,
                raw_event={"reason": "billing_grace_period_expired"},
            )
            outcomes.add("grace_periods_expired")

        return outcomes


# Job runner functions (called from the APScheduler jobs in services/scheduler.py)

async def run_daily_quota_reset(db: AsyncSession) -> dict:
    """Run the daily free-tier quota reset."""
    service = ScheduledJobService(db)
    return await service.daily_quota_reset()


async def run_trial_expiration_check(db: AsyncSession) -> dict:
    """Run the trial expiration and grace period check."""
    service = ScheduledJobService(db)
    return await service.check_trial_expirations()
