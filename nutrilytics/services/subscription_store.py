"""
Subscription Store
==================

Persistence helpers for subscription records and their audit history.
"""

import logging
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from nutrilytics.models.subscription import (
    Subscription,
    SubscriptionEventType,
    SubscriptionHistory,
    SubscriptionTier,
)

logger = logging.getLogger(__name__)


class SubscriptionStore:
    """Load, create and audit subscription records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str) -> Optional[Subscription]:
        """Get the subscription record for a user, if any."""
        return await self.db.get(Subscription, user_id)

    async def get_or_create(self, user_id: str) -> Subscription:
        """Get the record, creating an inactive one on first contact."""
        subscription = await self.get(user_id)
        if subscription is not None:
            return subscription

        subscription = Subscription(
            user_id=user_id,
            tier=SubscriptionTier.NONE,
            is_active=False,
            is_cancelled=False,
            billing_issue=False,
        )
        self.db.add(subscription)
        await self.db.flush()
        logger.info("Created subscription record for user %s", user_id)
        return subscription

    async def get_many(self, user_ids: Sequence[str]) -> dict[str, Subscription]:
        """Load records for a batch of users keyed by user id."""
        if not user_ids:
            return {}
        result = await self.db.execute(
            select(Subscription).where(Subscription.user_id.in_(list(user_ids)))
        )
        return {sub.user_id: sub for sub in result.scalars()}

    async def iter_lifecycle_batches(
        self,
        batch_size: int,
    ) -> AsyncIterator[list[Subscription]]:
        """
        Yield records with a trial window or an open billing issue.

        Keyset-paginated on ``user_id`` so callers may commit between batches.
        """
        last_user_id: Optional[str] = None
        while True:
            stmt = (
                select(Subscription)
                .where(
                    or_(
                        Subscription.trial_ends_at.is_not(None),
                        Subscription.billing_issue.is_(True),
                    )
                )
                .order_by(Subscription.user_id)
                .limit(batch_size)
            )
            if last_user_id is not None:
                stmt = stmt.where(Subscription.user_id > last_user_id)

            result = await self.db.execute(stmt)
            batch = list(result.scalars())
            if not batch:
                return

            # Read before yielding; callers may expire the records
            batch_last_user_id = batch[-1].user_id
            yield batch

            if len(batch) < batch_size:
                return
            last_user_id = batch_last_user_id

    async def add_history(
        self,
        subscription: Subscription,
        event_type: SubscriptionEventType,
        previous_tier: Optional[SubscriptionTier],
        was_active: bool,
        event_id: Optional[str] = None,
        price: Optional[float] = None,
        currency: Optional[str] = None,
        raw_event: Optional[dict[str, Any]] = None,
    ) -> SubscriptionHistory:
        """Append an audit row describing an applied lifecycle change."""
        history = SubscriptionHistory(
            user_id=subscription.user_id,
            event_type=event_type,
            event_id=event_id,
            previous_tier=previous_tier,
            new_tier=subscription.tier,
            was_active=was_active,
            is_active=subscription.is_active,
            price=price,
            currency=currency,
            raw_event=raw_event,
        )
        self.db.add(history)
        return history

    async def list_history(self, user_id: str) -> list[SubscriptionHistory]:
        """History rows for a user, oldest first."""
        result = await self.db.execute(
            select(SubscriptionHistory)
            .where(SubscriptionHistory.user_id == user_id)
            .order_by(SubscriptionHistory.created_at)
        )
        return list(result.scalars())
