"""
Usage Quota Service
===================

Daily free-tier counters: lazy reset on read, atomic capped increments
and the bulk reset used by the midnight sweep.

Counter increments are a single conditional UPDATE so that concurrent
requests can never push a counter past its limit.
"""

import logging
from typing import AsyncIterator, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nutrilytics.core.feature_limits import (
    FREE_TIER_LIMITS,
    USAGE_COUNTER_COLUMNS,
    UsageKind,
    get_limit,
)
from nutrilytics.models.usage import UsageQuota
from nutrilytics.schemas.subscription import UsageCounter, UsageQuotaView
from nutrilytics.utils.helpers import (
    Clock,
    is_quota_window_stale,
    next_utc_midnight,
    utc_now,
)

logger = logging.getLogger(__name__)


class UsageQuotaService:
    """Service for per-user daily usage counters."""

    def __init__(self, db: AsyncSession, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    # -------------------------------------------------------------------------
    # Record access
    # -------------------------------------------------------------------------

    async def get_or_create(self, user_id: str) -> UsageQuota:
        """Get the quota record, creating a zeroed one if missing."""
        quota = await self.db.get(UsageQuota, user_id)
        if quota is not None:
            return quota

        now = self.clock()
        quota = UsageQuota(
            user_id=user_id,
            barcode_scans_today=0,
            photo_scans_today=0,
            ai_messages_today=0,
            last_reset_at=now,
            updated_at=now,
        )
        self.db.add(quota)
        await self.db.flush()
        return quota

    async def get_current(self, user_id: str) -> UsageQuota:
        """Get the quota record for the current UTC day, resetting it if stale."""
        quota = await self.get_or_create(user_id)
        now = self.clock()
        if is_quota_window_stale(quota.last_reset_at, now):
            logger.debug("Lazy quota reset for user %s", user_id)
            self._zero(quota)
            await self.db.flush()
        return quota

    def _zero(self, quota: UsageQuota) -> None:
        now = self.clock()
        quota.barcode_scans_today = 0
        quota.photo_scans_today = 0
        quota.ai_messages_today = 0
        quota.last_reset_at = now
        quota.updated_at = now

    # -------------------------------------------------------------------------
    # Read / increment
    # -------------------------------------------------------------------------

    async def get_quota(self, user_id: str) -> UsageQuotaView:
        """Current usage with limits and the next reset time."""
        quota = await self.get_current(user_id)
        return UsageQuotaView(
            barcode_scans=UsageCounter(
                used=quota.barcode_scans_today,
                limit=FREE_TIER_LIMITS[UsageKind.BARCODE],
            ),
            photo_scans=UsageCounter(
                used=quota.photo_scans_today,
                limit=FREE_TIER_LIMITS[UsageKind.PHOTO],
            ),
            ai_messages=UsageCounter(
                used=quota.ai_messages_today,
                limit=FREE_TIER_LIMITS[UsageKind.AI],
            ),
            resets_at=next_utc_midnight(self.clock()),
        )

    async def peek_used(self, user_id: str, kind: UsageKind) -> int:
        """Today's count for one usage kind, without creating or resetting the record."""
        quota = await self.db.get(UsageQuota, user_id)
        if quota is None or is_quota_window_stale(quota.last_reset_at, self.clock()):
            return 0
        return getattr(quota, USAGE_COUNTER_COLUMNS[kind])

    async def try_increment(self, user_id: str, kind: UsageKind) -> bool:
        """
        Increment a counter if it is below the free-tier limit.

        Returns:
            True if the counter was incremented, False if the limit was
            already reached.
        """
        quota = await self.get_current(user_id)

        column = getattr(UsageQuota, USAGE_COUNTER_COLUMNS[kind])
        stmt = (
            update(UsageQuota)
            .where(UsageQuota.user_id == user_id, column < get_limit(kind))
            .values({column: column + 1, UsageQuota.updated_at: self.clock()})
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        incremented = result.rowcount == 1
        await self.db.refresh(quota)

        if not incremented:
            logger.info("Daily %s quota exhausted for user %s", kind.value, user_id)
        return incremented

    # -------------------------------------------------------------------------
    # Resets
    # -------------------------------------------------------------------------

    async def reset_user(self, user_id: str) -> UsageQuota:
        """Zero all counters for one user."""
        quota = await self.get_or_create(user_id)
        self._zero(quota)
        await self.db.flush()
        return quota

    async def iter_user_id_batches(self, batch_size: int) -> AsyncIterator[list[str]]:
        """Yield quota user ids in ``user_id`` order, *batch_size* at a time."""
        last_user_id = None
        while True:
            stmt = select(UsageQuota.user_id).order_by(UsageQuota.user_id).limit(batch_size)
            if last_user_id is not None:
                stmt = stmt.where(UsageQuota.user_id > last_user_id)

            result = await self.db.execute(stmt)
            user_ids = list(result.scalars())
            if not user_ids:
                return

            yield user_ids

            if len(user_ids) < batch_size:
                return
            last_user_id = user_ids[-1]

    async def reset_many(self, user_ids: Sequence[str]) -> int:
        """Zero the counters of *user_ids* in one statement. Returns rows reset."""
        if not user_ids:
            return 0

        now = self.clock()
        stmt = (
            update(UsageQuota)
            .where(UsageQuota.user_id.in_(list(user_ids)))
            .values(
                barcode_scans_today=0,
                photo_scans_today=0,
                ai_messages_today=0,
                last_reset_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount
