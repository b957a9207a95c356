"""
Premium Status Cache
====================

Local cache of the last known premium status per user, stored in Redis
as ``{"is_premium": bool, "cached_at": iso8601}``.

Entries are considered fresh for one hour. Older entries are kept for a
day so the access gate can fall back to them when the subscription store
is unreachable.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from nutrilytics.services.cache import CacheKeys, CacheManager
from nutrilytics.utils.helpers import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

FRESHNESS = timedelta(hours=1)


class PremiumStatusCache:
    """Read/write the cached premium flag for a user."""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock

    async def get(
        self,
        user_id: str,
        max_age: Optional[timedelta] = FRESHNESS,
    ) -> Optional[bool]:
        """
        Return the cached flag, or None when missing or older than *max_age*.

        Pass ``max_age=None`` to accept an entry of any age.
        """
        entry = await CacheManager.get(CacheKeys.premium_status(user_id))
        if not isinstance(entry, dict) or "is_premium" not in entry:
            return None

        if max_age is not None:
            try:
                cached_at = ensure_utc(datetime.fromisoformat(entry["cached_at"]))
            except (KeyError, TypeError, ValueError):
                logger.warning("Discarding malformed premium cache entry for %s", user_id)
                return None
            if self.clock() - cached_at > max_age:
                return None

        return bool(entry["is_premium"])

    async def store(self, user_id: str, is_premium: bool) -> None:
        """Cache *is_premium* stamped with the current time."""
        await CacheManager.set(
            CacheKeys.premium_status(user_id),
            {"is_premium": is_premium, "cached_at": self.clock().isoformat()},
            ttl=CacheManager.TTL_DAY,
        )
