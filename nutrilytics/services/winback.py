"""
Win-back Offer Manager
======================

Discount offered to users who turn off auto-renew.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from nutrilytics.models.subscription import WinBackOffer
from nutrilytics.utils.helpers import Clock, utc_now

logger = logging.getLogger(__name__)

WINBACK_DISCOUNT_PERCENT = 50
WINBACK_DURATION_MONTHS = 3
WINBACK_VALIDITY = timedelta(days=30)


class WinBackOfferManager:
    """Create, read and clear the per-user win-back offer."""

    def __init__(self, db: AsyncSession, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    async def create_offer(self, user_id: str) -> WinBackOffer:
        """Issue a fresh offer, replacing any previous one."""
        now = self.clock()
        offer = await self.db.get(WinBackOffer, user_id)
        if offer is None:
            offer = WinBackOffer(user_id=user_id)
            self.db.add(offer)

        offer.discount_percent = WINBACK_DISCOUNT_PERCENT
        offer.duration_months = WINBACK_DURATION_MONTHS
        offer.created_at = now
        offer.expires_at = now + WINBACK_VALIDITY
        await self.db.flush()

        logger.info("Win-back offer created for user %s, expires %s", user_id, offer.expires_at)
        return offer

    async def get_offer(self, user_id: str) -> Optional[WinBackOffer]:
        """Return the offer while it is still redeemable."""
        offer = await self.db.get(WinBackOffer, user_id)
        if offer is None or not offer.is_valid(self.clock()):
            return None
        return offer

    async def clear_offer(self, user_id: str) -> bool:
        """Delete the offer. Returns True if one existed."""
        offer = await self.db.get(WinBackOffer, user_id)
        if offer is None:
            return False
        await self.db.delete(offer)
        await self.db.flush()
        logger.info("Win-back offer cleared for user %s", user_id)
        return True
