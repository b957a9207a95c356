"""
RevenueCat Service
==================

Integration with the RevenueCat REST API.

Handles:
- Subscriber info fetching
- Live entitlement checks used by the feature access gate
- Product id → subscription tier mapping
"""

import logging
from datetime import datetime
from typing import Optional

import httpx

from nutrilytics.config import settings
from nutrilytics.core.errors import BillingProviderError
from nutrilytics.models.subscription import SubscriptionTier
from nutrilytics.utils.helpers import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)


def map_tier_from_product(product_id: Optional[str]) -> SubscriptionTier:
    """
    Map a RevenueCat product id to a subscription tier.

    ``yearly``/``annual`` → yearly, ``lifetime`` → lifetime,
    anything else (including ``monthly``) → monthly.
    """
    pid = (product_id or "").lower()
    if "yearly" in pid or "annual" in pid:
        return SubscriptionTier.YEARLY
    if "lifetime" in pid:
        return SubscriptionTier.LIFETIME
    return SubscriptionTier.MONTHLY


class RevenueCatClient:
    """Client for RevenueCat subscriber lookups."""

    BASE_URL = "https://api.revenuecat.com/v1"

    def __init__(
        self,
        api_key: Optional[str] = None,
        entitlement_id: Optional[str] = None,
        clock: Clock = utc_now,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.REVENUECAT_API_KEY
        self.entitlement_id = entitlement_id or settings.REVENUECAT_ENTITLEMENT_ID
        self.clock = clock
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    # -------------------------------------------------------------------------
    # RevenueCat REST API
    # -------------------------------------------------------------------------

    def _get_headers(self) -> dict[str, str]:
        """Common headers for RevenueCat API calls."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def get_subscriber(self, subscriber_id: str) -> Optional[dict]:
        """
        Fetch subscriber information from RevenueCat.

        Args:
            subscriber_id: RevenueCat app user id (our user_id).

        Returns:
            Subscriber dict, or None when the API key is not configured
            or RevenueCat does not know the subscriber.

        Raises:
            BillingProviderError: on timeouts, transport errors and
                unexpected status codes.
        """
        if not self.is_configured:
            logger.debug("RevenueCat API key not configured, skipping subscriber fetch")
            return None

        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.get(
                    f"{self.BASE_URL}/subscribers/{subscriber_id}",
                    headers=self._get_headers(),
                    timeout=10.0,
                )
            except httpx.TimeoutException as e:
                logger.error("RevenueCat API timeout for subscriber %s", subscriber_id)
                raise BillingProviderError("RevenueCat request timed out") from e
            except httpx.HTTPError as e:
                logger.error("RevenueCat API error for subscriber %s: %s", subscriber_id, e)
                raise BillingProviderError(str(e)) from e

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            logger.error(
                "RevenueCat API returned status %d for subscriber %s: %s",
                response.status_code,
                subscriber_id,
                response.text[:200],
            )
            raise BillingProviderError(
                f"RevenueCat returned status {response.status_code}"
            )

        try:
            return response.json().get("subscriber")
        except ValueError as e:
            raise BillingProviderError("RevenueCat returned invalid JSON") from e

    async def has_active_entitlement(self, user_id: str) -> Optional[bool]:
        """
        Check the live premium entitlement for a user.

        Returns:
            True/False from RevenueCat, or None when the client is not
            configured and the caller should rely on local data.
        """
        if not self.is_configured:
            return None

        subscriber = await self.get_subscriber(user_id)
        if subscriber is None:
            return False

        entitlement = (subscriber.get("entitlements") or {}).get(self.entitlement_id)
        if not entitlement:
            return False

        expires = entitlement.get("expires_date")
        if expires is None:
            # Lifetime entitlements carry no expiry
            return True

        try:
            expires_at = ensure_utc(datetime.fromisoformat(expires.replace("Z", "+00:00")))
        except (AttributeError, ValueError) as e:
            raise BillingProviderError(f"Unparseable entitlement expiry: {expires!r}") from e

        return expires_at > self.clock()
