"""
Webhook Event Processor
=======================

Applies RevenueCat lifecycle events to the local subscription record.

Each handled event type maps to one handler in ``_EVENT_HANDLERS``.
Handlers only touch billing windows and flags; the ``is_active``
snapshot is recomputed afterwards, a history row is appended and the
premium status cache is refreshed.

Events may arrive out of order. An event older than the last applied
one is logged but still applied.
"""

import hmac
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from nutrilytics.config import settings
from nutrilytics.models.subscription import (
    Subscription,
    SubscriptionEventType,
    SubscriptionTier,
)
from nutrilytics.schemas.subscription import RevenueCatEventType, RevenueCatWebhookEvent
from nutrilytics.services.premium_cache import PremiumStatusCache
from nutrilytics.services.revenuecat import map_tier_from_product
from nutrilytics.services.subscription_store import SubscriptionStore
from nutrilytics.services.winback import WinBackOfferManager
from nutrilytics.utils.helpers import Clock, from_millis, utc_now

logger = logging.getLogger(__name__)

GRACE_PERIOD = timedelta(days=3)
DEFAULT_CANCELLATION_REASON = "unknown"


def verify_webhook_authorization(authorization_header: Optional[str]) -> bool:
    """
    Verify the RevenueCat ``Authorization`` header.

    RevenueCat sends ``Bearer <secret>`` as configured in its dashboard.
    Without a configured secret every request is rejected unless
    ``REVENUECAT_WEBHOOK_ALLOW_UNAUTHENTICATED`` is set.
    """
    secret = settings.REVENUECAT_WEBHOOK_SECRET
    if not secret:
        if settings.webhook_auth_disabled:
            logger.warning(
                "REVENUECAT_WEBHOOK_SECRET not configured, accepting unauthenticated webhook"
            )
            return True
        logger.error("REVENUECAT_WEBHOOK_SECRET not configured, rejecting webhook")
        return False

    expected = f"Bearer {secret}"
    return hmac.compare_digest(
        (authorization_header or "").encode("utf-8"),
        expected.encode("utf-8"),
    )


class WebhookEventProcessor:
    """Service applying RevenueCat events to subscription records."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        premium_cache: Optional[PremiumStatusCache] = None,
    ):
        self.db = db
        self.clock = clock
        self.store = SubscriptionStore(db)
        self.winback = WinBackOfferManager(db, clock)
        self.premium_cache = premium_cache or PremiumStatusCache(clock)

    async def handle_event(self, event: RevenueCatWebhookEvent) -> Optional[Subscription]:
        """
        Apply one webhook event.

        Returns:
            The updated Subscription, or None for event types that are
            acknowledged without changes.
        """
        event_type = event.event_type
        if event_type is None:
            logger.info(
                "Webhook %s (no-op): app_user_id=%s",
                event.type,
                event.app_user_id,
            )
            return None

        now = self.clock()
        subscription = await self.store.get_or_create(event.app_user_id)

        event_at = from_millis(event.event_timestamp_ms)
        if (
            event_at is not None
            and subscription.last_event_at is not None
            and event_at < subscription.last_event_at
        ):
            logger.warning(
                "Out-of-order webhook %s for user %s: event at %s, last applied %s",
                event_type.value,
                event.app_user_id,
                event_at,
                subscription.last_event_at,
            )

        previous_tier = subscription.tier
        was_active = subscription.is_active

        handler = _EVENT_HANDLERS[event_type]
        await handler(self, subscription, event, now)

        if event.id:
            subscription.last_event_id = event.id
        if event_at is not None and (
            subscription.last_event_at is None or event_at > subscription.last_event_at
        ):
            subscription.last_event_at = event_at

        subscription.refresh_active(now)
        await self.store.add_history(
            subscription,
            SubscriptionEventType[event_type.name],
            previous_tier=previous_tier,
            was_active=was_active,
            event_id=event.id,
            price=event.price,
            currency=event.currency,
            raw_event=event.model_dump(mode="json"),
        )
        await self.db.flush()

        logger.info(
            "Webhook %s applied: user=%s tier=%s active=%s",
            event_type.value,
            subscription.user_id,
            subscription.tier.value,
            subscription.is_active,
        )
        return subscription

    async def refresh_premium_cache(self, subscription: Subscription) -> None:
        """Store the post-event entitlement in the premium status cache."""
        await self.premium_cache.store(subscription.user_id, subscription.is_active)

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    @staticmethod
    def _record_payment(
        subscription: Subscription,
        event: RevenueCatWebhookEvent,
        paid_at: Optional[datetime],
    ) -> None:
        subscription.revenuecat_customer_id = event.app_user_id
        if event.product_id:
            subscription.product_identifier = event.product_id
        if event.price is not None:
            subscription.last_payment_amount = event.price
        if event.currency:
            subscription.last_payment_currency = event.currency
        subscription.last_payment_date = paid_at

    async def _on_initial_purchase(
        self,
        subscription: Subscription,
        event: RevenueCatWebhookEvent,
        now: datetime,
    ) -> None:
        purchased_at = from_millis(event.purchased_at_ms)
        expires_at = from_millis(event.expiration_at_ms)

        subscription.tier = map_tier_from_product(event.product_id)
        if event.is_trial_period:
            subscription.trial_started_at = purchased_at
            subscription.trial_ends_at = expires_at
        else:
            subscription.subscription_started_at = purchased_at
            subscription.subscription_ends_at = expires_at

        subscription.is_cancelled = False
        subscription.cancelled_at = None
        subscription.cancellation_reason = None
        subscription.expired_at = None
        self._record_payment(subscription, event, purchased_at)

    async def _on_renewal(
        self,
        subscription: Subscription,
        event: RevenueCatWebhookEvent,
        now: datetime,
    ) -> None:
        if event.product_id:
            subscription.tier = map_tier_from_product(event.product_id)

        expires_at = from_millis(event.expiration_at_ms)
        if expires_at is not None:
            subscription.subscription_ends_at = expires_at
        if event.is_trial_conversion:
            subscription.subscription_started_at = now

        subscription.billing_issue = False
        subscription.billing_issue_detected_at = None
        subscription.grace_period_ends_at = None
        subscription.is_cancelled = False
        subscription.expired_at = None
        self._record_payment(subscription, event, from_millis(event.purchased_at_ms) or now)

    async def _on_cancellation(
        self,
        subscription: Subscription,
        event: RevenueCatWebhookEvent,
        now: datetime,
    ) -> None:
        subscription.is_cancelled = True
        subscription.cancelled_at = now
        subscription.cancellation_reason = (
            event.cancellation_reason or DEFAULT_CANCELLATION_REASON
        )

        # Access continues until the end of the paid period
        expires_at = from_millis(event.expiration_at_ms)
        if expires_at is not None:
            subscription.subscription_ends_at = expires_at

        await self.winback.create_offer(subscription.user_id)

    async def _on_uncancellation(
        self,
        subscription: Subscription,
        event: RevenueCatWebhookEvent,
        now: datetime,
    ) -> None:
        subscription.is_cancelled = False
        subscription.cancelled_at = None
        subscription.cancellation_reason = None
        await self.winback.clear_offer(subscription.user_id)

    async def _on_non_renewing_purchase(
        self,
        subscription: Subscription,
        event: RevenueCatWebhookEvent,
        now: datetime,
    ) -> None:
        purchased_at = from_millis(event.purchased_at_ms) or now
        subscription.tier = SubscriptionTier.LIFETIME
        subscription.subscription_started_at = purchased_at
        subscription.subscription_ends_at = None
        subscription.expired_at = None
        self._record_payment(subscription, event, purchased_at)

    async def _on_expiration(
        self,
        subscription: Subscription,
        event: RevenueCatWebhookEvent,
        now: datetime,
    ) -> None:
        subscription.expired_at = now

    async def _on_billing_issue(
        self,
        subscription: Subscription,
        event: RevenueCatWebhookEvent,
        now: datetime,
    ) -> None:
        subscription.billing_issue = True
        subscription.billing_issue_detected_at = now
        subscription.grace_period_ends_at = now + GRACE_PERIOD
        logger.warning(
            "Billing issue for user %s, grace period until %s",
            subscription.user_id,
            subscription.grace_period_ends_at,
        )

    async def _on_product_change(
        self,
        subscription: Subscription,
        event: RevenueCatWebhookEvent,
        now: datetime,
    ) -> None:
        new_product = event.new_product_id or event.product_id
        subscription.tier = map_tier_from_product(new_product)
        if new_product:
            subscription.product_identifier = new_product

        expires_at = from_millis(event.expiration_at_ms)
        if expires_at is not None:
            subscription.subscription_ends_at = expires_at
        subscription.expired_at = None


EventHandler = Callable[
    [WebhookEventProcessor, Subscription, RevenueCatWebhookEvent, datetime],
    Awaitable[None],
]

_EVENT_HANDLERS: dict[RevenueCatEventType, EventHandler] = {
    RevenueCatEventType.INITIAL_PURCHASE: WebhookEventProcessor._on_initial_purchase,
    RevenueCatEventType.RENEWAL: WebhookEventProcessor._on_renewal,
    RevenueCatEventType.CANCELLATION: WebhookEventProcessor._on_cancellation,
    RevenueCatEventType.UNCANCELLATION: WebhookEventProcessor._on_uncancellation,
    RevenueCatEventType.NON_RENEWING_PURCHASE: WebhookEventProcessor._on_non_renewing_purchase,
    RevenueCatEventType.EXPIRATION: WebhookEventProcessor._on_expiration,
    RevenueCatEventType.BILLING_ISSUE: WebhookEventProcessor._on_billing_issue,
    RevenueCatEventType.PRODUCT_CHANGE: WebhookEventProcessor._on_product_change,
}

_unhandled = set(RevenueCatEventType) - set(_EVENT_HANDLERS)
if _unhandled:
    raise RuntimeError(
        f"No webhook handler for: {sorted(t.value for t in _unhandled)}"
    )
