"""
Webhook Event Processor Tests
=============================

Tests for applying RevenueCat lifecycle events to subscription records:
- Purchase, renewal, cancellation and expiry flows
- Replaying events
- Billing issue grace period
- Out-of-order and unknown events
- Webhook authorization
"""

import logging
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from nutrilytics.config import settings
from nutrilytics.models.subscription import (
    Subscription,
    SubscriptionEventType,
    SubscriptionTier,
)
from nutrilytics.schemas.subscription import RevenueCatEventType, RevenueCatWebhookEvent
from nutrilytics.services.subscription_store import SubscriptionStore
from nutrilytics.services.webhook_processor import (
    _EVENT_HANDLERS,
    WebhookEventProcessor,
    verify_webhook_authorization,
)
from nutrilytics.services.winback import WinBackOfferManager


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _persisted_state(subscription: Subscription) -> dict:
    return {
        column.key: getattr(subscription, column.key)
        for column in Subscription.__table__.columns
        if column.key not in ("created_at", "updated_at")
    }


@pytest.fixture
def processor(db, clock) -> WebhookEventProcessor:
    return WebhookEventProcessor(db, clock=clock)


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------

class TestInitialPurchase:

    @pytest.mark.asyncio
    async def test_trial_purchase_opens_trial_window(self, processor, make_event, clock):
        """A trial-period purchase sets the trial window and grants access."""
        t = clock()
        event = make_event(
            "INITIAL_PURCHASE",
            period_type="TRIAL",
            purchased_at_ms=_ms(t),
            expiration_at_ms=_ms(t + timedelta(days=14)),
        )

        subscription = await processor.handle_event(event)

        assert subscription.tier == SubscriptionTier.MONTHLY
        assert subscription.trial_started_at == t
        assert subscription.trial_ends_at == t + timedelta(days=14)
        assert subscription.subscription_ends_at is None
        assert subscription.is_active is True

    @pytest.mark.asyncio
    async def test_normal_purchase_sets_billing_window(self, processor, make_event, clock):
        t = clock()
        event = make_event(
            "INITIAL_PURCHASE",
            product_id="nutrilytics_premium_annual",
            expiration_at_ms=_ms(t + timedelta(days=365)),
        )

        subscription = await processor.handle_event(event)

        assert subscription.tier == SubscriptionTier.YEARLY
        assert subscription.subscription_started_at == t
        assert subscription.subscription_ends_at == t + timedelta(days=365)
        assert subscription.last_payment_date == t
        assert subscription.revenuecat_customer_id == "user-1"
        assert subscription.is_active is True

    @pytest.mark.asyncio
    async def test_replaying_purchase_leaves_record_unchanged(self, processor, make_event, db):
        """Applying the same purchase twice equals applying it once."""
        event = make_event("INITIAL_PURCHASE", id="evt-replay")

        subscription = await processor.handle_event(event)
        await db.refresh(subscription)
        first = _persisted_state(subscription)

        subscription = await processor.handle_event(event)
        await db.refresh(subscription)
        second = _persisted_state(subscription)

        assert first == second

    @pytest.mark.asyncio
    async def test_purchase_clears_previous_expiry(self, processor, make_event):
        await processor.handle_event(make_event("INITIAL_PURCHASE"))
        expired = await processor.handle_event(make_event("EXPIRATION"))
        assert expired.is_active is False

        subscription = await processor.handle_event(make_event("INITIAL_PURCHASE"))

        assert subscription.expired_at is None
        assert subscription.is_active is True

    def test_initial_purchase_requires_purchase_time(self, make_event):
        with pytest.raises(ValidationError):
            make_event("INITIAL_PURCHASE", purchased_at_ms=None)


class TestNonRenewingPurchase:

    @pytest.mark.asyncio
    async def test_grants_lifetime_access(self, processor, make_event, clock):
        event = make_event("NON_RENEWING_PURCHASE", product_id="nutrilytics_lifetime")

        subscription = await processor.handle_event(event)

        assert subscription.tier == SubscriptionTier.LIFETIME
        assert subscription.subscription_ends_at is None
        assert subscription.is_active is True

        clock.advance(days=3650)
        assert subscription.compute_is_active(clock()) is True


# ---------------------------------------------------------------------------
# Renewal / product change
# ---------------------------------------------------------------------------

class TestRenewal:

    @pytest.mark.asyncio
    async def test_renewal_extends_and_clears_billing_issue(self, processor, make_event, clock):
        await processor.handle_event(make_event("INITIAL_PURCHASE"))
        await processor.handle_event(make_event("BILLING_ISSUE"))

        new_end = clock() + timedelta(days=60)
        subscription = await processor.handle_event(
            make_event("RENEWAL", expiration_at_ms=_ms(new_end))
        )

        assert subscription.subscription_ends_at == new_end
        assert subscription.billing_issue is False
        assert subscription.billing_issue_detected_at is None
        assert subscription.grace_period_ends_at is None
        assert subscription.is_cancelled is False
        assert subscription.is_active is True

    @pytest.mark.asyncio
    async def test_trial_conversion_stamps_subscription_start(self, processor, make_event, clock):
        await processor.handle_event(make_event("INITIAL_PURCHASE", period_type="TRIAL"))
        clock.advance(days=14)

        subscription = await processor.handle_event(
            make_event("RENEWAL", is_trial_conversion=True)
        )

        assert subscription.subscription_started_at == clock()

    @pytest.mark.asyncio
    async def test_product_change_updates_tier(self, processor, make_event, clock):
        await processor.handle_event(make_event("INITIAL_PURCHASE"))
        new_end = clock() + timedelta(days=365)

        subscription = await processor.handle_event(
            make_event(
                "PRODUCT_CHANGE",
                new_product_id="nutrilytics_premium_yearly",
                expiration_at_ms=_ms(new_end),
            )
        )

        assert subscription.tier == SubscriptionTier.YEARLY
        assert subscription.product_identifier == "nutrilytics_premium_yearly"
        assert subscription.subscription_ends_at == new_end


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancellation_keeps_access_and_issues_offer(
        self, processor, make_event, clock, db
    ):
        t = clock()
        ends_at = t + timedelta(days=20)
        await processor.handle_event(
            make_event("INITIAL_PURCHASE", expiration_at_ms=_ms(ends_at))
        )

        subscription = await processor.handle_event(
            make_event(
                "CANCELLATION",
                expiration_at_ms=_ms(ends_at),
                cancellation_reason="too_expensive",
            )
        )

        assert subscription.is_cancelled is True
        assert subscription.cancelled_at == t
        assert subscription.cancellation_reason == "too_expensive"
        assert subscription.subscription_ends_at == ends_at
        assert subscription.is_active is True

        offer = await WinBackOfferManager(db, clock).get_offer("user-1")
        assert offer.discount_percent == 50
        assert offer.duration_months == 3
        assert offer.expires_at == t + timedelta(days=30)

        # Access lasts until the paid period ends
        clock.set(ends_at - timedelta(seconds=1))
        assert subscription.compute_is_active(clock()) is True
        clock.set(ends_at)
        assert subscription.compute_is_active(clock()) is False

    @pytest.mark.asyncio
    async def test_cancellation_reason_defaults_to_unknown(self, processor, make_event):
        await processor.handle_event(make_event("INITIAL_PURCHASE"))

        subscription = await processor.handle_event(
            make_event("CANCELLATION", expiration_at_ms=None)
        )

        assert subscription.cancellation_reason == "unknown"

    @pytest.mark.asyncio
    async def test_uncancellation_removes_offer(self, processor, make_event, clock, db):
        await processor.handle_event(make_event("INITIAL_PURCHASE"))
        await processor.handle_event(make_event("CANCELLATION"))

        subscription = await processor.handle_event(make_event("UNCANCELLATION"))

        assert subscription.is_cancelled is False
        assert subscription.cancelled_at is None
        assert subscription.cancellation_reason is None
        assert await WinBackOfferManager(db, clock).get_offer("user-1") is None


# ---------------------------------------------------------------------------
# Expiration / billing issues
# ---------------------------------------------------------------------------

class TestExpirationAndBillingIssue:

    @pytest.mark.asyncio
    async def test_expiration_ends_access(self, processor, make_event, clock):
        await processor.handle_event(make_event("INITIAL_PURCHASE"))

        subscription = await processor.handle_event(make_event("EXPIRATION"))

        assert subscription.expired_at == clock()
        assert subscription.is_active is False

    @pytest.mark.asyncio
    async def test_billing_issue_opens_three_day_grace_period(self, processor, make_event, clock):
        t = clock()
        await processor.handle_event(
            make_event(
                "INITIAL_PURCHASE",
                expiration_at_ms=_ms(t + timedelta(hours=1)),
            )
        )
        clock.advance(hours=2)

        subscription = await processor.handle_event(make_event("BILLING_ISSUE"))

        assert subscription.billing_issue is True
        assert subscription.billing_issue_detected_at == clock()
        assert subscription.grace_period_ends_at == clock() + timedelta(days=3)
        # Paid period is over but the grace window keeps access
        assert subscription.is_active is True

        clock.advance(days=3)
        assert subscription.compute_is_active(clock()) is False


# ---------------------------------------------------------------------------
# Ordering, history, unknown types
# ---------------------------------------------------------------------------

class TestEventBookkeeping:

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_ignored(self, processor, make_event, db):
        event = make_event("TRANSFER")

        assert event.event_type is None
        assert await processor.handle_event(event) is None
        assert await SubscriptionStore(db).get("user-1") is None

    @pytest.mark.asyncio
    async def test_out_of_order_event_is_logged_and_applied(
        self, processor, make_event, clock, caplog
    ):
        t = clock()
        await processor.handle_event(make_event("INITIAL_PURCHASE", event_timestamp_ms=_ms(t)))

        late = make_event("EXPIRATION", event_timestamp_ms=_ms(t - timedelta(hours=1)))
        with caplog.at_level(logging.WARNING, logger="nutrilytics.services.webhook_processor"):
            subscription = await processor.handle_event(late)

        assert "Out-of-order" in caplog.text
        assert subscription.expired_at is not None
        assert subscription.last_event_at == t

    @pytest.mark.asyncio
    async def test_every_applied_event_is_recorded(self, processor, make_event, db):
        await processor.handle_event(make_event("INITIAL_PURCHASE"))
        await processor.handle_event(make_event("CANCELLATION"))

        history = await SubscriptionStore(db).list_history("user-1")

        assert [row.event_type for row in history] == [
            SubscriptionEventType.INITIAL_PURCHASE,
            SubscriptionEventType.CANCELLATION,
        ]
        assert history[0].previous_tier == SubscriptionTier.NONE
        assert history[0].was_active is False
        assert history[0].is_active is True
        assert history[0].raw_event["type"] == "INITIAL_PURCHASE"

    def test_every_event_type_has_a_handler(self):
        assert set(_EVENT_HANDLERS) == set(RevenueCatEventType)

    def test_event_type_is_case_insensitive(self):
        event = RevenueCatWebhookEvent(type="renewal", app_user_id="u")
        assert event.event_type == RevenueCatEventType.RENEWAL


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class TestWebhookAuthorization:

    def test_accepts_matching_bearer_token(self):
        with patch.object(settings, "REVENUECAT_WEBHOOK_SECRET", "s3cret"):
            assert verify_webhook_authorization("Bearer s3cret") is True

    def test_rejects_wrong_or_missing_token(self):
        with patch.object(settings, "REVENUECAT_WEBHOOK_SECRET", "s3cret"):
            assert verify_webhook_authorization("Bearer nope") is False
            assert verify_webhook_authorization("s3cret") is False
            assert verify_webhook_authorization("") is False
            assert verify_webhook_authorization(None) is False

    def test_fails_closed_without_secret(self):
        with patch.object(settings, "REVENUECAT_WEBHOOK_SECRET", ""), \
                patch.object(settings, "REVENUECAT_WEBHOOK_ALLOW_UNAUTHENTICATED", False):
            assert verify_webhook_authorization("Bearer anything") is False

    def test_explicit_opt_in_allows_unauthenticated(self):
        with patch.object(settings, "REVENUECAT_WEBHOOK_SECRET", ""), \
                patch.object(settings, "REVENUECAT_WEBHOOK_ALLOW_UNAUTHENTICATED", True):
            assert verify_webhook_authorization(None) is True
