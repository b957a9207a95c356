"""
RevenueCat Client Tests
=======================

Tests for product → tier mapping and live entitlement checks.
"""

import httpx
import pytest

from nutrilytics.core.errors import BillingProviderError
from nutrilytics.models.subscription import SubscriptionTier
from nutrilytics.services.revenuecat import RevenueCatClient, map_tier_from_product


@pytest.mark.parametrize(
    "product_id, tier",
    [
        ("nutrilytics_premium_yearly", SubscriptionTier.YEARLY),
        ("com.nutrilytics.Annual", SubscriptionTier.YEARLY),
        ("nutrilytics_lifetime", SubscriptionTier.LIFETIME),
        ("nutrilytics_premium_monthly", SubscriptionTier.MONTHLY),
        ("something_else", SubscriptionTier.MONTHLY),
        (None, SubscriptionTier.MONTHLY),
    ],
)
def test_map_tier_from_product(product_id, tier):
    assert map_tier_from_product(product_id) == tier


def _client(clock, handler) -> RevenueCatClient:
    return RevenueCatClient(
        api_key="rc-test-key",
        entitlement_id="premium",
        clock=clock,
        transport=httpx.MockTransport(handler),
    )


def _subscriber(expires_date):
    return {
        "subscriber": {
            "entitlements": {
                "premium": {"expires_date": expires_date, "product_identifier": "p"},
            }
        }
    }


class TestHasActiveEntitlement:

    @pytest.mark.asyncio
    async def test_not_configured_returns_none(self, clock):
        client = RevenueCatClient(api_key="", clock=clock)

        assert client.is_configured is False
        assert await client.has_active_entitlement("user-1") is None

    @pytest.mark.asyncio
    async def test_unexpired_entitlement_is_active(self, clock):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["path"] = request.url.path
            return httpx.Response(200, json=_subscriber("2026-04-10T12:00:00Z"))

        assert await _client(clock, handler).has_active_entitlement("user-1") is True
        assert seen == {"auth": "Bearer rc-test-key", "path": "/v1/subscribers/user-1"}

    @pytest.mark.asyncio
    async def test_expired_entitlement_is_inactive(self, clock):
        def handler(request):
            return httpx.Response(200, json=_subscriber("2026-03-01T00:00:00Z"))

        assert await _client(clock, handler).has_active_entitlement("user-1") is False

    @pytest.mark.asyncio
    async def test_entitlement_without_expiry_is_lifetime(self, clock):
        def handler(request):
            return httpx.Response(200, json=_subscriber(None))

        assert await _client(clock, handler).has_active_entitlement("user-1") is True

    @pytest.mark.asyncio
    async def test_missing_entitlement(self, clock):
        def handler(request):
            return httpx.Response(200, json={"subscriber": {"entitlements": {}}})

        assert await _client(clock, handler).has_active_entitlement("user-1") is False

    @pytest.mark.asyncio
    async def test_unknown_subscriber(self, clock):
        def handler(request):
            return httpx.Response(404, json={"message": "not found"})

        assert await _client(clock, handler).has_active_entitlement("user-1") is False

    @pytest.mark.asyncio
    async def test_server_error_raises(self, clock):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(BillingProviderError):
            await _client(clock, handler).has_active_entitlement("user-1")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, clock):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BillingProviderError):
            await _client(clock, handler).has_active_entitlement("user-1")
