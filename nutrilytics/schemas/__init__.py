"""
Pydantic Schemas
================

Request/response schemas for API validation.
"""

from nutrilytics.schemas.common import ErrorDetail, ErrorResponse
from nutrilytics.schemas.subscription import (
    FeatureDecision,
    RevenueCatEventType,
    RevenueCatWebhookEvent,
    RevenueCatWebhookPayload,
    SubscriptionStatusView,
    UsageCounter,
    UsageQuotaView,
    WinBackOfferView,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "FeatureDecision",
    "RevenueCatEventType",
    "RevenueCatWebhookEvent",
    "RevenueCatWebhookPayload",
    "SubscriptionStatusView",
    "UsageCounter",
    "UsageQuotaView",
    "WinBackOfferView",
]
