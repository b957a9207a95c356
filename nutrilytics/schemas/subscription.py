"""
Subscription Schemas
====================

Pydantic schemas for the RevenueCat webhook payload and the
subscription, quota and feature-access views returned to the app.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ─── RevenueCat Webhook Event Types ──────────────────────────────────────────


class RevenueCatEventType(str, Enum):
    """RevenueCat event types that mutate the subscription record."""

    INITIAL_PURCHASE = "INITIAL_PURCHASE"
    RENEWAL = "RENEWAL"
    CANCELLATION = "CANCELLATION"
    UNCANCELLATION = "UNCANCELLATION"
    NON_RENEWING_PURCHASE = "NON_RENEWING_PURCHASE"
    EXPIRATION = "EXPIRATION"
    BILLING_ISSUE = "BILLING_ISSUE"
    PRODUCT_CHANGE = "PRODUCT_CHANGE"


class RevenueCatPeriodType(str, Enum):
    """Period type of the purchased product."""

    TRIAL = "TRIAL"
    NORMAL = "NORMAL"
    INTRO = "INTRO"


class RevenueCatWebhookEvent(BaseModel):
    """
    Pydantic model for a RevenueCat webhook event.

    Matches the ``event`` object inside the webhook body:
    ``{ "api_version": "1.0", "event": { ... } }``

    ``type`` is kept as a plain string so event types we do not handle
    (TRANSFER, SUBSCRIBER_ALIAS, ...) still validate and get acknowledged.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(default=None, description="Unique event ID for idempotency")
    type: str = Field(min_length=1)
    app_user_id: str = Field(min_length=1, max_length=128)
    product_id: Optional[str] = None
    new_product_id: Optional[str] = None
    period_type: Optional[str] = None
    purchased_at_ms: Optional[int] = None
    expiration_at_ms: Optional[int] = None
    event_timestamp_ms: Optional[int] = None
    price: Optional[float] = None
    currency: Optional[str] = Field(default=None, max_length=3)
    is_trial_conversion: bool = False
    cancellation_reason: Optional[str] = None
    environment: Optional[str] = None
    store: Optional[str] = None

    @field_validator("type", "period_type")
    @classmethod
    def normalize_upper(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @field_validator("is_trial_conversion", mode="before")
    @classmethod
    def null_as_false(cls, v: Any) -> Any:
        return False if v is None else v

    @model_validator(mode="after")
    def check_required_for_type(self) -> "RevenueCatWebhookEvent":
        if self.type == RevenueCatEventType.INITIAL_PURCHASE.value:
            if self.purchased_at_ms is None:
                raise ValueError("INITIAL_PURCHASE requires purchased_at_ms")
            if not self.product_id:
                raise ValueError("INITIAL_PURCHASE requires product_id")
        return self

    @property
    def event_type(self) -> Optional[RevenueCatEventType]:
        """The handled event type, or None for types we only acknowledge."""
        try:
            return RevenueCatEventType(self.type)
        except ValueError:
            return None

    @property
    def is_trial_period(self) -> bool:
        return self.period_type == RevenueCatPeriodType.TRIAL.value


class RevenueCatWebhookPayload(BaseModel):
    """Webhook body envelope."""

    model_config = ConfigDict(extra="ignore")

    api_version: Optional[str] = None
    event: RevenueCatWebhookEvent


# ─── Feature Access ──────────────────────────────────────────────────────────


class FeatureDecision(BaseModel):
    """Outcome of a feature access check."""

    allowed: bool
    reason: Optional[str] = None


class UsageCounter(BaseModel):
    """Used/limit pair for one counter."""

    used: int = Field(ge=0)
    limit: int = Field(ge=0)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit


class UsageQuotaView(BaseModel):
    """Current daily usage with limits and next reset."""

    barcode_scans: UsageCounter
    photo_scans: UsageCounter
    ai_messages: UsageCounter
    resets_at: datetime


class SubscriptionStatusView(BaseModel):
    """Subscription summary consumed by the app."""

    is_active: bool
    tier: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_in_trial: bool = False
    trial_ends_at: Optional[datetime] = None
    days_remaining: int = 0
    is_cancelled: bool = False
    billing_issue: bool = False
    grace_period_ends_at: Optional[datetime] = None


class WinBackOfferView(BaseModel):
    """Active win-back discount offered after cancellation."""

    tier: str = "monthly"
    discount_percent: int
    duration_months: int
    expires_at: datetime


# ─── Request / Response Schemas ──────────────────────────────────────────────


class CancelRequest(BaseModel):
    """Request schema for subscription cancellation."""

    reason: Optional[str] = Field(default=None, max_length=100)


class SubscriptionStatusResponse(BaseModel):
    """Response schema for subscription status."""

    success: bool = True
    data: SubscriptionStatusView


class FeatureCheckResponse(BaseModel):
    """Response schema for feature access check."""

    success: bool = True
    data: dict[str, Any]


class UsageQuotaResponse(BaseModel):
    """Response schema for usage quota."""

    success: bool = True
    data: UsageQuotaView


class WinBackOfferResponse(BaseModel):
    """Response schema for the win-back offer."""

    success: bool = True
    data: Optional[WinBackOfferView] = None
