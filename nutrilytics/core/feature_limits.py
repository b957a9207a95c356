"""
Feature Limits
==============

Free-tier quota policy: daily limits, counter columns and denial messages.
"""

from enum import Enum
from typing import Optional


class UsageKind(str, Enum):
    """Rate-limited actions tracked in the usage quota record."""
    BARCODE = "barcode"
    PHOTO = "photo"
    AI = "ai"


class Feature(str, Enum):
    """Features guarded by the access gate."""
    BARCODE_SCAN = "barcode_scan"
    PHOTO_SCAN = "photo_scan"
    AI_COACH = "ai_coach"
    MEAL_PLAN = "meal_plan"


# Daily allowance for users without premium access
FREE_TIER_LIMITS: dict[UsageKind, int] = {
    UsageKind.BARCODE: 5,
    UsageKind.PHOTO: 3,
    UsageKind.AI: 3,
}

# UsageQuota column holding each counter
USAGE_COUNTER_COLUMNS: dict[UsageKind, str] = {
    UsageKind.BARCODE: "barcode_scans_today",
    UsageKind.PHOTO: "photo_scans_today",
    UsageKind.AI: "ai_messages_today",
}

# Quota backing each gated feature; None means premium-only
FEATURE_USAGE_KIND: dict[Feature, Optional[UsageKind]] = {
    Feature.BARCODE_SCAN: UsageKind.BARCODE,
    Feature.PHOTO_SCAN: UsageKind.PHOTO,
    Feature.AI_COACH: UsageKind.AI,
    Feature.MEAL_PLAN: None,
}

_LIMIT_LABELS: dict[UsageKind, str] = {
    UsageKind.BARCODE: "barcode scan",
    UsageKind.PHOTO: "photo scan",
    UsageKind.AI: "AI message",
}

PREMIUM_ONLY_REASONS: dict[Feature, str] = {
    Feature.MEAL_PLAN: "Meal planning is a premium feature",
}


def get_limit(kind: UsageKind) -> int:
    """Free-tier daily limit for a usage kind."""
    return FREE_TIER_LIMITS[kind]


def limit_reached_reason(kind: UsageKind) -> str:
    """Human-readable denial shown by the app when a daily quota is used up."""
    return f"Daily {_LIMIT_LABELS[kind]} limit reached ({FREE_TIER_LIMITS[kind]}/day)"
