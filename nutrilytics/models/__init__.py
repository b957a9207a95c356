"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata for migrations.
"""

from nutrilytics.models.subscription import (
    Subscription,
    SubscriptionEventType,
    SubscriptionHistory,
    SubscriptionTier,
    WinBackOffer,
)
from nutrilytics.models.usage import UsageQuota

__all__ = [
    # Subscription
    "Subscription",
    "SubscriptionHistory",
    "SubscriptionTier",
    "SubscriptionEventType",
    "WinBackOffer",
    # Usage
    "UsageQuota",
]
