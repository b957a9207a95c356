"""
Common Dependencies
===================

Shared dependencies used across the application.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from nutrilytics.core.errors import AuthenticationError, ErrorCodes, ForbiddenError
from nutrilytics.core.feature_limits import Feature
from nutrilytics.db.session import get_db
from nutrilytics.services.access_gate import FeatureAccessGate
from nutrilytics.services.subscription_service import SubscriptionService
from nutrilytics.services.webhook_processor import WebhookEventProcessor
from nutrilytics.utils.helpers import Clock, utc_now

logger = logging.getLogger(__name__)

# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]

_MAX_USER_ID_LENGTH = 128


def get_clock() -> Clock:
    """Time source for request-scoped services."""
    return utc_now


AppClock = Annotated[Clock, Depends(get_clock)]


# =============================================================================
# Caller identity
# =============================================================================

async def get_current_user_id(
    request: Request,
    x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
) -> str:
    """
    Resolve the calling user.

    Authentication happens upstream; the gateway forwards the verified
    user id (the RevenueCat ``app_user_id``) in ``X-User-Id``.
    """
    user_id = (x_user_id or "").strip()
    if not user_id or len(user_id) > _MAX_USER_ID_LENGTH:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_MISSING_USER,
            message="Missing or invalid X-User-Id header",
        )
    # Picked up by the New Relic middleware
    request.state.user_id = user_id
    return user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


# =============================================================================
# Services
# =============================================================================

def get_access_gate(db: DBSession, clock: AppClock) -> FeatureAccessGate:
    return FeatureAccessGate(db, clock=clock)


def get_subscription_service(db: DBSession, clock: AppClock) -> SubscriptionService:
    return SubscriptionService(db, clock=clock)


def get_webhook_processor(db: DBSession, clock: AppClock) -> WebhookEventProcessor:
    return WebhookEventProcessor(db, clock=clock)


AccessGate = Annotated[FeatureAccessGate, Depends(get_access_gate)]
Subscriptions = Annotated[SubscriptionService, Depends(get_subscription_service)]
WebhookProcessor = Annotated[WebhookEventProcessor, Depends(get_webhook_processor)]


# =============================================================================
# Feature gating
# =============================================================================

class FeatureGate:
    """
    Feature gate for protecting endpoints behind premium access or quota.

    Usage:
        @router.post("/meal-plans")
        async def create_meal_plan(
            user_id: CurrentUserId,
            _: None = Depends(FeatureGate(Feature.MEAL_PLAN)),
        ):
            ...
    """

    def __init__(self, feature: Feature):
        self.feature = feature

    async def __call__(self, user_id: CurrentUserId, gate: AccessGate) -> None:
        """Raise 403 with the gate's reason when access is denied."""
        decision = await gate.can_use_feature(user_id, self.feature)
        if not decision.allowed:
            logger.info("Feature %s denied for user %s: %s", self.feature.value, user_id, decision.reason)
            raise ForbiddenError(
                message=decision.reason or "Access denied",
                feature=self.feature.value,
            )
