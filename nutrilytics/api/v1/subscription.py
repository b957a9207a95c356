"""
Subscription API Endpoints
==========================

Subscription status, free trial, cancellation and win-back offer.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body

from nutrilytics.dependencies import CurrentUserId, Subscriptions
from nutrilytics.schemas.subscription import (
    CancelRequest,
    SubscriptionStatusResponse,
    WinBackOfferResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/status",
    response_model=SubscriptionStatusResponse,
)
async def get_subscription_status(
    user_id: CurrentUserId,
    service: Subscriptions,
):
    """
    Get current subscription status.

    Returns tier, expiry, trial window and days remaining.
    """
    status_view = await service.get_subscription_status(user_id)
    return SubscriptionStatusResponse(data=status_view)


@router.post(
    "/trial",
    response_model=SubscriptionStatusResponse,
)
async def start_trial(
    user_id: CurrentUserId,
    service: Subscriptions,
):
    """
    Start the free trial.

    Fails with 409 when the user has already had a trial.
    """
    await service.start_trial(user_id)
    status_view = await service.get_subscription_status(user_id)
    return SubscriptionStatusResponse(data=status_view)


@router.post(
    "/cancel",
    response_model=SubscriptionStatusResponse,
)
async def cancel_subscription(
    user_id: CurrentUserId,
    service: Subscriptions,
    request: Optional[CancelRequest] = Body(default=None),
):
    """
    Cancel auto-renewal.

    Access continues until the end of the current period and a win-back
    offer is issued.
    """
    reason = request.reason if request else None
    await service.cancel(user_id, reason)
    status_view = await service.get_subscription_status(user_id)
    return SubscriptionStatusResponse(data=status_view)


@router.get(
    "/winback",
    response_model=WinBackOfferResponse,
)
async def get_winback_offer(
    user_id: CurrentUserId,
    service: Subscriptions,
):
    """Get the active win-back offer, or ``data: null`` when there is none."""
    offer = await service.get_winback_offer(user_id)
    return WinBackOfferResponse(data=offer)
