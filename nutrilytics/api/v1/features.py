"""
Features API Endpoints
======================

Handles feature access checks and daily usage tracking.
"""

from fastapi import APIRouter, Query

from nutrilytics.core.errors import QuotaExceededError
from nutrilytics.core.feature_limits import (
    Feature,
    UsageKind,
    get_limit,
    limit_reached_reason,
)
from nutrilytics.dependencies import AccessGate, CurrentUserId, Subscriptions
from nutrilytics.schemas.subscription import FeatureCheckResponse, UsageQuotaResponse

router = APIRouter()


@router.get(
    "/check",
    response_model=FeatureCheckResponse,
)
async def check_feature_access(
    user_id: CurrentUserId,
    gate: AccessGate,
    feature: Feature = Query(
        ...,
        description="Feature to check (barcode_scan, photo_scan, ai_coach, meal_plan)",
    ),
):
    """
    Check if the user may use a feature right now.

    Does not consume quota.
    """
    decision = await gate.can_use_feature(user_id, feature)
    return FeatureCheckResponse(
        data={
            "feature": feature.value,
            "allowed": decision.allowed,
            "reason": decision.reason,
        },
    )


@router.get(
    "/usage",
    response_model=UsageQuotaResponse,
)
async def get_usage(
    user_id: CurrentUserId,
    service: Subscriptions,
):
    """Get today's usage counters, limits and next reset time."""
    quota = await service.get_usage_quota(user_id)
    return UsageQuotaResponse(data=quota)


@router.post(
    "/usage/{kind}",
    response_model=FeatureCheckResponse,
)
async def record_usage(
    kind: UsageKind,
    user_id: CurrentUserId,
    gate: AccessGate,
):
    """
    Record one use of a rate-limited action.

    Returns 429 when the daily free-tier limit is already reached.
    """
    if not await gate.increment_usage(user_id, kind):
        raise QuotaExceededError(
            message=limit_reached_reason(kind),
            kind=kind.value,
            limit=get_limit(kind),
        )
    return FeatureCheckResponse(
        data={
            "kind": kind.value,
            "recorded": True,
        },
    )
