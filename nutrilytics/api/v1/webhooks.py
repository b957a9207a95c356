"""
Webhooks API Endpoints
======================

Handles webhooks from RevenueCat.

Authentication:
    RevenueCat sends ``Authorization: Bearer <token>`` as configured in its
    dashboard. We compare it against REVENUECAT_WEBHOOK_SECRET.

Idempotency:
    Each RevenueCat event has a unique ``id``. We store processed event IDs
    in Redis (with TTL) so redeliveries are acknowledged without being
    applied twice.
"""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Header, Request, status
from pydantic import ValidationError as PydanticValidationError

from nutrilytics.core.errors import (
    AppException,
    AuthenticationError,
    ErrorCodes,
    ValidationError,
)
from nutrilytics.dependencies import DBSession, WebhookProcessor
from nutrilytics.schemas.subscription import RevenueCatWebhookPayload
from nutrilytics.services.cache import CacheKeys, CacheManager
from nutrilytics.services.webhook_processor import verify_webhook_authorization

logger = logging.getLogger(__name__)

router = APIRouter()


async def _is_event_processed(event_id: str) -> bool:
    """Check if a webhook event has already been processed."""
    return await CacheManager.exists(CacheKeys.webhook_event(event_id))


async def _mark_event_processed(event_id: str) -> None:
    """Mark a webhook event as processed in Redis."""
    await CacheManager.set(CacheKeys.webhook_event(event_id), 1, ttl=CacheManager.TTL_WEEK)


@router.post("/revenuecat")
async def revenuecat_webhook(
    request: Request,
    db: DBSession,
    processor: WebhookProcessor,
    authorization: Annotated[str, Header(alias="Authorization")] = "",
):
    """
    Handle RevenueCat webhook events.

    Events handled:
    - INITIAL_PURCHASE
    - RENEWAL
    - CANCELLATION
    - UNCANCELLATION
    - NON_RENEWING_PURCHASE
    - EXPIRATION
    - BILLING_ISSUE
    - PRODUCT_CHANGE

    Other types (TRANSFER, SUBSCRIBER_ALIAS, ...) are acknowledged as
    ignored. Processing errors return 500 so RevenueCat retries.
    """
    # ── Verify authorization ──────────────────────────────────────────────
    if not verify_webhook_authorization(authorization):
        logger.warning("Unauthorized RevenueCat webhook attempt")
        raise AuthenticationError(
            code=ErrorCodes.WEBHOOK_UNAUTHORIZED,
            message="Invalid webhook authorization",
        )

    # ── Parse payload ─────────────────────────────────────────────────────
    try:
        body = await request.body()
        payload = RevenueCatWebhookPayload.model_validate(json.loads(body.decode("utf-8")))
    except (json.JSONDecodeError, UnicodeDecodeError, PydanticValidationError) as e:
        logger.error("Invalid webhook payload: %s", e)
        raise ValidationError(
            message="Invalid webhook payload",
            code=ErrorCodes.WEBHOOK_INVALID_PAYLOAD,
        )

    event = payload.event
    logger.info(
        "Webhook received: type=%s user=%s event_id=%s",
        event.type,
        event.app_user_id,
        event.id,
    )

    if event.event_type is None:
        logger.info("Ignoring unhandled webhook type %s", event.type)
        return {"received": True, "ignored": True}

    # ── Idempotency check ─────────────────────────────────────────────────
    if event.id and await _is_event_processed(event.id):
        logger.info("Duplicate webhook event %s, skipping", event.id)
        return {"received": True, "duplicate": True}

    # ── Process event ─────────────────────────────────────────────────────
    try:
        subscription = await processor.handle_event(event)
        await db.commit()
    except Exception as e:
        logger.exception(
            "Webhook processing error: type=%s user=%s event_id=%s",
            event.type,
            event.app_user_id,
            event.id,
        )
        await db.rollback()
        raise AppException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code=ErrorCodes.WEBHOOK_PROCESSING_FAILED,
            message="Error processing webhook",
        ) from e

    # Mark event as processed (after successful commit)
    if event.id:
        await _mark_event_processed(event.id)
    if subscription is not None:
        await processor.refresh_premium_cache(subscription)

    return {"received": True}
