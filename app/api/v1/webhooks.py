"""
Webhooks API Endpoints
======================

Handles webhooks from external billing providers (PayKickstart).

Authentication:
    PayKickstart signs the raw request body with HMAC-SHA256 using the
    shared secret and sends the hex digest in ``X-PayKickstart-Signature``
    (header name configurable). The body is verified byte-for-byte before
    it is parsed.

    Without a configured secret, deliveries are accepted unverified outside
    production (logged as a warning and flagged with ``"verified": false``
    in the response) and rejected in production.

Idempotency:
    Every transition is keyed by the provider subscription id, so
    redelivered events converge on the same state.
"""

import json
import logging

from fastapi import APIRouter, Request, status

from app.config import settings
from app.core.errors import (
    AppException,
    ErrorCodes,
    MalformedEventError,
    WebhookSignatureError,
)
from app.core.metrics import WEBHOOK_EVENTS, WEBHOOK_SIGNATURE_FAILURES
from app.core.security import verify_webhook_signature
from app.dependencies import DBSession
from app.schemas.common import ErrorResponse
from app.services.cache import CacheInvalidator
from app.services.paykickstart import PROVIDER, PayKickstartService

logger = logging.getLogger(__name__)

router = APIRouter()


def _verify_delivery(body: bytes, signature: str | None) -> bool:
    """
    Check the delivery signature.

    Returns:
        True when verified, False when verification was skipped (no secret
        outside production).

    Raises:
        WebhookSignatureError: bad signature, or no secret in production.
    """
    secret = settings.PAYKICKSTART_WEBHOOK_SECRET

    if not secret:
        if settings.is_production:
            WEBHOOK_SIGNATURE_FAILURES.labels(PROVIDER).inc()
            logger.error("PAYKICKSTART_WEBHOOK_SECRET not configured, rejecting webhook")
            raise WebhookSignatureError("Webhook secret not configured")

        logger.warning(
            "PAYKICKSTART_WEBHOOK_SECRET not configured: accepting UNVERIFIED "
            "webhook delivery (environment=%s)",
            settings.ENVIRONMENT,
        )
        return False

    if not verify_webhook_signature(body, signature, secret):
        WEBHOOK_SIGNATURE_FAILURES.labels(PROVIDER).inc()
        logger.warning("Rejected PayKickstart webhook with invalid signature")
        raise WebhookSignatureError()

    return True


@router.post(
    "/paykickstart",
    responses={
        400: {"model": ErrorResponse, "description": "Malformed event"},
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        500: {"model": ErrorResponse, "description": "Processing failed, retry"},
    },
)
async def paykickstart_webhook(
    request: Request,
    db: DBSession,
):
    """
    Handle PayKickstart webhook events.

    Events handled (all historical spellings):
    - subscription_created
    - subscription_updated
    - subscription_cancelled
    - payment_failed
    - payment_succeeded

    Unknown types and events for unknown subscriptions are acknowledged
    with 200 and ignored. Processing failures return 500 so PayKickstart
    retries the delivery.
    """
    # ── Verify signature over the raw bytes ──────────────────────────────
    body = await request.body()
    verified = _verify_delivery(
        body,
        request.headers.get(settings.PAYKICKSTART_SIGNATURE_HEADER),
    )

    # ── Parse payload ─────────────────────────────────────────────────────
    try:
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error("Invalid PayKickstart webhook payload: %s", e)
        WEBHOOK_EVENTS.labels(PROVIDER, "unknown", "malformed").inc()
        raise MalformedEventError("Invalid JSON payload")

    # ── Process event ─────────────────────────────────────────────────────
    service = PayKickstartService(db)
    try:
        result = await service.process_event(payload)
        await db.commit()
    except AppException as e:
        await db.rollback()
        if isinstance(e, MalformedEventError):
            logger.warning("Malformed PayKickstart event: %s", e.detail)
            WEBHOOK_EVENTS.labels(PROVIDER, "unknown", "malformed").inc()
        raise
    except Exception:
        logger.exception("PayKickstart webhook processing error")
        await db.rollback()
        WEBHOOK_EVENTS.labels(PROVIDER, "unknown", "error").inc()
        # Return 500 so PayKickstart will retry
        raise AppException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code=ErrorCodes.WEBHOOK_PROCESSING_FAILED,
            message="Error processing webhook",
        )

    WEBHOOK_EVENTS.labels(PROVIDER, result.kind_label, result.outcome.value).inc()

    # Invalidate caches after the commit so readers never re-cache stale state
    if result.applied and result.user_id is not None:
        await CacheInvalidator.on_subscription_change(str(result.user_id))

    response = {"received": True}
    if not verified:
        response["verified"] = False
    return response
