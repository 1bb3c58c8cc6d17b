"""
Subscription API Endpoints
==========================

Read-only subscription status for the signed-in user, and their
subscription activity trail.
"""

import logging

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.core.errors import ErrorCodes
from app.dependencies import CurrentUser, CurrentUserOptional, DBSession
from app.schemas.subscription import (
    ActivityEntry,
    ActivityListResponse,
    SubscriptionStatusResponse,
)
from app.services.activity_log import ActivityLogService
from app.services.cache import CacheKeys, CacheManager
from app.services.subscription_resolver import ResolvedSubscription, SubscriptionResolver

logger = logging.getLogger(__name__)

router = APIRouter()


def _unauthenticated_response() -> JSONResponse:
    """401 that still carries a usable free-tier payload."""
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={
            "success": False,
            "data": {
                "authenticated": False,
                "user": None,
                "subscription": ResolvedSubscription.free().to_dict(),
            },
            "error": {
                "code": ErrorCodes.AUTH_NOT_AUTHENTICATED,
                "message": "Not authenticated",
            },
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.get(
    "/status",
    response_model=SubscriptionStatusResponse,
    responses={401: {"description": "Not signed in; body carries the free-tier default"}},
)
async def get_subscription_status(
    current_user: CurrentUserOptional,
    db: DBSession,
):
    """
    Get the caller's resolved subscription.

    Cached per user in Redis; webhook reconciliation invalidates the entry
    after every applied transition.
    """
    if current_user is None:
        return _unauthenticated_response()

    cache_key = CacheKeys.subscription_status(str(current_user.user_id))
    cached = await CacheManager.get(cache_key)
    if cached is not None:
        return cached

    resolved = await SubscriptionResolver(db).resolve(current_user.user_id)

    response = {
        "success": True,
        "data": {
            "authenticated": True,
            "user": {
                "user_id": str(current_user.user_id),
                "email": current_user.email,
            },
            "subscription": resolved.to_dict(),
        },
    }

    # A fallback answer is served but not cached
    if not resolved.degraded:
        await CacheManager.set(
            cache_key,
            response,
            ttl=settings.SUBSCRIPTION_STATUS_CACHE_TTL,
        )

    return response


@router.get(
    "/activity",
    response_model=ActivityListResponse,
)
async def get_subscription_activity(
    current_user: CurrentUser,
    db: DBSession,
    limit: int = Query(default=50, ge=1, le=200),
):
    """Recent subscription activity for the caller, newest first."""
    entries = await ActivityLogService(db).list_for_user(current_user.user_id, limit=limit)

    return {
        "success": True,
        "data": [
            ActivityEntry(
                activity_id=entry.activity_id,
                action=entry.action.value,
                entity=entry.entity,
                entity_id=entry.entity_id,
                details=entry.details,
                created_at=entry.created_at,
            )
            for entry in entries
        ],
    }
