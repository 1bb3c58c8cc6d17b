"""
Content Access API Endpoints
============================

Entitlement checks for content-serving frontends.

All endpoints accept anonymous callers: free content is always open and
premium content is denied with a reason and an upgrade link.
"""

import logging

from fastapi import APIRouter, Query

from app.core.tiers import (
    TIER_INSIDER,
    canonical_tier_name,
    format_tier_name,
    get_upgrade_url,
    is_premium_route,
)
from app.dependencies import CurrentUserOptional, DBSession
from app.schemas.subscription import (
    AccessDecisionResponse,
    ContentAccessRequest,
    MagazineAccessResponse,
    RouteAccessResponse,
)
from app.services.entitlements import ContentAccess, EntitlementService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/check",
    response_model=AccessDecisionResponse,
)
async def check_content_access(
    request: ContentAccessRequest,
    current_user: CurrentUserOptional,
    db: DBSession,
):
    """Decide whether the caller may view content with this requirement."""
    decision = await EntitlementService(db).check_access(
        current_user,
        ContentAccess(
            is_premium=request.is_premium,
            required_tier=request.required_tier,
        ),
    )

    return {"success": True, "data": decision.to_dict()}


@router.get(
    "/magazine",
    response_model=MagazineAccessResponse,
)
async def check_magazine_access(
    current_user: CurrentUserOptional,
    db: DBSession,
):
    """Digital magazine gate (INSIDER only)."""
    allowed = await EntitlementService(db).can_access_magazine(current_user)
    required = canonical_tier_name(TIER_INSIDER)

    return {
        "success": True,
        "data": {
            "allowed": allowed,
            "required_tier": required,
            "required_tier_name": format_tier_name(required),
            "upgrade_url": None if allowed else get_upgrade_url(required),
        },
    }


@router.get(
    "/route",
    response_model=RouteAccessResponse,
)
async def check_route_access(
    current_user: CurrentUserOptional,
    db: DBSession,
    path: str = Query(..., min_length=1, max_length=2048),
):
    """
    Check a site path against the paywall.

    Premium paths require COLLECTIVE; everything else is public.
    """
    premium = is_premium_route(path)
    decision = await EntitlementService(db).check_access(
        current_user,
        ContentAccess(is_premium=premium),
    )

    return {
        "success": True,
        "data": {
            "path": path,
            "is_premium": premium,
            **decision.to_dict(),
        },
    }
