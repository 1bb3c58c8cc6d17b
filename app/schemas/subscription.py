"""
Subscription Schemas
====================

Pydantic schemas for subscription status and content access endpoints.
"""

from datetime import datetime
from typing import Literal, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatusData(BaseModel):
    """Provider-independent subscription view."""

    has_active_subscription: bool = False
    tier: str = "free"
    provider: Optional[Literal["stripe", "paykickstart"]] = None
    subscription_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class StatusUser(BaseModel):
    user_id: uuid.UUID
    email: str


class SubscriptionStatusPayload(BaseModel):
    authenticated: bool = True
    user: Optional[StatusUser] = None
    subscription: SubscriptionStatusData = Field(default_factory=SubscriptionStatusData)


class SubscriptionStatusResponse(BaseModel):
    """Response for GET /subscription/status."""

    success: bool = True
    data: SubscriptionStatusPayload


class ActivityEntry(BaseModel):
    """One audit trail row."""

    model_config = ConfigDict(from_attributes=True)

    activity_id: uuid.UUID
    action: str
    entity: str
    entity_id: str
    details: Optional[dict] = None
    created_at: datetime


class ActivityListResponse(BaseModel):
    success: bool = True
    data: list[ActivityEntry]


# ─── Content Access ──────────────────────────────────────────────────────────


class ContentAccessRequest(BaseModel):
    """Access requirement attached to a content item."""

    is_premium: bool = False
    required_tier: Optional[Literal["collective", "insider"]] = None


class AccessDecisionData(BaseModel):
    allowed: bool
    reason: Literal[
        "public",
        "login_required",
        "subscription_required",
        "tier_required",
        "granted",
    ]
    current_tier: Optional[str] = None
    required_tier: Optional[str] = None
    upgrade_url: Optional[str] = None


class AccessDecisionResponse(BaseModel):
    success: bool = True
    data: AccessDecisionData


class MagazineAccessResponse(BaseModel):
    success: bool = True
    data: dict


class RouteAccessResponse(BaseModel):
    success: bool = True
    data: dict
