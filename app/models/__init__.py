"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata for migrations and relationships.
"""

from app.models.user import User, UserRole
from app.models.member import Member, MembershipStatus, DEFAULT_MEMBERSHIP_TIER
from app.models.subscription import (
    Subscription,
    SubscriptionStatus,
    BillingProvider,
    BillingCycle,
    ENTITLED_STATUSES,
)
from app.models.activity_log import ActivityLog, ActivityAction

__all__ = [
    # User
    "User",
    "UserRole",
    # Member
    "Member",
    "MembershipStatus",
    "DEFAULT_MEMBERSHIP_TIER",
    # Subscription
    "Subscription",
    "SubscriptionStatus",
    "BillingProvider",
    "BillingCycle",
    "ENTITLED_STATUSES",
    # Activity
    "ActivityLog",
    "ActivityAction",
]
