"""
Entitlement Service
===================

Allow/deny decisions for a (user, content) pair.

Rules:
- Non-premium content is always allowed, with or without a user, and
  never touches the resolver.
- Premium content needs a signed-in user with an active subscription
  whose tier meets the requirement (COLLECTIVE when unspecified).
- A resolver failure counts as "no active subscription".

``can_access_magazine`` is a single hard-coded policy gate: the digital
magazine needs INSIDER regardless of what the content itself declares.
It is not a general override mechanism.
"""

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.metrics import ENTITLEMENT_DECISIONS
from app.core.tiers import (
    TIER_COLLECTIVE,
    MembershipLevel,
    canonical_tier_name,
    get_upgrade_url,
    meets_tier,
    tier_level,
)
from app.models.user import User
from app.services.subscription_resolver import (
    ResolvedSubscription,
    SubscriptionResolver,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentAccess:
    """Access requirement attached to a content item."""

    is_premium: bool = False
    required_tier: Optional[str] = None  # "collective" | "insider"


class AccessReason(str, Enum):
    PUBLIC = "public"
    LOGIN_REQUIRED = "login_required"
    SUBSCRIPTION_REQUIRED = "subscription_required"
    TIER_REQUIRED = "tier_required"
    GRANTED = "granted"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an access check, with enough context to render a paywall."""

    allowed: bool
    reason: AccessReason
    current_tier: Optional[str] = None
    required_tier: Optional[str] = None
    upgrade_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "current_tier": self.current_tier,
            "required_tier": self.required_tier,
            "upgrade_url": self.upgrade_url,
        }


class EntitlementService:
    """Evaluates content requirements against resolved subscriptions."""

    def __init__(
        self,
        db: AsyncSession,
        resolver: Optional[SubscriptionResolver] = None,
    ):
        self.db = db
        self.resolver = resolver or SubscriptionResolver(db)

    async def _resolve(self, user: User) -> ResolvedSubscription:
        # The resolver already fails closed; this also covers injected ones
        try:
            return await self.resolver.resolve(user.user_id)
        except Exception:
            logger.warning(
                "Entitlement resolution failed for user %s, denying premium access",
                getattr(user, "user_id", None),
                exc_info=True,
            )
            return ResolvedSubscription.free()

    async def check_access(
        self,
        user: Optional[User],
        requirement: ContentAccess,
    ) -> AccessDecision:
        """Full decision for a piece of content."""
        decision = await self._decide(user, requirement)
        ENTITLEMENT_DECISIONS.labels(decision.reason.value).inc()
        return decision

    async def _decide(
        self,
        user: Optional[User],
        requirement: ContentAccess,
    ) -> AccessDecision:
        if not requirement.is_premium:
            return AccessDecision(allowed=True, reason=AccessReason.PUBLIC)

        required = canonical_tier_name(requirement.required_tier or TIER_COLLECTIVE)
        upgrade_url = get_upgrade_url(required)

        if user is None:
            return AccessDecision(
                allowed=False,
                reason=AccessReason.LOGIN_REQUIRED,
                required_tier=required,
                upgrade_url=upgrade_url,
            )

        resolved = await self._resolve(user)

        if not resolved.has_active_subscription:
            return AccessDecision(
                allowed=False,
                reason=AccessReason.SUBSCRIPTION_REQUIRED,
                current_tier=resolved.tier,
                required_tier=required,
                upgrade_url=upgrade_url,
            )

        if not meets_tier(resolved.tier, required):
            return AccessDecision(
                allowed=False,
                reason=AccessReason.TIER_REQUIRED,
                current_tier=resolved.tier,
                required_tier=required,
                upgrade_url=upgrade_url,
            )

        return AccessDecision(
            allowed=True,
            reason=AccessReason.GRANTED,
            current_tier=resolved.tier,
            required_tier=required,
        )

    async def can_access(
        self,
        user: Optional[User],
        requirement: ContentAccess,
    ) -> bool:
        decision = await self.check_access(user, requirement)
        return decision.allowed

    async def can_access_magazine(self, user: Optional[User]) -> bool:
        """Digital magazine gate: INSIDER only."""
        if user is None:
            return False

        resolved = await self._resolve(user)
        return (
            resolved.has_active_subscription
            and tier_level(resolved.tier) >= MembershipLevel.INSIDER
        )
