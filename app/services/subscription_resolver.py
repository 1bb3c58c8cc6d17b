"""
Subscription Resolver
=====================

Answers "what is this user's current subscription?" across both billing
providers.

Precedence, first match wins:

1. **Direct ledger (stripe).** The newest ACTIVE/TRIALING stripe
   subscription of the user's member whose period has not ended. It
   carries exact period bounds, so it is authoritative when present.
2. **Member fallback (paykickstart).** An Active member with a
   PayKickstart customer id. PayKickstart does not report period ends,
   so ``current_period_end`` is None and ``cancel_at_period_end`` False.
3. **Free.**

Any error along the way resolves to Free. Entitlement fails closed.
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.metrics import RESOLVER_FALLBACKS
from app.core.tiers import MembershipLevel, canonical_tier_name, tier_level
from app.models.member import Member, MembershipStatus
from app.models.subscription import BillingProvider, ENTITLED_STATUSES, Subscription
from app.models.user import User
from app.utils.helpers import as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSubscription:
    """Provider-independent view of a user's subscription."""

    has_active_subscription: bool
    tier: str
    provider: Optional[str] = None
    subscription_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    # Set when the free answer stands in for a failed lookup
    degraded: bool = field(default=False, compare=False)

    @classmethod
    def free(cls) -> "ResolvedSubscription":
        return cls(has_active_subscription=False, tier="free")

    @classmethod
    def fallback(cls) -> "ResolvedSubscription":
        return cls(has_active_subscription=False, tier="free", degraded=True)

    @property
    def level(self) -> MembershipLevel:
        return tier_level(self.tier)

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_active_subscription": self.has_active_subscription,
            "tier": self.tier,
            "provider": self.provider,
            "subscription_id": self.subscription_id,
            "current_period_end": (
                self.current_period_end.isoformat()
                if self.current_period_end
                else None
            ),
            "cancel_at_period_end": self.cancel_at_period_end,
        }


class SubscriptionResolver:
    """Read-only; takes no locks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(
        self,
        user_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> ResolvedSubscription:
        """
        Resolve the subscription for ``user_id``.

        Never raises. ``now`` is injectable for tests.
        """
        try:
            return await self._resolve(user_id, now or utc_now())
        except Exception:
            logger.warning(
                "Subscription resolution failed for user %s, falling back to free",
                user_id,
                exc_info=True,
            )
            RESOLVER_FALLBACKS.inc()
            return ResolvedSubscription.fallback()

    async def _resolve(self, user_id: uuid.UUID, now: datetime) -> ResolvedSubscription:
        result = await self.db.execute(select(User).where(User.user_id == user_id))
        user = result.scalar_one_or_none()

        if user is None or user.member_id is None:
            return ResolvedSubscription.free()

        # ---- 1. Direct ledger ----
        direct = await self._latest_direct_subscription(user.member_id, now)
        if direct is not None:
            return ResolvedSubscription(
                has_active_subscription=True,
                tier=canonical_tier_name(direct.tier),
                provider=BillingProvider.STRIPE.value,
                subscription_id=direct.provider_subscription_id,
                current_period_end=as_utc(direct.current_period_end),
                cancel_at_period_end=direct.cancel_at_period_end,
            )

        # ---- 2. Member fallback ----
        result = await self.db.execute(
            select(Member).where(Member.member_id == user.member_id)
        )
        member = result.scalar_one_or_none()

        if (
            member is not None
            and member.membership_status == MembershipStatus.ACTIVE
            and member.paykickstart_customer_id
        ):
            authoritative = await self._authoritative_paykickstart_subscription(
                member.member_id
            )
            if authoritative is not None:
                tier = authoritative.tier
                subscription_id = authoritative.provider_subscription_id
            else:
                tier = member.membership_tier
                subscription_id = member.paykickstart_customer_id

            return ResolvedSubscription(
                has_active_subscription=True,
                tier=canonical_tier_name(tier),
                provider=BillingProvider.PAYKICKSTART.value,
                subscription_id=subscription_id,
                current_period_end=None,
                cancel_at_period_end=False,
            )

        # ---- 3. Free ----
        return ResolvedSubscription.free()

    async def _latest_direct_subscription(
        self,
        member_id: uuid.UUID,
        now: datetime,
    ) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .where(
                Subscription.member_id == member_id,
                Subscription.provider == BillingProvider.STRIPE,
                Subscription.status.in_(ENTITLED_STATUSES),
                Subscription.current_period_end > now,
            )
            .order_by(Subscription.current_period_end.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _authoritative_paykickstart_subscription(
        self,
        member_id: uuid.UUID,
    ) -> Optional[Subscription]:
        """Entitling subscription with the latest period end, unknown ends last."""
        stmt = (
            select(Subscription)
            .where(
                Subscription.member_id == member_id,
                Subscription.provider == BillingProvider.PAYKICKSTART,
                Subscription.status.in_(ENTITLED_STATUSES),
            )
            .order_by(
                Subscription.current_period_end.desc().nulls_last(),
                Subscription.updated_at.desc(),
            )
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
