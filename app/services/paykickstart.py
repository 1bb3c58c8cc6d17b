"""
PayKickstart Service
====================

Reconciles PayKickstart webhook events into local Subscription and Member
state.

Handles:
- Event type classification (all historical spellings)
- Provider status mapping
- The five subscription transitions (created, updated, cancelled,
  payment_failed, payment_succeeded)
- Member status derivation and the audit trail

Every transition is keyed by the provider subscription id and sets
fields unconditionally, so redelivered events converge. Only ``created``
may insert a subscription; a redelivered ``created`` only fills fields the
row is still missing.
"""

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Optional
import uuid

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import MalformedEventError
from app.core.tiers import map_product_tier
from app.models.activity_log import ActivityAction
from app.models.member import Member, MembershipStatus
from app.models.subscription import (
    BillingCycle,
    BillingProvider,
    ENTITLED_STATUSES,
    Subscription,
    SubscriptionStatus,
)
from app.models.user import User
from app.schemas.webhook import PayKickstartEvent, PayKickstartEventData
from app.services.activity_log import ActivityLogService
from app.services.auth_service import AuthService
from app.utils.helpers import utc_now

logger = logging.getLogger(__name__)

PROVIDER = BillingProvider.PAYKICKSTART.value


# =============================================================================
# Event / Status Tables
# =============================================================================

class EventKind(str, Enum):
    """Logical webhook transitions."""
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_SUCCEEDED = "payment_succeeded"


EVENT_KIND_SYNONYMS: dict[str, EventKind] = {
    "subscription_created": EventKind.CREATED,
    "subscription.created": EventKind.CREATED,
    "subscription_updated": EventKind.UPDATED,
    "subscription.updated": EventKind.UPDATED,
    "subscription_cancelled": EventKind.CANCELLED,
    "subscription_canceled": EventKind.CANCELLED,
    "subscription.cancelled": EventKind.CANCELLED,
    "subscription.canceled": EventKind.CANCELLED,
    "payment_failed": EventKind.PAYMENT_FAILED,
    "payment.failed": EventKind.PAYMENT_FAILED,
    "payment_succeeded": EventKind.PAYMENT_SUCCEEDED,
    "payment.succeeded": EventKind.PAYMENT_SUCCEEDED,
}


# Provider status string → local status. Anything else is INACTIVE.
STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "cancelled": SubscriptionStatus.CANCELED,
    "canceled": SubscriptionStatus.CANCELED,
    "expired": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.INACTIVE,
}

DEFAULT_EVENT_STATUS = "active"


def classify_event(event_type: Optional[str]) -> Optional[EventKind]:
    """Map a provider event type to its transition, None when unknown."""
    if not event_type:
        return None
    return EVENT_KIND_SYNONYMS.get(event_type.strip().lower())


def map_subscription_status(status: Optional[str]) -> SubscriptionStatus:
    """Map a provider status string. Unknown or empty → INACTIVE."""
    return STATUS_MAP.get((status or "").strip().lower(), SubscriptionStatus.INACTIVE)


def membership_status_for(status: SubscriptionStatus) -> MembershipStatus:
    if status in ENTITLED_STATUSES:
        return MembershipStatus.ACTIVE
    return MembershipStatus.INACTIVE


# =============================================================================
# Results
# =============================================================================

class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    MISSING_ENTITY = "missing_entity"
    CONFLICT = "conflict"
    IGNORED = "ignored"


@dataclass
class ReconciliationResult:
    """What one delivery did. Every outcome is acknowledged with 200."""

    kind: Optional[EventKind]
    outcome: ReconciliationOutcome
    event_type: Optional[str] = None
    provider_subscription_id: Optional[str] = None
    user_id: Optional[uuid.UUID] = None

    @property
    def applied(self) -> bool:
        return self.outcome == ReconciliationOutcome.APPLIED

    @property
    def kind_label(self) -> str:
        return self.kind.value if self.kind else "unknown"


# =============================================================================
# Service
# =============================================================================

class PayKickstartService:
    """Service for PayKickstart webhook reconciliation."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.auth = AuthService(db)
        self.activity = ActivityLogService(db)

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def process_event(self, payload: Any) -> ReconciliationResult:
        """
        Apply one parsed webhook body.

        Raises:
            MalformedEventError: body is not a usable event.
            SQLAlchemyError: store failure; caller rolls back and answers 5xx.
        """
        if not isinstance(payload, dict):
            raise MalformedEventError("Webhook body must be a JSON object")

        try:
            envelope = PayKickstartEvent.model_validate(payload)
        except PydanticValidationError as e:
            raise MalformedEventError(f"Invalid webhook envelope: {e.errors()[0]['msg']}")

        event_type = envelope.kind_name
        kind = classify_event(event_type)

        if kind is None:
            logger.info("PayKickstart event %r ignored (unknown type)", event_type)
            return ReconciliationResult(
                kind=None,
                outcome=ReconciliationOutcome.IGNORED,
                event_type=event_type,
            )

        try:
            data = PayKickstartEventData.model_validate(envelope.payload())
        except PydanticValidationError as e:
            first = e.errors()[0]
            raise MalformedEventError(
                f"Invalid event data: {first['msg']}",
                field=".".join(str(loc) for loc in first.get("loc", ())) or None,
            )

        if not data.subscription_id:
            raise MalformedEventError("Event has no subscription id", field="subscription_id")

        handlers = {
            EventKind.CREATED: self._handle_created,
            EventKind.UPDATED: self._handle_updated,
            EventKind.CANCELLED: self._handle_cancelled,
            EventKind.PAYMENT_FAILED: self._handle_payment_failed,
            EventKind.PAYMENT_SUCCEEDED: self._handle_payment_succeeded,
        }
        result = await handlers[kind](data)
        result.event_type = event_type

        logger.info(
            "PayKickstart %s: subscription=%s outcome=%s",
            kind.value,
            data.subscription_id,
            result.outcome.value,
        )
        return result

    # -------------------------------------------------------------------------
    # Lookup Helpers
    # -------------------------------------------------------------------------

    async def get_subscription(self, provider_subscription_id: str) -> Optional[Subscription]:
        """The PayKickstart ledger row for ``provider_subscription_id``."""
        stmt = select(Subscription).where(
            Subscription.provider == BillingProvider.PAYKICKSTART,
            Subscription.provider_subscription_id == provider_subscription_id,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _foreign_provider(self, provider_subscription_id: str) -> Optional[BillingProvider]:
        """Provider of a row from another billing system holding this id, if any."""
        stmt = select(Subscription.provider).where(
            Subscription.provider != BillingProvider.PAYKICKSTART,
            Subscription.provider_subscription_id == provider_subscription_id,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _linked_user_id(self, member_id: uuid.UUID) -> Optional[uuid.UUID]:
        stmt = select(User.user_id).where(User.member_id == member_id).limit(1)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    def _conflict(
        self,
        kind: EventKind,
        provider_subscription_id: str,
        owner: BillingProvider,
    ) -> ReconciliationResult:
        logger.warning(
            "PayKickstart %s for subscription %s owned by %s, ignoring",
            kind.value,
            provider_subscription_id,
            owner.value,
        )
        return ReconciliationResult(
            kind=kind,
            outcome=ReconciliationOutcome.CONFLICT,
            provider_subscription_id=provider_subscription_id,
        )

    async def _missing(self, kind: EventKind, provider_subscription_id: str) -> ReconciliationResult:
        owner = await self._foreign_provider(provider_subscription_id)
        if owner is not None:
            return self._conflict(kind, provider_subscription_id, owner)

        logger.warning(
            "PayKickstart %s for unknown subscription %s, ignoring",
            kind.value,
            provider_subscription_id,
        )
        return ReconciliationResult(
            kind=kind,
            outcome=ReconciliationOutcome.MISSING_ENTITY,
            provider_subscription_id=provider_subscription_id,
        )

    async def _sync_member_status(self, member_id: uuid.UUID) -> Optional[Member]:
        """
        Recompute ``membership_status`` from all of the member's subscriptions.

        Active iff at least one subscription is ACTIVE or TRIALING.
        """
        await self.db.flush()

        stmt = select(func.count()).select_from(Subscription).where(
            Subscription.member_id == member_id,
            Subscription.status.in_(ENTITLED_STATUSES),
        )
        entitled = (await self.db.execute(stmt)).scalar_one()

        member = await self.auth.get_member_by_id(member_id)
        if member is None:
            return None

        new_status = MembershipStatus.ACTIVE if entitled else MembershipStatus.INACTIVE
        if member.membership_status != new_status:
            logger.info(
                "Member %s status %s -> %s",
                member_id,
                member.membership_status.value,
                new_status.value,
            )
            member.membership_status = new_status
            await self.db.flush()

        return member

    async def _audit(
        self,
        action: ActivityAction,
        subscription: Subscription,
        user_id: Optional[uuid.UUID],
        details: dict[str, Any],
    ) -> None:
        await self.activity.record(
            action=action,
            entity_id=str(subscription.subscription_id),
            user_id=user_id,
            details={
                "provider": PROVIDER,
                "subscription_id": subscription.provider_subscription_id,
                **details,
            },
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def _handle_created(self, data: PayKickstartEventData) -> ReconciliationResult:
        """
        Materialize the payer and insert the subscription.

        A replay finds the row already there and only fills fields it is
        missing; status, tier and flags belong to the later transitions.
        """
        if not data.customer_email:
            raise MalformedEventError(
                "subscription_created event has no customer email",
                field="customer_email",
            )

        owner = await self._foreign_provider(data.subscription_id)
        if owner is not None:
            return self._conflict(EventKind.CREATED, data.subscription_id, owner)

        status = map_subscription_status(data.status or DEFAULT_EVENT_STATUS)
        tier = map_product_tier(data.product_name)
        billing_cycle = data.normalized_billing_cycle or BillingCycle.MONTHLY.value

        user, _ = await self.auth.get_or_create_billing_user(
            data.customer_email,
            data.customer_name,
        )
        member, _ = await self.auth.get_or_create_member(
            user,
            data.customer_email,
            full_name=data.customer_name,
            customer_id=data.customer_id,
            status=membership_status_for(status),
        )

        subscription = await self.get_subscription(data.subscription_id)

        if subscription is None:
            subscription = Subscription(
                member_id=member.member_id,
                provider=BillingProvider.PAYKICKSTART,
                provider_subscription_id=data.subscription_id,
                provider_customer_id=data.customer_id,
                status=status,
                tier=tier,
                billing_cycle=billing_cycle,
                current_period_start=data.current_period_start or utc_now(),
                current_period_end=data.current_period_end,
                cancel_at_period_end=False,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(subscription)
                    await self.db.flush()
            except IntegrityError:
                # A concurrent delivery of the same event inserted first
                subscription = await self.get_subscription(data.subscription_id)
                if subscription is None:
                    raise
                logger.info(
                    "Subscription %s inserted concurrently, treating as replay",
                    data.subscription_id,
                )
                return await self._replay_created(subscription, data, user.user_id)
        else:
            return await self._replay_created(subscription, data, user.user_id)

        await self._sync_member_status(subscription.member_id)

        await self._audit(
            ActivityAction.SUBSCRIPTION_CREATED,
            subscription,
            user.user_id,
            {"tier": tier, "status": status.value},
        )

        return ReconciliationResult(
            kind=EventKind.CREATED,
            outcome=ReconciliationOutcome.APPLIED,
            provider_subscription_id=data.subscription_id,
            user_id=user.user_id,
        )

    async def _replay_created(
        self,
        subscription: Subscription,
        data: PayKickstartEventData,
        user_id: uuid.UUID,
    ) -> ReconciliationResult:
        """Redelivered ``created``: fill gaps, never move the state back."""
        filled = []
        if subscription.provider_customer_id is None and data.customer_id:
            subscription.provider_customer_id = data.customer_id
            filled.append("provider_customer_id")
        if subscription.current_period_start is None and data.current_period_start is not None:
            subscription.current_period_start = data.current_period_start
            filled.append("current_period_start")
        if subscription.current_period_end is None and data.current_period_end is not None:
            subscription.current_period_end = data.current_period_end
            filled.append("current_period_end")

        if not filled:
            return ReconciliationResult(
                kind=EventKind.CREATED,
                outcome=ReconciliationOutcome.NOOP,
                provider_subscription_id=data.subscription_id,
                user_id=user_id,
            )

        await self.db.flush()
        await self._audit(
            ActivityAction.SUBSCRIPTION_UPDATED,
            subscription,
            user_id,
            {"filled": filled},
        )

        return ReconciliationResult(
            kind=EventKind.CREATED,
            outcome=ReconciliationOutcome.APPLIED,
            provider_subscription_id=data.subscription_id,
            user_id=user_id,
        )

    async def _handle_updated(self, data: PayKickstartEventData) -> ReconciliationResult:
        subscription = await self.get_subscription(data.subscription_id)
        if subscription is None:
            return await self._missing(EventKind.UPDATED, data.subscription_id)

        status = map_subscription_status(data.status or DEFAULT_EVENT_STATUS)
        subscription.status = status

        if data.product_name:
            subscription.tier = map_product_tier(data.product_name)
        if data.current_period_start is not None:
            subscription.current_period_start = data.current_period_start
        if data.current_period_end is not None:
            subscription.current_period_end = data.current_period_end
        if data.normalized_billing_cycle:
            subscription.billing_cycle = data.normalized_billing_cycle
        if data.cancel_at_period_end is not None:
            subscription.cancel_at_period_end = data.cancel_at_period_end

        await self._sync_member_status(subscription.member_id)
        user_id = await self._linked_user_id(subscription.member_id)

        await self._audit(
            ActivityAction.SUBSCRIPTION_UPDATED,
            subscription,
            user_id,
            {"new_status": status.value, "tier": subscription.tier},
        )

        return ReconciliationResult(
            kind=EventKind.UPDATED,
            outcome=ReconciliationOutcome.APPLIED,
            provider_subscription_id=data.subscription_id,
            user_id=user_id,
        )

    async def _handle_cancelled(self, data: PayKickstartEventData) -> ReconciliationResult:
        """
        Immediate cancellation ends access now. Deferred cancellation only
        flags the subscription; access continues until a later event
        changes the status.
        """
        subscription = await self.get_subscription(data.subscription_id)
        if subscription is None:
            return await self._missing(EventKind.CANCELLED, data.subscription_id)

        cancel_at_period_end = (
            data.cancel_at_period_end if data.cancel_at_period_end is not None else True
        )
        subscription.cancel_at_period_end = cancel_at_period_end
        if not cancel_at_period_end:
            subscription.status = SubscriptionStatus.CANCELED

        await self._sync_member_status(subscription.member_id)
        user_id = await self._linked_user_id(subscription.member_id)

        await self._audit(
            ActivityAction.SUBSCRIPTION_CANCELLED,
            subscription,
            user_id,
            {"cancel_at_period_end": cancel_at_period_end},
        )

        return ReconciliationResult(
            kind=EventKind.CANCELLED,
            outcome=ReconciliationOutcome.APPLIED,
            provider_subscription_id=data.subscription_id,
            user_id=user_id,
        )

    async def _handle_payment_failed(self, data: PayKickstartEventData) -> ReconciliationResult:
        subscription = await self.get_subscription(data.subscription_id)
        if subscription is None:
            return await self._missing(EventKind.PAYMENT_FAILED, data.subscription_id)

        subscription.status = SubscriptionStatus.PAST_DUE

        await self._sync_member_status(subscription.member_id)
        user_id = await self._linked_user_id(subscription.member_id)

        await self._audit(
            ActivityAction.PAYMENT_FAILED,
            subscription,
            user_id,
            {"reason": data.failure_message or "Payment failed"},
        )

        return ReconciliationResult(
            kind=EventKind.PAYMENT_FAILED,
            outcome=ReconciliationOutcome.APPLIED,
            provider_subscription_id=data.subscription_id,
            user_id=user_id,
        )

    async def _handle_payment_succeeded(self, data: PayKickstartEventData) -> ReconciliationResult:
        """Only recovers PAST_DUE subscriptions; anything else is a no-op."""
        subscription = await self.get_subscription(data.subscription_id)
        if subscription is None:
            return await self._missing(EventKind.PAYMENT_SUCCEEDED, data.subscription_id)

        if subscription.status != SubscriptionStatus.PAST_DUE:
            return ReconciliationResult(
                kind=EventKind.PAYMENT_SUCCEEDED,
                outcome=ReconciliationOutcome.NOOP,
                provider_subscription_id=data.subscription_id,
            )

        subscription.status = SubscriptionStatus.ACTIVE

        await self._sync_member_status(subscription.member_id)
        user_id = await self._linked_user_id(subscription.member_id)

        await self._audit(
            ActivityAction.PAYMENT_SUCCEEDED,
            subscription,
            user_id,
            {},
        )

        return ReconciliationResult(
            kind=EventKind.PAYMENT_SUCCEEDED,
            outcome=ReconciliationOutcome.APPLIED,
            provider_subscription_id=data.subscription_id,
            user_id=user_id,
        )
