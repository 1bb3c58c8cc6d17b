"""
Subscription Models
===================

SQLAlchemy models for the subscription ledger shared by both billing
providers.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.member import Member


class SubscriptionStatus(str, Enum):
    """Subscription status values."""
    ACTIVE = "ACTIVE"
    TRIALING = "TRIALING"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    INACTIVE = "INACTIVE"


# Statuses that grant access
ENTITLED_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class BillingProvider(str, Enum):
    """External billing systems."""
    STRIPE = "stripe"
    PAYKICKSTART = "paykickstart"


class BillingCycle(str, Enum):
    """Billing intervals."""
    MONTHLY = "monthly"
    ANNUAL = "annual"


class Subscription(Base, TimestampMixin):
    """
    Subscription model.

    One row per external subscription. ``provider_subscription_id`` is the
    idempotency key for webhook reconciliation: it is globally unique and
    every later event for the same id updates this row.
    """

    __tablename__ = "subscriptions"

    # Primary Key
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Foreign Key
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("members.member_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Provider identity
    provider: Mapped[BillingProvider] = mapped_column(
        SQLEnum(BillingProvider, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    provider_subscription_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    provider_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    # Subscription details
    status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(SubscriptionStatus),
        default=SubscriptionStatus.INACTIVE,
        nullable=False,
    )
    tier: Mapped[str] = mapped_column(
        String(255),
        default="FREE",
        nullable=False,
    )
    billing_cycle: Mapped[str] = mapped_column(
        String(20),
        default=BillingCycle.MONTHLY.value,
        nullable=False,
    )
    current_period_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,  # PayKickstart does not always report it
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Relationships
    member: Mapped["Member"] = relationship(
        "Member",
        back_populates="subscriptions",
        lazy="raise",
    )

    # Indexes
    __table_args__ = (
        Index("idx_subscription_member_status", "member_id", "status"),
        Index("idx_subscription_status_period_end", "status", "current_period_end"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(provider_subscription_id={self.provider_subscription_id}, "
            f"tier={self.tier}, status={self.status})>"
        )

    @property
    def is_active(self) -> bool:
        """Check if subscription currently grants access."""
        return self.status in ENTITLED_STATUSES
