"""
Member Model
============

CRM-style billing profile tied to the affiliate-checkout provider.
"""

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import Enum as SQLEnum, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.subscription import Subscription
    from app.models.user import User


class MembershipStatus(str, Enum):
    """Member-level billing status."""
    ACTIVE = "Active"
    INACTIVE = "Inactive"


# Tier placeholder given to members materialized from a first billing event
DEFAULT_MEMBERSHIP_TIER = "Customer"


class Member(Base, TimestampMixin):
    """
    Member model.

    One row per paying email. ``membership_status`` is derived from the
    member's subscriptions by the reconciliation service and must never
    be set independently of them.
    """

    __tablename__ = "members"

    # Primary Key
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    first_name: Mapped[str] = mapped_column(
        String(255),
        default="",
        nullable=False,
    )
    last_name: Mapped[str] = mapped_column(
        String(255),
        default="",
        nullable=False,
    )

    # Membership
    membership_tier: Mapped[str] = mapped_column(
        String(100),
        default=DEFAULT_MEMBERSHIP_TIER,
        nullable=False,
    )
    membership_status: Mapped[MembershipStatus] = mapped_column(
        SQLEnum(MembershipStatus, values_callable=lambda e: [m.value for m in e]),
        default=MembershipStatus.INACTIVE,
        nullable=False,
    )

    # Spend tracking
    total_spent: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False,
    )
    lifetime_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False,
    )

    # PayKickstart customer reference
    paykickstart_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    # Relationships
    user: Mapped[Optional["User"]] = relationship(
        "User",
        back_populates="member",
        uselist=False,
        lazy="raise",
    )
    subscriptions: Mapped[list["Subscription"]] = relationship(
        "Subscription",
        back_populates="member",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<Member(member_id={self.member_id}, email={self.email}, status={self.membership_status})>"

    @property
    def is_active(self) -> bool:
        """Check if the member currently holds an active membership."""
        return self.membership_status == MembershipStatus.ACTIVE
