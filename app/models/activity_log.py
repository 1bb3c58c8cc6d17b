"""
Activity Log Model
==================

Append-only audit trail of reconciliation transitions.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.utils.helpers import utc_now


class ActivityAction(str, Enum):
    """Actions recorded in the audit trail."""
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"


class ActivityLog(Base):
    """
    Activity log entry.

    Rows are inserted once and never updated or deleted.
    """

    __tablename__ = "activity_logs"

    # Primary Key
    activity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.user_id", ondelete="SET NULL"),
        nullable=True,
    )
    action: Mapped[ActivityAction] = mapped_column(
        SQLEnum(ActivityAction),
        nullable=False,
    )
    entity: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    entity_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    details: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
    )

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    # Indexes
    __table_args__ = (
        Index("idx_activity_user_created", "user_id", "created_at"),
        Index("idx_activity_entity", "entity", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<ActivityLog(action={self.action}, entity_id={self.entity_id})>"
