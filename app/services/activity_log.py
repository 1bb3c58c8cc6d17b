"""
Activity Log Service
====================

Append-only audit trail for subscription transitions.

Writes are best-effort: each insert runs in its own SAVEPOINT so a failed
audit row is rolled back alone and never takes the transition it
documents down with it.
"""

import logging
from typing import Any, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_log import ActivityAction, ActivityLog

logger = logging.getLogger(__name__)

SUBSCRIPTION_ENTITY = "subscription"


class ActivityLogService:
    """Writes and lists audit entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        action: ActivityAction,
        entity_id: str,
        user_id: Optional[uuid.UUID] = None,
        details: Optional[dict[str, Any]] = None,
        entity: str = SUBSCRIPTION_ENTITY,
    ) -> Optional[ActivityLog]:
        """
        Append one entry.

        Returns the entry, or None when the write failed (already logged).
        """
        entry = ActivityLog(
            user_id=user_id,
            action=action,
            entity=entity,
            entity_id=entity_id,
            details=details or {},
        )
        try:
            async with self.db.begin_nested():
                self.db.add(entry)
                await self.db.flush()
        except SQLAlchemyError:
            logger.exception(
                "Failed to write activity log: action=%s entity_id=%s user=%s",
                action.value,
                entity_id,
                user_id,
            )
            return None

        return entry

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        limit: int = 50,
    ) -> list[ActivityLog]:
        """Most recent entries for a user, newest first."""
        stmt = (
            select(ActivityLog)
            .where(ActivityLog.user_id == user_id)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.activity_id)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
