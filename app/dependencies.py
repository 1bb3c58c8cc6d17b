"""
Common Dependencies
===================

Shared dependencies used across the application.
"""

import logging
from datetime import datetime
from typing import Annotated, Optional
import uuid

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import AuthenticationError, ErrorCodes
from app.core.security import decode_token
from app.db.session import get_db
from app.models.user import User, UserRole
from app.services.auth_service import AuthService
from app.services.cache import CacheKeys, CacheManager

logger = logging.getLogger(__name__)

# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]

# Security scheme for JWT authentication
security = HTTPBearer(auto_error=False)

# Development test user ID (consistent UUID for testing)
DEV_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
DEV_USER_EMAIL = "dev@test.local"

# Redis cache TTL for authenticated user lookup (seconds)
_USER_AUTH_CACHE_TTL = 300  # 5 minutes


# =============================================================================
# User Auth Cache Helpers
# =============================================================================

def _serialize_user_for_cache(user: User) -> dict:
    """Serialize the identity fields of a User to a JSON-safe dict."""
    return {
        "user_id": str(user.user_id),
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role.value if user.role else UserRole.EDITOR.value,
        "member_id": str(user.member_id) if user.member_id else None,
        "created_at": user.created_at.isoformat() if getattr(user, "created_at", None) else None,
    }


def _build_user_from_cache(data: dict) -> User:
    """
    Reconstruct a *transient* (session-free) User from a cached dict.

    Consumers only read identity attributes; subscription state is always
    resolved from the database.
    """
    created_at = data.get("created_at")
    return User(
        user_id=uuid.UUID(data["user_id"]),
        email=data["email"],
        full_name=data.get("full_name"),
        role=UserRole(data.get("role") or UserRole.EDITOR.value),
        member_id=uuid.UUID(data["member_id"]) if data.get("member_id") else None,
        created_at=datetime.fromisoformat(created_at) if created_at else None,
    )


async def _get_cached_user(user_id: uuid.UUID) -> User | None:
    """Return the cached User object, or ``None`` on miss / Redis failure."""
    data = await CacheManager.get(CacheKeys.user_auth(str(user_id)))
    if not data:
        return None
    try:
        return _build_user_from_cache(data)
    except (KeyError, ValueError):
        logger.warning("Discarding malformed auth cache entry for user %s", user_id)
        return None


async def _cache_user(user: User) -> None:
    """Best-effort cache of a DB-loaded User into Redis."""
    await CacheManager.set(
        CacheKeys.user_auth(str(user.user_id)),
        _serialize_user_for_cache(user),
        ttl=_USER_AUTH_CACHE_TTL,
    )


# =============================================================================
# User resolution
# =============================================================================

async def get_or_create_dev_user(db: AsyncSession) -> User:
    """
    Get or create a development test user.
    Only used when DEV_AUTH_DISABLED is True.
    """
    result = await db.execute(
        select(User).where(User.user_id == DEV_USER_ID)
    )
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            user_id=DEV_USER_ID,
            email=DEV_USER_EMAIL,
            full_name="Development User",
        )
        db.add(user)
        await db.commit()

    return user


async def _resolve_user_from_token(
    credentials: HTTPAuthorizationCredentials,
    db: AsyncSession,
) -> User | None:
    """
    Decode the JWT, then return the User from Redis cache or DB.
    """
    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("type") != "access":
        return None

    user_id_str = payload.get("sub")
    if user_id_str is None:
        return None

    try:
        user_id = uuid.UUID(user_id_str)
    except ValueError:
        return None

    # Redis cache hit
    cached = await _get_cached_user(user_id)
    if cached is not None:
        return cached

    # Cache miss, load from DB
    auth_service = AuthService(db)
    user = await auth_service.get_user_by_id(user_id)
    if user is not None:
        await _cache_user(user)
    return user


async def get_current_user_optional(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: DBSession,
) -> Optional[User]:
    """
    Get current user if authenticated, None otherwise.

    Use this for endpoints that work with or without authentication.
    In development with DEV_AUTH_DISABLED=True, returns the dev user.
    """
    if settings.auth_disabled:
        return await get_or_create_dev_user(db)

    if credentials is None:
        return None

    return await _resolve_user_from_token(credentials, db)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: DBSession,
) -> User:
    """
    Get current authenticated user.

    Raises 401 if not authenticated or token is invalid.
    In development with DEV_AUTH_DISABLED=True, returns the dev user.
    """
    if settings.auth_disabled:
        return await get_or_create_dev_user(db)

    if credentials is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_NOT_AUTHENTICATED,
            message="Not authenticated",
        )

    user = await _resolve_user_from_token(credentials, db)

    if user is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_INVALID_TOKEN,
            message="Invalid or expired token",
        )

    return user


# Type alias for authenticated user dependency
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentUserOptional = Annotated[Optional[User], Depends(get_current_user_optional)]
