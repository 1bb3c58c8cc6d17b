"""
Security Module
===============

Authentication and security utilities including:
- Password hashing with bcrypt
- JWT token generation and validation
- Webhook payload signatures (HMAC-SHA256)
"""

from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import secrets
from typing import Any, Optional
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.config import settings

# Password hashing context using bcrypt
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Hashed password string
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify a password against its hash.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Stored hash to compare against

    Returns:
        True if password matches, False otherwise
    """
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def hash_unusable_password() -> str:
    """Hash of a random secret nobody knows. Used for billing-created accounts."""
    return hash_password(secrets.token_urlsafe(32))


def _create_token(
    data: dict[str, Any],
    token_type: str,
    expires_delta: timedelta,
) -> str:
    to_encode = data.copy()
    now = datetime.now(timezone.utc)

    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
        "type": token_type,
    })

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def create_access_token(
    data: dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token."""
    return _create_token(
        data,
        "access",
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(
    data: dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT refresh token."""
    return _create_token(
        data,
        "refresh",
        expires_delta or timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return payload
    except JWTError:
        return None


def create_tokens_for_user(
    user_id: uuid.UUID,
    email: str,
) -> dict[str, Any]:
    """
    Create both access and refresh tokens for a user.

    Tier is deliberately absent from the claims: entitlements change with
    billing events and are always resolved server-side.

    Returns:
        Dictionary with access_token, refresh_token, and expires_in
    """
    token_data = {
        "sub": str(user_id),
        "email": email,
    }

    return {
        "access_token": create_access_token(token_data),
        "refresh_token": create_refresh_token(token_data),
        "token_type": "bearer",
        "expires_in": settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,  # seconds
    }


# =============================================================================
# Webhook Signatures
# =============================================================================

def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    body: bytes,
    signature: Optional[str],
    secret: str,
) -> bool:
    """
    Check a provider signature against the raw body bytes.

    The body must be exactly what arrived on the wire; re-serialized JSON
    will not match.
    """
    if not signature or not secret:
        return False

    expected = sign_payload(body, secret)
    # compare_digest rejects non-ASCII str; bytes compare as a plain mismatch
    return hmac.compare_digest(
        expected.encode("ascii"),
        signature.strip().lower().encode("utf-8"),
    )
