"""
Authentication API Endpoints
============================

Handles user registration and login (JWT issuance).

Accounts created by billing webhooks carry an unusable password and
cannot log in here until their owner resets it.
"""

import logging

from fastapi import APIRouter, status
from sqlalchemy.exc import IntegrityError

from app.core.errors import AuthenticationError, ConflictError, ErrorCodes
from app.core.security import create_tokens_for_user
from app.dependencies import CurrentUser, DBSession
from app.schemas.auth import AuthResponse, UserLogin, UserRegister
from app.schemas.common import ErrorResponse
from app.services.auth_service import AuthService
from app.services.subscription_resolver import ResolvedSubscription, SubscriptionResolver

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_payload(user) -> dict:
    return {
        "user_id": str(user.user_id),
        "email": user.email,
        "full_name": user.full_name,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse, "description": "Email already registered"},
    },
)
async def register(
    user_data: UserRegister,
    db: DBSession,
):
    """
    Register a new user account.

    New accounts start on the free tier; paid tiers come from billing.
    """
    auth_service = AuthService(db)

    existing_user = await auth_service.get_user_by_email(user_data.email)
    if existing_user is not None:
        raise ConflictError(
            code=ErrorCodes.AUTH_EMAIL_EXISTS,
            message="Email already registered",
        )

    try:
        user = await auth_service.create_user(user_data)
    except IntegrityError:
        raise ConflictError(
            code=ErrorCodes.AUTH_EMAIL_EXISTS,
            message="Email already registered",
        )

    tokens = create_tokens_for_user(user_id=user.user_id, email=user.email)

    logger.info("User registered: %s", user.user_id)

    return AuthResponse(
        success=True,
        data={
            "user": _user_payload(user),
            "subscription": ResolvedSubscription.free().to_dict(),
            "tokens": tokens,
        },
        message="Account created successfully",
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
    },
)
async def login(
    credentials: UserLogin,
    db: DBSession,
):
    """
    Authenticate user and return tokens with their current subscription.
    """
    auth_service = AuthService(db)

    user = await auth_service.authenticate_user(
        email=credentials.email,
        password=credentials.password,
    )

    if user is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_INVALID_CREDENTIALS,
            message="Invalid credentials",
        )

    resolved = await SubscriptionResolver(db).resolve(user.user_id)
    tokens = create_tokens_for_user(user_id=user.user_id, email=user.email)

    return AuthResponse(
        success=True,
        data={
            "user": _user_payload(user),
            "subscription": resolved.to_dict(),
            "tokens": tokens,
        },
        message="Login successful",
    )


@router.get(
    "/me",
    response_model=AuthResponse,
)
async def me(current_user: CurrentUser):
    """Identity of the bearer token's user."""
    return AuthResponse(
        success=True,
        data={"user": _user_payload(current_user)},
    )
