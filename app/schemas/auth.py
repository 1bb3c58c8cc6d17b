"""
Authentication Schemas
======================

Pydantic schemas for registration and login.

Emails are lower-cased on the way in: accounts created by billing
webhooks are keyed by the payer email in the same form, so a later signup
with different casing lands on the same identity.
"""

from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class _EmailCredentials(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_case_email(cls, v: str) -> str:
        return v.strip().lower()


class UserRegister(_EmailCredentials):
    """Signup form."""

    password: str = Field(min_length=8, max_length=100)
    full_name: Optional[str] = Field(None, max_length=255)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Require mixed case and a digit."""
        if not any(c.isupper() for c in v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not any(c.islower() for c in v):
            raise ValueError("Password must contain at least one lowercase letter")
        if not any(c.isdigit() for c in v):
            raise ValueError("Password must contain at least one number")
        return v

    @field_validator("full_name")
    @classmethod
    def strip_full_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class UserLogin(_EmailCredentials):
    password: str


class AuthResponse(BaseModel):
    """Envelope for register, login and /me."""

    success: bool = True
    data: dict[str, Any]
    message: Optional[str] = None
