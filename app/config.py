"""
Application Configuration
=========================

Settings for the entitlements service, read from the environment (and an
optional ``.env`` file) by pydantic-settings.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")
    PORT: int = Field(default=8000, description="Port to bind to")

    # Development Settings
    DEV_AUTH_DISABLED: bool = Field(
        default=False,
        description="Serve every request as a fixed development user",
    )

    # Database (Postgres)
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=10, ge=1)
    DB_MAX_OVERFLOW: int = Field(default=20, ge=0)
    DB_POOL_RECYCLE_SECONDS: int = Field(default=300)
    DB_ECHO: bool = Field(default=False)

    # Redis
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # JWT Authentication
    JWT_SECRET: str = Field(default="change-this-secret-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=1440)  # 24 hours
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default=30)

    # PayKickstart
    PAYKICKSTART_WEBHOOK_SECRET: str = Field(default="")
    PAYKICKSTART_SIGNATURE_HEADER: str = Field(default="X-PayKickstart-Signature")

    # Entitlements
    SUBSCRIPTION_STATUS_CACHE_TTL: int = Field(
        default=60,
        description="Seconds a resolved subscription status stays cached",
    )

    # HTTP
    FRONTEND_URL: str = Field(default="http://localhost:3000")
    ALLOWED_ORIGINS: str = Field(default="http://localhost:3000,http://localhost:8000")

    # Observability
    METRICS_ENABLED: bool = Field(default=True)

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def database_url_async(self) -> str:
        """DATABASE_URL rewritten for the asyncpg driver."""
        url = self.DATABASE_URL
        for prefix in ("postgresql://", "postgres://"):
            if url.startswith(prefix):
                return "postgresql+asyncpg://" + url[len(prefix):]
        return url

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def auth_disabled(self) -> bool:
        """Auth can only be disabled in development."""
        return self.is_development and self.DEV_AUTH_DISABLED

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure JWT secret is sufficiently long."""
        if len(v) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters long")
        return v


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
