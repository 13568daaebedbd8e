"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
Loads from environment variables with validation.
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

    # Server
    PORT: int = Field(default=8000)

    # Development Settings
    DEV_AUTH_DISABLED: bool = Field(
        default=False,
        description="Resolve every request to the development admin user",
    )

    # Database
    DATABASE_URL: str = Field(default="")

    # Redis (cache, rate limits, learner day-state storage)
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # JWT Authentication
    JWT_SECRET: str = Field(default="change-this-secret-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=1440)  # 24 hours
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default=30)
    PASSWORD_RESET_TTL_MINUTES: int = Field(default=15, ge=1)

    # Mail provider (Resend)
    RESEND_API_KEY: str = Field(default="")
    RESEND_FROM: str = Field(default="")
    RESEND_API_URL: str = Field(default="https://api.resend.com/emails")

    # App Configuration
    APP_URL: str = Field(default="http://localhost:3000")
    ALLOWED_ORIGINS: str = Field(default="http://localhost:3000,http://localhost:8000")

    # Learner runner
    DAY_STATE_SAVE_DELAY_MS: int = Field(default=800, ge=0)
    DAY_STATE_SAVED_RESET_MS: int = Field(default=1200, ge=0)

    # Anonymous previews: answers expire after a week of inactivity
    PREVIEW_STATE_TTL_SECONDS: int = Field(default=7 * 24 * 3600, ge=60)

    # Newsletter
    NEWSLETTER_BATCH_SIZE: int = Field(default=30, ge=1)

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def database_url_async(self) -> str:
        """Convert database URL to async format for asyncpg."""
        if self.DATABASE_URL:
            return self.DATABASE_URL.replace(
                "postgresql://", "postgresql+asyncpg://"
            )
        return ""

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def auth_disabled(self) -> bool:
        """Check if auth is disabled (only allowed in development)."""
        return self.is_development and self.DEV_AUTH_DISABLED

    @property
    def mail_configured(self) -> bool:
        """All three mail settings are required to send anything."""
        return bool(self.RESEND_API_KEY and self.RESEND_FROM and self.APP_URL)

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure JWT secret is sufficiently long."""
        if len(v) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters long")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Export a default settings instance
settings = get_settings()
