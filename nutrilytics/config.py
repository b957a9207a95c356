"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
Loads from environment variables with validation.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, model_validator
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
    PORT: int = Field(default=8000, description="Port to bind to")

    # Database
    DATABASE_URL: str = Field(default="")

    # Redis
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # RevenueCat
    REVENUECAT_API_KEY: str = Field(default="")
    REVENUECAT_WEBHOOK_SECRET: str = Field(default="")
    REVENUECAT_WEBHOOK_ALLOW_UNAUTHENTICATED: bool = Field(
        default=False,
        description=(
            "Accept webhook calls when no secret is configured. "
            "Only meant for local development against the RevenueCat sandbox."
        ),
    )
    REVENUECAT_ENTITLEMENT_ID: str = Field(default="premium")

    # Subscription policy
    TRIAL_DURATION_DAYS: int = Field(default=14, ge=1)
    QUOTA_RESET_BATCH_SIZE: int = Field(default=500, ge=1, le=500)

    # Background jobs
    SCHEDULER_ENABLED: bool = Field(default=True)

    # App Configuration
    ALLOWED_ORIGINS: str = Field(default="http://localhost:3000,http://localhost:8000")

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def database_url_async(self) -> str:
        """Convert database URL to async format for asyncpg."""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        return self.DATABASE_URL

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def webhook_auth_disabled(self) -> bool:
        """Unauthenticated webhooks are accepted only with no secret and an explicit opt-in."""
        return (
            not self.REVENUECAT_WEBHOOK_SECRET
            and self.REVENUECAT_WEBHOOK_ALLOW_UNAUTHENTICATED
        )

    @model_validator(mode="after")
    def validate_allow_unauthenticated(self) -> "Settings":
        """Refuse the permissive webhook mode in production."""
        if self.REVENUECAT_WEBHOOK_ALLOW_UNAUTHENTICATED and self.is_production:
            raise ValueError(
                "REVENUECAT_WEBHOOK_ALLOW_UNAUTHENTICATED cannot be enabled in production"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Export a default settings instance
settings = get_settings()
