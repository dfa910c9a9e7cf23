"""Dependency providers and settings management."""

from functools import lru_cache
from typing import Optional

from fastapi import Request
from pydantic_settings import BaseSettings, SettingsConfigDict

from .services.attribution import AttributionConfig, AttributionService


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    DATABASE_URL: Optional[str] = None
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"
    SENTRY_DSN: Optional[str] = None

    # Redis Configuration (ARQ worker)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Attribution engine
    ATTRIBUTION_LOOKBACK_DAYS: int = 30
    ATTRIBUTION_TIME_DECAY_HALF_LIFE_DAYS: float = 7.0
    ATTRIBUTION_POSITION_FIRST_WEIGHT: float = 0.40
    ATTRIBUTION_POSITION_LAST_WEIGHT: float = 0.40
    ATTRIBUTION_POSITION_MIDDLE_WEIGHT: float = 0.20
    ATTRIBUTION_TOUCH_RETENTION_DAYS: int = 90
    ATTRIBUTION_BATCH_SIZE: int = 50
    ATTRIBUTION_CLAIM_TTL_SECONDS: int = 600  # 10 minutes

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_attribution_service(request: Request) -> AttributionService:
    """The process-wide AttributionService built by create_app()."""
    return request.app.state.attribution_service


def build_default_service() -> AttributionService:
    """AttributionService bound to DATABASE_URL and the configured tunables.

    Used by the API (create_app) and the ARQ worker startup hook.
    """
    from .database import SessionLocal

    config = AttributionConfig.from_settings(get_settings())
    return AttributionService(SessionLocal, config)
