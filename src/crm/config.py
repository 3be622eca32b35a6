"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Firestore (all CRM data lives under tenants/{tenantId}/...)
    GCP_PROJECT_ID: str = ""
    FIRESTORE_DATABASE: str = "(default)"

    # Firebase callable functions
    FIREBASE_FUNCTIONS_REGION: str = "us-central1"
    FIREBASE_FUNCTIONS_BASE_URL: str = ""  # Overrides the derived URL (emulator, proxies)
    FUNCTIONS_TIMEOUT: float = 30.0

    # Redis (session cache and user preferences)
    REDIS_URL: str = "redis://localhost:6379/0"
    SESSION_CACHE_TTL_SECONDS: int = 60 * 60 * 12

    # JWT Authentication
    JWT_SECRET_KEY: str = "CHANGE-ME-IN-PRODUCTION-use-openssl-rand-hex-32"
    JWT_ALGORITHM: str = "HS256"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    # Throttling
    SALES_TEAM_RELOAD_DEBOUNCE_SECONDS: float = 10.0

    # Calendar
    CALENDAR_LOOKAHEAD_DAYS: int = 30
    CALENDAR_MAX_RESULTS: int = 50

    def get_functions_base_url(self) -> str:
        """Return the base URL for Firebase callable functions.

        Prefers FIREBASE_FUNCTIONS_BASE_URL when set, otherwise derives the
        cloudfunctions.net URL from region and project.
        """
        if self.FIREBASE_FUNCTIONS_BASE_URL:
            return self.FIREBASE_FUNCTIONS_BASE_URL.rstrip("/")
        return (
            f"https://{self.FIREBASE_FUNCTIONS_REGION}-{self.GCP_PROJECT_ID}"
            ".cloudfunctions.net"
        )


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
