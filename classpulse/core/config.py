from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables or .env.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"  # Ignore extra fields in .env file
    )

    # -------------------------
    # Application
    # -------------------------
    PROJECT_NAME: str = "ClassPulse API"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Calendar days for trend buckets are cut in this zone
    TIMEZONE: str = "UTC"

    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # -------------------------
    # Firebase / Firestore
    # -------------------------
    RECORD_STORE_BACKEND: str = Field(
        default="firestore",
        description="Record store backend: 'firestore' or 'memory'"
    )
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_SERVICE_ACCOUNT_KEY_PATH: Optional[str] = Field(
        default=None,
        description="Path to a service account JSON key (application default credentials if unset)"
    )

    # Push delivery through Firebase Cloud Messaging on notification create
    PUSH_NOTIFICATIONS_ENABLED: bool = False

    # -------------------------
    # Redis (for ARQ task queue and analytics cache)
    # -------------------------
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for task queue and caching"
    )

    # =========================================================
    # Notifications & live updates
    # =========================================================
    NOTIFICATION_PAGE_MAX: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Largest page size accepted by the inbox listing"
    )

    LIVE_SUBSCRIPTION_MAX_LIMIT: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Largest window a live subscription may watch"
    )

    REALTIME_UPDATE_RETENTION_DAYS: int = Field(
        default=7,
        ge=1,
        description="Realtime updates older than this are purged"
    )

    PURGE_CRON_HOUR: int = Field(
        default=3,
        ge=0,
        le=23,
        description="Hour (worker local time) of the daily purge job"
    )

    # =========================================================
    # Analytics
    # =========================================================

    # 0 disables the cache: every request rescans source records
    ANALYTICS_CACHE_TTL_SECONDS: int = Field(
        default=0,
        ge=0,
        description="TTL of cached batch analytics snapshots in Redis"
    )

    TREND_MAX_DAYS: int = Field(
        default=365,
        ge=1,
        description="Longest trend window accepted"
    )

    @field_validator("RECORD_STORE_BACKEND")
    def validate_record_store_backend(cls, v):
        """Ensure record store backend is a valid option."""
        allowed = {"firestore", "memory"}
        if v not in allowed:
            raise ValueError(f"RECORD_STORE_BACKEND must be one of: {allowed}")
        return v

    @field_validator("TIMEZONE")
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"TIMEZONE must be an IANA zone name, got {v!r}")
        return v

settings = Settings()
