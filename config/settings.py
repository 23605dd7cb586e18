"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from datetime import time
from functools import lru_cache
from typing import List, Tuple
from zoneinfo import ZoneInfo

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Beauty Booking Platform"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    STORE_TIMEOUT_SECONDS: float = 10.0

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300          # 5 minutes
    BOOKING_LOCK_TTL: int = 30
    IDEMPOTENCY_TTL_SECONDS: int = 86400

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # ── Firebase ─────────────────────────────────────────────
    FIREBASE_CREDENTIALS_PATH: str = "./config/firebase-credentials.json"
    FIREBASE_PROJECT_ID: str = ""

    # ── Frontend ─────────────────────────────────────────────
    FRONTEND_URL: str = "http://localhost:3000"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    # ── Business Config ──────────────────────────────────────
    BUSINESS_TIMEZONE: str = "Asia/Colombo"
    WORKING_WINDOWS: str = "09:00-12:00,14:30-17:30"
    CLOSED_WEEKDAYS: List[int] = [6]    # Monday=0 ... Sunday=6
    SERVICE_ID_PREFIX: str = "SRV_"
    PACKAGE_ID_PREFIX: str = "PKG_"
    PUBLIC_ID_PAD: int = 3
    ADMIN_ACTION_MAX_ATTEMPTS: int = 3
    STALE_BOOKING_MINUTES: int = 30
    COMPLETION_REMINDER_HOURS: int = 2

    @field_validator("WORKING_WINDOWS")
    @classmethod
    def validate_windows(cls, value: str) -> str:
        for start, end in _parse_windows(value):
            if start >= end:
                raise ValueError(f"Working window {start}-{end} ends before it starts")
        return value

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def working_windows(self) -> List[Tuple[time, time]]:
        return _parse_windows(self.WORKING_WINDOWS)

    @property
    def business_tz(self) -> ZoneInfo:
        return ZoneInfo(self.BUSINESS_TIMEZONE)

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


def _parse_windows(raw: str) -> List[Tuple[time, time]]:
    windows = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        start, end = chunk.split("-")
        windows.append((time.fromisoformat(start.strip()), time.fromisoformat(end.strip())))
    return windows


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
