"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "MindWell Clinic API"
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
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 480   # 8 hour admin session

    # ── Admin account ────────────────────────────────────────
    ADMIN_EMAIL: str = "admin@mindwell.com"
    ADMIN_PASSWORD_HASH: str = ""
    ADMIN_NOTIFY_EMAIL: str = ""

    # ── Email ────────────────────────────────────────────────
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@mindwell.com"
    EMAIL_FROM_NAME: str = "MindWell Psychology"

    # ── CORS ─────────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # ── Receipt Storage (S3 / R2) ────────────────────────────
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_BUCKET_RECEIPTS: str = "mindwell-receipts"
    S3_ENDPOINT_URL: str = ""
    S3_REGION: str = "auto"
    S3_PUBLIC_BASE_URL: str = ""
    RECEIPT_FOLDER: str = "mindwell_payments"
    RECEIPT_MAX_BYTES: int = 10 * 1024 * 1024
    RECEIPT_UPLOAD_TIMEOUT_SECONDS: float = 60.0

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    # ── Startup ──────────────────────────────────────────────
    STARTUP_RETRY_ATTEMPTS: int = 5

    # ── Business Config ──────────────────────────────────────
    DEFAULT_APPOINTMENT_AMOUNT: int = 3000
    DEFAULT_MAX_APPOINTMENTS: int = 8

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def admin_notify_address(self) -> str:
        return self.ADMIN_NOTIFY_EMAIL or self.ADMIN_EMAIL


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance, call this everywhere."""
    return Settings()


settings = get_settings()
