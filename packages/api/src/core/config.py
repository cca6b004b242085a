# This project was developed with assistance from AI tools.
"""
Application configuration.

All settings read from environment variables with sensible local dev defaults.
Database pool settings live in ``db.config``; everything HTTP-facing lives here.
"""

from decimal import Decimal
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve project root .env regardless of CWD
_PROJECT_ROOT = Path(__file__).resolve().parents[4]
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings -- single source of truth for env-driven config."""

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- App --
    APP_NAME: str = "permisos-digitales"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # -- CORS --
    ALLOWED_HOSTS: list[str] = ["http://localhost:3002"]

    # -- Sessions / auth --
    AUTH_DISABLED: bool = Field(
        default=False,
        description="Bypass session validation. Set True for local dev only.",
    )
    SESSION_SECRET: str = Field(
        default="dev-session-secret-change-me",
        description="HMAC key used to sign session cookie tokens (HS256).",
    )
    SESSION_COOKIE_NAME: str = "pd_session"
    SESSION_TTL_HOURS: int = 8
    SESSION_COOKIE_SECURE: bool = False
    PASSWORD_RESET_TTL_MINUTES: int = 60

    # -- Payments (Stripe) --
    STRIPE_API_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = Field(
        default=None,
        description="Signing secret for the payment webhook endpoint (whsec_...).",
    )
    STRIPE_WEBHOOK_TOLERANCE: int = Field(
        default=300,
        description="Maximum age in seconds of a webhook signature timestamp.",
    )
    PERMIT_FEE: Decimal = Field(
        default=Decimal("150.00"),
        description="Permit fee in MXN charged per application.",
    )
    OXXO_EXPIRES_AFTER_DAYS: int = Field(
        default=3,
        description="Days an OXXO voucher stays payable.",
    )

    # -- Permit lifecycle --
    PERMIT_VALIDITY_DAYS: int = 30
    RENEWAL_WINDOW_DAYS_BEFORE: int = 7
    RENEWAL_WINDOW_DAYS_AFTER: int = 15

    # -- Storage (S3 / MinIO) --
    S3_ENDPOINT: str = "http://localhost:9090"
    S3_ACCESS_KEY: str = "minio"
    S3_SECRET_KEY: str = "miniosecret"
    S3_BUCKET: str = "permits"
    S3_REGION: str = "us-east-1"
    PERMIT_URL_EXPIRES_SECONDS: int = 3600
    PERMIT_UPLOAD_MAX_MB: int = 10


settings = Settings()
