"""
Application settings loaded from the environment.

Values come from process environment variables, optionally seeded from a
.env file. Settings are read once per process through get_settings().
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv


DEV_SECRET = "dev-secret-change-me"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    environment: str = "dev"

    # Database
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "videotube"

    # Tokens
    access_token_secret: str = DEV_SECRET
    access_token_expiry_minutes: int = 60 * 24
    refresh_token_secret: str = DEV_SECRET
    refresh_token_expiry_days: int = 10

    # HTTP
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 8000

    # Media host (S3 compatible object storage)
    upload_dir: str = "uploads"
    media_bucket: str = ""
    media_endpoint_url: Optional[str] = None
    media_access_key: Optional[str] = None
    media_secret_key: Optional[str] = None
    media_region: Optional[str] = None
    media_public_url: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    # Orphan reconciliation job, 0 disables it
    reconcile_interval_minutes: int = 0

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        origins = os.environ.get("CORS_ORIGINS", "*")
        return cls(
            environment=os.environ.get("ENVIRONMENT", "dev").lower(),
            database_url=os.environ.get("DATABASE_URL", "mongodb://localhost:27017"),
            database_name=os.environ.get("DATABASE_NAME", "videotube"),
            access_token_secret=os.environ.get("ACCESS_TOKEN_SECRET", DEV_SECRET),
            access_token_expiry_minutes=_int_env("ACCESS_TOKEN_EXPIRY_MINUTES", 60 * 24),
            refresh_token_secret=os.environ.get("REFRESH_TOKEN_SECRET", DEV_SECRET),
            refresh_token_expiry_days=_int_env("REFRESH_TOKEN_EXPIRY_DAYS", 10),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            port=_int_env("PORT", 8000),
            upload_dir=os.environ.get("UPLOAD_DIR", "uploads"),
            media_bucket=os.environ.get("MEDIA_BUCKET", ""),
            media_endpoint_url=os.environ.get("MEDIA_ENDPOINT_URL") or None,
            media_access_key=os.environ.get("MEDIA_ACCESS_KEY") or None,
            media_secret_key=os.environ.get("MEDIA_SECRET_KEY") or None,
            media_region=os.environ.get("MEDIA_REGION") or None,
            media_public_url=os.environ.get("MEDIA_PUBLIC_URL", ""),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_format=os.environ.get("LOG_FORMAT", "text").lower(),
            reconcile_interval_minutes=_int_env("RECONCILE_INTERVAL_MINUTES", 0),
        )

    @property
    def is_production(self) -> bool:
        return self.environment in ("prod", "production")

    def validate(self) -> None:
        """Fail fast on settings that cannot work in this environment."""
        if self.log_format not in ("json", "text"):
            raise ConfigurationError(f"LOG_FORMAT must be 'json' or 'text', got {self.log_format!r}")
        if self.access_token_expiry_minutes <= 0 or self.refresh_token_expiry_days <= 0:
            raise ConfigurationError("token expiry values must be positive")
        if self.reconcile_interval_minutes < 0:
            raise ConfigurationError("RECONCILE_INTERVAL_MINUTES must not be negative")
        if self.is_production:
            if DEV_SECRET in (self.access_token_secret, self.refresh_token_secret):
                raise ConfigurationError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must be set in production")
            if not self.media_bucket:
                raise ConfigurationError("MEDIA_BUCKET must be set in production")


@lru_cache()
def get_settings() -> Settings:
    load_dotenv()
    settings = Settings.from_env()
    settings.validate()
    return settings
