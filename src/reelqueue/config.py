"""Configuration models for the reel scheduler."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

# Load .env automatically on import (local dev)
load_dotenv()


class InstagramConfig(BaseModel):
    """Credentials and limits for the Instagram Graph API."""

    user_id: Optional[str] = None
    access_token: Optional[str] = None
    api_version: str = "v19.0"
    graph_url: str = "https://graph.facebook.com"
    poll_interval_seconds: float = 5.0
    max_poll_attempts: int = 20
    request_timeout_seconds: float = 30.0


class DatabaseConfig(BaseModel):
    """Connection settings for the upload store."""

    url: Optional[str] = None
    pool_size: int = 10
    max_overflow: int = 20
    pool_recycle: int = 3600
    ssl_mode: Optional[str] = "prefer"  # 'require' for strict RDS

    @property
    def is_postgres(self) -> bool:
        return bool(self.url) and self.url.startswith("postgresql")


class MediaStorageConfig(BaseModel):
    """Where uploaded videos are kept until they are published."""

    backend: str = "s3"  # s3 | local
    bucket: Optional[str] = None
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    public_base_url: Optional[str] = None
    local_dir: Path = Path("media")


class Settings(BaseModel):
    """Process-wide settings, read once at startup."""

    instagram: InstagramConfig = InstagramConfig()
    database: DatabaseConfig = DatabaseConfig()
    media: MediaStorageConfig = MediaStorageConfig()
    cron_secret: Optional[str] = None
    sweep_interval_seconds: int = 60
    stale_publishing_after_seconds: int = 900  # 0 disables stale recovery
    log_level: str = "INFO"


def _env_optional(name: str) -> str | None:
    value = os.getenv(name)
    if not value:
        return None
    return value


def _env_optional_path(name: str) -> Path | None:
    value = os.environ.get(name)
    if not value:
        return None
    return Path(value).expanduser().resolve()


def load_settings() -> Settings:
    """Build Settings from environment variables (.env for local dev)."""
    try:
        instagram = InstagramConfig(
            user_id=_env_optional("IG_USER_ID"),
            access_token=_env_optional("IG_ACCESS_TOKEN"),
            api_version=os.getenv("IG_API_VERSION", "v19.0"),
            graph_url=os.getenv("IG_GRAPH_URL", "https://graph.facebook.com"),
            poll_interval_seconds=float(os.getenv("IG_POLL_INTERVAL_SECONDS", "5")),
            max_poll_attempts=int(os.getenv("IG_MAX_POLL_ATTEMPTS", "20")),
            request_timeout_seconds=float(os.getenv("IG_REQUEST_TIMEOUT_SECONDS", "30")),
        )

        database = DatabaseConfig(
            url=_env_optional("DATABASE_URL"),
            pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "3600")),
            ssl_mode=os.getenv("DB_SSL_MODE", "prefer"),
        )

        media = MediaStorageConfig(
            backend=os.getenv("MEDIA_BACKEND", "s3").lower(),
            bucket=_env_optional("MEDIA_BUCKET"),
            region=_env_optional("MEDIA_REGION"),
            endpoint_url=_env_optional("MEDIA_ENDPOINT_URL"),
            public_base_url=_env_optional("MEDIA_PUBLIC_BASE_URL"),
            local_dir=_env_optional_path("MEDIA_LOCAL_DIR") or Path("media"),
        )

        return Settings(
            instagram=instagram,
            database=database,
            media=media,
            cron_secret=_env_optional("CRON_SECRET"),
            sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", "60")),
            stale_publishing_after_seconds=int(os.getenv("STALE_PUBLISHING_AFTER_SECONDS", "900")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
    except (ValidationError, ValueError) as e:
        raise RuntimeError(f"Invalid settings: {e}") from e
