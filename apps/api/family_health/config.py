"""Application configuration utilities."""
from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

_ENV_KEYS = {
    "supabase_url": ("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    "supabase_anon_key": ("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
    "supabase_service_role_key": ("SUPABASE_SERVICE_ROLE_KEY",),
    "supabase_jwt_secret": ("SUPABASE_JWT_SECRET",),
    "supabase_jwt_aud": ("SUPABASE_JWT_AUD",),
    "app_url": ("APP_URL", "NEXT_PUBLIC_APP_URL"),
    "api_url": ("API_URL",),
    "garmin_consumer_key": ("GARMIN_CONSUMER_KEY",),
    "garmin_consumer_secret": ("GARMIN_CONSUMER_SECRET",),
    "oauth_state_secret": ("OAUTH_STATE_SECRET",),
    "vapid_public_key": ("VAPID_PUBLIC_KEY",),
    "vapid_private_key": ("VAPID_PRIVATE_KEY",),
    "vapid_subject": ("VAPID_SUBJECT",),
    "cron_secret": ("CRON_SECRET",),
    "cors_origins": ("CORS_ORIGINS",),
    "default_timezone": ("DEFAULT_TIMEZONE",),
    "log_level": ("LOG_LEVEL",),
}


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from the environment and config.json."""

    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    supabase_jwt_aud: str = Field(default="authenticated")

    app_url: str = Field(default="http://localhost:3000")
    api_url: str = Field(default="http://localhost:8000")

    garmin_consumer_key: str = Field(default="")
    garmin_consumer_secret: str = Field(default="")
    oauth_state_secret: Optional[str] = None

    vapid_public_key: Optional[str] = None
    vapid_private_key: Optional[str] = None
    vapid_subject: str = Field(default="mailto:admin@example.com")

    cron_secret: Optional[str] = None
    cors_origins: str = Field(default="http://localhost:3000,http://127.0.0.1:3000")
    default_timezone: str = Field(default="UTC")
    log_level: str = Field(default="INFO")

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def garmin_callback_url(self) -> str:
        return f"{self.api_url.rstrip('/')}/api/garmin/callback"

    @property
    def state_signing_key(self) -> str:
        """Key used to sign OAuth state; falls back to the Supabase secrets."""
        key = self.oauth_state_secret or self.supabase_jwt_secret or self.supabase_service_role_key
        if not key:
            raise RuntimeError("Missing OAUTH_STATE_SECRET for Garmin OAuth state signing.")
        return key


def _config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "config.json"


def _env_overrides() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for field, names in _ENV_KEYS.items():
        for name in names:
            value = os.getenv(name)
            if value:
                values[field] = value
                break
    return values


def load_config() -> AppConfig:
    """Load configuration from config.json (optional) overlaid with environment variables."""

    contents: Dict[str, Any] = {}
    config_file = _config_path()
    if config_file.exists():
        contents = json.loads(config_file.read_text())
    contents.update(_env_overrides())
    return AppConfig(**contents)


@lru_cache
def get_config() -> AppConfig:
    return load_config()
