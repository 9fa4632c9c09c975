"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Upstream admin API (usage, apps, keys)
    usage_api_base_url: str = "https://internal-admin.pubnub.com"
    request_timeout_seconds: float = 30.0
    request_max_attempts: int = 3
    keys_page_limit: int = 99

    # Optional token used when a request carries none (local development only)
    default_session_token: Optional[str] = None

    # Cache settings
    cache_max_entries: int = 100
    cache_max_age_seconds: int = 30 * 60
    cache_debug: bool = False

    # Usage window used when a caller omits start/end (three months back)
    default_lookback_days: int = 90

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
