"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    upload_token: str
    events_base_url: str = "https://track.kronotiming.fr"
    live_base_url: str = "https://live.kronotiming.fr"
    upload_interval_seconds: float = 60.0
    http_timeout_seconds: float = 15.0
    permission_settle_delay: float = 0.6
    permission_settle_attempts: int = 4
    background_task_budget_seconds: float = 30.0
    settings_path: str = "kronotrack-settings.json"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_prefix="KRONOTRACK_",
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_int_or_str(raw: str) -> int | str:
    """Return the value as an int when it is all digits, else unchanged."""
    cleaned = raw.strip()
    if cleaned.isdigit():
        return int(cleaned)
    return cleaned
