"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    mirror_store_path: str = ".mirror/tutor_sessions.json"
    mirror_store_max_bytes: int | None = None
    primary_timeout_seconds: float = 10.0
    reconciliation_interval_seconds: float = 2.0
    typing_timeout_seconds: float = 3.0
    daily_api_key: str | None = None
    daily_base_url: str = "https://api.daily.co/v1"
    meeting_domain: str = "tutormatch.daily.co"
    operator_user_ids: str | None = None
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_operator_user_ids(raw: str | None) -> set[str]:
    """Parse operator user ids from env."""
    if raw is None:
        return set()
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return set()
    return {chunk.strip() for chunk in cleaned.split(",") if chunk.strip()}
