"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    telegram_bot_token: str = Field(..., alias="TELEGRAM_BOT_TOKEN")
    # Comma-separated Telegram user ids allowed to talk to the bot (empty = anyone).
    allowed_user_ids: str = Field(default="", alias="ALLOWED_USER_IDS")
    telegram_poll_timeout_seconds: int = Field(default=30, alias="TELEGRAM_POLL_TIMEOUT_SECONDS")

    openrouter_api_key: str = Field(..., alias="OPENROUTER_API_KEY")
    openrouter_model: str = Field(default="google/gemini-2.5-flash", alias="OPENROUTER_MODEL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    request_timeout_seconds: float = Field(default=60.0, alias="REQUEST_TIMEOUT_SECONDS")
    tool_timeout_seconds: float = Field(default=30.0, alias="TOOL_TIMEOUT_SECONDS")
    max_tool_rounds: int = Field(default=8, ge=1, alias="MAX_TOOL_ROUNDS")
    memory_window_messages: int = Field(default=40, ge=4, alias="MEMORY_WINDOW_MESSAGES")

    database_path: Path = Field(default=Path("data/aide.db"), alias="DATABASE_PATH")
    timezone: str = Field(default="UTC", alias="TIMEZONE")

    schedule_tick_seconds: float = Field(default=60.0, alias="SCHEDULE_TICK_SECONDS")
    schedule_catchup_minutes: int = Field(default=15, ge=0, alias="SCHEDULE_CATCHUP_MINUTES")
    proactive_tick_seconds: float = Field(default=3600.0, alias="PROACTIVE_TICK_SECONDS")

    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(default="", alias="GOOGLE_CLIENT_SECRET")
    google_redirect_uri: str = Field(
        default="http://localhost:8080/auth/google/callback",
        alias="GOOGLE_REDIRECT_URI",
    )
    oauth_server_host: str = Field(default="0.0.0.0", alias="OAUTH_SERVER_HOST")
    oauth_server_port: int = Field(default=8080, alias="OAUTH_SERVER_PORT")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def allowed_user_ids(settings: Settings) -> frozenset[str]:
    """Return the set of Telegram user ids permitted to use the bot.

    An empty set means the bot answers everyone.
    """
    return frozenset(n.strip() for n in settings.allowed_user_ids.split(",") if n.strip())


def google_calendar_enabled(settings: Settings) -> bool:
    return bool(settings.google_client_id and settings.google_client_secret)
