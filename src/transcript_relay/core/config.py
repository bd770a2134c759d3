"""Configuration management using Pydantic Settings"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TRANSCRIPT_RELAY_",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Telegram
    bot_token: str = ""
    telegram_api_url: str = "https://api.telegram.org"
    webhook_url: str | None = None
    webhook_secret: str | None = None
    allowed_chat_ids: list[int] = []
    telegram_max_retries: int = 3
    telegram_min_interval_ms: int = 1000

    # Speech-to-text
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    stt_model: str = "gpt-4o-mini-transcribe"
    stt_stream: bool = True
    stt_language: str | None = None
    stt_dictionary_path: Path = Path("dict.txt")

    # Media
    tmp_dir: Path | None = None
    ffmpeg_binary: str = "ffmpeg"
    max_file_size_bytes: int = 20 * 1024 * 1024

    # Relay
    min_update_interval_ms: int = 1000

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> LogLevel:
        """Validate log level, fallback to INFO if invalid."""
        upper_v = v.upper()
        if upper_v not in VALID_LOG_LEVELS:
            return "INFO"
        return upper_v  # type: ignore[return-value]

    def is_chat_allowed(self, chat_id: int) -> bool:
        """Check a chat against the allow-list (an empty list admits everyone)."""
        return not self.allowed_chat_ids or chat_id in self.allowed_chat_ids


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance. Use this for dependency injection."""
    return Settings()


# For backward compatibility and simple imports
settings = get_settings()
