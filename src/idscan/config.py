"""Runtime configuration for the document extraction service."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings read from environment variables or a local ``.env`` file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Remote vision model
    gemini_api_key: str = ""  # Required: requests fail with a configuration error while unset
    gemini_model: str = "gemini-1.5-flash"
    gemini_temperature: float = 0.1
    gemini_top_p: float = 0.8
    gemini_top_k: int = 40
    gemini_max_output_tokens: int = 1024
    gemini_timeout_seconds: float = 30.0
    # Upload limits
    max_upload_size: int = 10 * 1024 * 1024  # 10MB of decoded image or PDF bytes
    # Logging
    log_level: str = "INFO"

    @property
    def has_api_key(self) -> bool:
        return bool(self.gemini_api_key.strip())


settings = Settings()  # type: ignore


def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide settings."""

    return settings
