"""Gateway settings read from the environment (or a local .env file)."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://ai.gateway.lovable.dev/v1"
DEFAULT_MODEL = "google/gemini-2.5-flash"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # AI gateway; the key is optional so the app starts without it
    LOVABLE_API_KEY: str | None = None
    GATEWAY_BASE_URL: str = DEFAULT_BASE_URL
    GATEWAY_MODEL: str = DEFAULT_MODEL

    # Seconds between sweeps of abandoned streaming sessions
    SESSION_CLEANUP_INTERVAL_SECONDS: float = 15 * 60

    @property
    def api_key_preview(self) -> str | None:
        """API key with everything but the first 8 and last 4 characters hidden"""
        key = self.LOVABLE_API_KEY
        if not key:
            return None
        if len(key) <= 12:
            return "***"
        return f"{key[:8]}***{key[-4:]}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
