from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./taskstreak.db"

    # Hosted backend (PostgREST / Supabase)
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""

    # Synchronization
    POLL_INTERVAL_SECONDS: float = 5.0
    STORE_TIMEOUT_SECONDS: float = 10.0
    # Realtime connection quota per user (free plan allows two)
    FEED_MAX_SUBSCRIBERS: int = 2

    # App
    APP_DEBUG: bool = False

    @field_validator("SUPABASE_URL", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return (v or "").rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
