"""Configuration for the listing pipeline admin service."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    # Postgres
    DATABASE_URL: str

    # OpenAI
    OPENAI_API_KEY: str

    # Auth
    ADMIN_API_KEY: str

    # Scheduling
    ENABLE_AUTO_CATCHUP: bool = True

    # Logging
    LOG_JSON: bool = True


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
