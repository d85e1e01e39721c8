from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Storage Configuration
    STORE_BACKEND: Literal["memory", "sql"] = "memory"
    DATABASE_URL: str = "sqlite:///./outreach.db"
    CASCADE_DELETE_REPLIES: bool = False

    # Inbound reply webhook security
    WEBHOOK_SECRET: str = ""

    # Messages
    DEFAULT_OWNER_ID: str = "demo-user-123"
    MAX_CONTENT_LENGTH: int = 1000

    # Simulated link client (demo replies)
    SIMULATE_REPLIES: bool = True
    SIMULATED_REPLY_MIN_DELAY: float = 1.0
    SIMULATED_REPLY_MAX_DELAY: float = 3.0


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()
