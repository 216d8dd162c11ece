"""
Configuration for the Expense Tracker API.

Values come from environment variables prefixed with ``EXPENSES_`` and an
optional ``.env`` file in the working directory.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EXPENSES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(
        default="sqlite:///./expenses.db",
        description="SQLAlchemy database URL",
    )

    # Session tokens
    secret_key: str = Field(
        default="change-me-in-production",
        description="Key used to sign session tokens",
    )
    jwt_algorithm: str = Field(default="HS256")
    session_ttl_minutes: int = Field(
        default=30,
        ge=1,
        description="Lifetime of a session before it must be re-established",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(
        default=True,
        description="Render log lines as JSON (console output otherwise)",
    )

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process. Call ``get_settings.cache_clear()`` to reload."""
    return Settings()
