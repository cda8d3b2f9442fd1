"""
Centralized configuration management for rotecore.
"""
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_default_db_path() -> Path:
    """Returns the default path for the database file."""
    return Path.home() / ".rotecore" / "rote.db"


class Settings(BaseSettings):
    """
    Application settings, loaded from ROTECORE_* environment variables or a
    .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="ROTECORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Overridden by ROTECORE_DB_PATH.
    db_path: Path = get_default_db_path()

    # Logging level name for the CLI (ROTECORE_LOG_LEVEL).
    log_level: str = "WARNING"

    # When True, disables safety checks that prevent data loss during tests.
    # Should NEVER be enabled in production. Set via ROTECORE_TESTING_MODE.
    testing_mode: bool = False


settings = Settings()
