"""
Bitespeed Configuration Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    db_path: str = Field(default="contacts.db", alias="BITESPEED_DB_PATH")

    # Upper bound on waiting for the sqlite write lock, in seconds
    store_timeout_seconds: float = Field(default=5.0, alias="BITESPEED_STORE_TIMEOUT")

    host: str = Field(default="0.0.0.0", alias="BITESPEED_HOST")
    port: int = Field(default=8000, alias="BITESPEED_PORT")

    log_level: str = Field(default="INFO", alias="BITESPEED_LOG_LEVEL")


settings = Settings()
