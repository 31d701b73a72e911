"""
Configuration settings for the ORM practice walkthroughs.

Uses Pydantic Settings to load environment variables for the data-source
locator, logging, the nested-transaction failure policy and seeding defaults.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

NestedFailurePolicy = Literal["continue", "abort"]


class Settings(BaseSettings):
    # Database
    db_locator: str = Field("test.db", alias="DB_LOCATOR")
    db_echo: bool = Field(False, alias="DB_ECHO")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Transactions
    nested_failure_policy: NestedFailurePolicy = Field("continue", alias="NESTED_FAILURE_POLICY")

    # Seeding defaults
    seed_rows: int = Field(100, alias="SEED_ROWS", ge=1)
    seed_batch_size: int = Field(50, alias="SEED_BATCH_SIZE", ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["NestedFailurePolicy", "Settings", "get_settings"]
