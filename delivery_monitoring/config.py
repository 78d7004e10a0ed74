"""
Runtime settings, read from the environment or a local `.env` file.

Table names end up interpolated into SQL unquoted, so they must be lowercase
plain identifiers.
"""
from __future__ import annotations

import re
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Lowercase only: unquoted names are folded to lowercase by PostgreSQL.
_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


class Settings(BaseSettings):
    # PostgreSQL
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("delivery_monitoring", alias="DB_NAME")
    db_pool_min_size: int = Field(1, ge=0, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, ge=1, alias="DB_POOL_MAX_SIZE")

    # Runtime
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Store layout
    monitoring_table: str = Field("delivery_monitoring", alias="MONITORING_TABLE")
    monitoring_kv_table: str = Field("kv_delivery_monitoring", alias="MONITORING_KV_TABLE")
    monitoring_page_size: int = Field(50, gt=0, alias="MONITORING_PAGE_SIZE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("monitoring_table", "monitoring_kv_table")
    @classmethod
    def _plain_identifier(cls, value: str) -> str:
        if not _IDENTIFIER.match(value):
            raise ValueError(f"'{value}' is not a lowercase SQL identifier")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _pool_bounds(self) -> "Settings":
        if self.db_pool_min_size > self.db_pool_max_size:
            raise ValueError("DB_POOL_MIN_SIZE must not exceed DB_POOL_MAX_SIZE")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings are parsed once per process."""
    return Settings()


__all__ = ["Settings", "get_settings"]
