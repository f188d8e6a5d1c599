"""Application configuration models."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ZeniX", alias="APP_NAME")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")

    user_api_url: HttpUrl = Field(
        default="http://localhost:3000/api/user", alias="USER_API_URL"
    )

    catalog_cache_ttl: int = Field(default=300, alias="CATALOG_CACHE_TTL", ge=1)
    reference_cache_ttl: int = Field(
        default=3_600, alias="REFERENCE_CACHE_TTL", ge=1
    )

    recommendation_limit: int = Field(
        default=20, alias="RECOMMENDATION_LIMIT", ge=1, le=100
    )
    fallback_count: int = Field(default=12, alias="FALLBACK_COUNT", ge=1, le=100)
    recent_watches_limit: int = Field(
        default=50, alias="RECENT_WATCHES_LIMIT", ge=1, le=500
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./zenix.db", alias="DATABASE_URL"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        """Accept level names in any case and reject unknown ones."""

        if value is None or value == "":
            return "INFO"
        level = str(value).strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError("Unknown log level configured")
        return level

    @field_validator("tmdb_language", mode="before")
    @classmethod
    def _normalise_language(cls, value: object) -> str:
        if value is None:
            return "en-US"
        cleaned = str(value).strip().replace("_", "-")
        if not cleaned:
            return "en-US"
        parts = cleaned.split("-", 1)
        if len(parts) == 2:
            return f"{parts[0].lower()}-{parts[1].upper()}"
        return parts[0].lower()

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
