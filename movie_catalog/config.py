"""Application configuration models."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_CORS_ORIGINS: tuple[str, ...] = ("http://localhost:3000",)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Movie Catalog", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=8080, alias="PORT", ge=1, le=65_535)

    environment: Literal["development", "production", "test"] = Field(
        default="development", alias="ENVIRONMENT"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./movie_catalog.db", alias="DATABASE_URL"
    )

    omdb_api_key: str | None = Field(default=None, alias="OMDB_API_KEY")
    omdb_api_url: HttpUrl = Field(
        default="https://www.omdbapi.com/", alias="OMDB_API_URL"
    )
    omdb_timeout_seconds: float = Field(
        default=5.0, alias="OMDB_TIMEOUT", gt=0, le=120
    )
    omdb_max_retries: int = Field(default=2, alias="OMDB_MAX_RETRIES", ge=0, le=10)
    omdb_backoff_seconds: float = Field(
        default=1.0, alias="OMDB_BACKOFF_BASE", ge=0, le=30
    )

    cache_ttl_hours: float = Field(default=24, alias="CACHE_TTL_HOURS", gt=0)

    custom_search_limit: int = Field(
        default=20, alias="CUSTOM_SEARCH_LIMIT", ge=1, le=100
    )
    custom_search_similarity: float = Field(
        default=0.3, alias="CUSTOM_SEARCH_SIMILARITY", gt=0, lt=1
    )

    cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_CORS_ORIGINS, alias="CORS_ORIGINS"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: object) -> tuple[str, ...]:
        """Accept comma separated strings as well as lists of origins."""

        if value is None:
            return DEFAULT_CORS_ORIGINS
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("CORS_ORIGINS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            origin = entry.rstrip("/")
            if origin and origin not in cleaned:
                cleaned.append(origin)
        if not cleaned:
            return DEFAULT_CORS_ORIGINS
        return tuple(cleaned)

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: object) -> str:
        level = str(value or "INFO").strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level {value!r}")
        return level

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
