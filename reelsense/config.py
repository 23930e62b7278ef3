"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MAX_RECOMMENDATIONS = 100


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ReelSense", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_read_access_token: str | None = Field(
        default=None, alias="TMDB_READ_ACCESS_TOKEN"
    )
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_v4_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/4", alias="TMDB_V4_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")

    # Server-wide account link; requests may supply their own instead.
    tmdb_account_access_token: str | None = Field(
        default=None, alias="TMDB_ACCOUNT_ACCESS_TOKEN"
    )
    tmdb_account_id: str | None = Field(default=None, alias="TMDB_ACCOUNT_ID")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelsense.db", alias="DATABASE_URL"
    )

    consumption_capacity: int = Field(
        default=500, alias="CONSUMPTION_CAPACITY", ge=1, le=10_000
    )
    recommendation_limit: int = Field(
        default=20, alias="RECOMMENDATION_LIMIT", ge=1, le=MAX_RECOMMENDATIONS
    )
    profile_cache_size: int = Field(
        default=1024, alias="PROFILE_CACHE_SIZE", ge=1, le=1_000_000
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_language", mode="before")
    @classmethod
    def _normalise_language(cls, value: object) -> str:
        """Accept ``fr_fr`` style locales and fall back to English."""

        if value is None:
            return "en-US"
        text = str(value).strip().replace("_", "-")
        if not text:
            return "en-US"
        language, _, region = text.partition("-")
        if region:
            return f"{language.lower()}-{region.upper()}"
        return language.lower()

    @field_validator(
        "tmdb_api_key",
        "tmdb_read_access_token",
        "tmdb_account_access_token",
        "tmdb_account_id",
        mode="before",
    )
    @classmethod
    def _blank_as_missing(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def has_tmdb_credentials(self) -> bool:
        """Return whether any TMDB credential has been configured."""

        return bool(self.tmdb_api_key or self.tmdb_read_access_token)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
