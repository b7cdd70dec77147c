"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .home_sections import SENSITIVE_GENRES


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="AnimeSync", alias="APP_NAME")
    server_host: str = Field(default="127.0.0.1", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./animesync.db", alias="DATABASE_URL"
    )
    profile_id: str = Field(default="local", alias="PROFILE_ID", min_length=1)
    timezone: str = Field(default="UTC", alias="TIMEZONE")

    jikan_api_url: HttpUrl = Field(
        default="https://api.jikan.moe/v4", alias="JIKAN_API_URL"
    )
    catalog_timeout_seconds: float = Field(
        default=20.0, alias="CATALOG_TIMEOUT", gt=0, le=120
    )
    catalog_page_limit: int = Field(
        default=24, alias="CATALOG_PAGE_LIMIT", ge=1, le=25
    )

    update_check_interval_seconds: int = Field(
        default=180, alias="UPDATE_CHECK_INTERVAL", ge=60
    )
    reminder_check_interval_seconds: int = Field(
        default=60, alias="REMINDER_CHECK_INTERVAL", ge=10
    )
    background_checks: bool = Field(default=True, alias="BACKGROUND_CHECKS")

    hidden_genres: Annotated[tuple[str, ...], NoDecode] = Field(
        default=SENSITIVE_GENRES, alias="HIDDEN_GENRES"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("hidden_genres", mode="before")
    @classmethod
    def _parse_hidden_genres(cls, value: object) -> tuple[str, ...]:
        """Normalise comma separated genre selections from environment values."""

        if value is None:
            return SENSITIVE_GENRES
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("HIDDEN_GENRES must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if entry and entry not in cleaned:
                cleaned.append(entry)
        return tuple(cleaned)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        name = value.strip() or "UTC"
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {value!r}") from exc
        return name

    @property
    def tzinfo(self) -> ZoneInfo:
        """Return the zone used for weekday and time-of-day calculations."""

        return ZoneInfo(self.timezone)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
