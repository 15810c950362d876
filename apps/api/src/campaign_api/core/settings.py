from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./campaign.db"
    database_echo: bool = False
    tracing_enabled: bool = True
    log_level: str = "INFO"

    # Daily calendar campaign
    # Used only when no calendar_settings row exists for the flag key.
    calendar_enabled: bool = False
    calendar_feature_key: str = "calendar_enabled"
    calendar_admin_api_key: str = ""
    calendar_default_raffle_id: str = "mega_25"
    calendar_max_timezone_offset_minutes: int = 14 * 60

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return normalized

    @field_validator("calendar_max_timezone_offset_minutes")
    @classmethod
    def _validate_offset_bound(cls, value: int) -> int:
        if value < 0:
            raise ValueError("calendar_max_timezone_offset_minutes must be non-negative")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
