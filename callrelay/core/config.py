"""Application configuration for the call relay."""
from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    rtc_app_id: str = Field(default="")
    rtc_app_certificate: str = Field(default="")
    rtc_token_ttl_seconds: int = Field(default=3600, gt=0)

    notify_timeout_seconds: float = Field(default=5.0, gt=0)
    call_ring_timeout_seconds: int = Field(default=60, gt=0)
    call_max_duration_seconds: int = Field(default=3600, gt=0)
    call_retention_seconds: int = Field(default=300, ge=0)
    call_sweep_interval_seconds: float = Field(default=15.0, gt=0)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        """Accept a JSON list or comma-separated origins from the environment."""

        if isinstance(value, str):
            if value.strip().startswith("["):
                return json.loads(value)
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
