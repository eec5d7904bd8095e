from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "EVV"
    environment: str = os.getenv("EVV_ENVIRONMENT", "development")
    host: str = os.getenv("EVV_HOST", "127.0.0.1")
    port: int = int(os.getenv("EVV_PORT", "3000"))

    sqlite_path: Path = Path(os.getenv("EVV_SQLITE_PATH", "./data/evv.db"))

    token_secret: str = os.getenv("EVV_TOKEN_SECRET", "change-me")
    token_ttl_hours: int = int(os.getenv("EVV_TOKEN_TTL_HOURS", "24"))

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("EVV_CORS_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173").split(",")
            if origin.strip()
        ]
    )

    log_level: str = os.getenv("EVV_LOG_LEVEL", "INFO")
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


settings = Settings()

settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
