"""Configuration helpers for the EVV API client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "http://127.0.0.1:3000"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_CACHE_TTL_SECONDS = 300.0


@dataclass(slots=True)
class ClientConfig:
    """Settings for talking to the EVV API."""

    api_base_url: str = DEFAULT_API_BASE_URL
    api_token: Optional[str] = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS


def load_config(env_path: Optional[Path] = None) -> ClientConfig:
    """Load the configuration from an optional `.env` file and the environment."""

    env_path = env_path or Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return ClientConfig(
        api_base_url=os.getenv("EVV_CLIENT_API_BASE_URL", DEFAULT_API_BASE_URL),
        api_token=os.getenv("EVV_CLIENT_API_TOKEN"),
        timeout_seconds=float(os.getenv("EVV_CLIENT_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)),
        max_retries=int(os.getenv("EVV_CLIENT_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
        backoff_seconds=float(os.getenv("EVV_CLIENT_BACKOFF", DEFAULT_BACKOFF_SECONDS)),
        cache_ttl_seconds=float(os.getenv("EVV_CLIENT_CACHE_TTL", DEFAULT_CACHE_TTL_SECONDS)),
    )


__all__ = ["ClientConfig", "load_config"]
