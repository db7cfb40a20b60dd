"""Configuration helpers for the geo-grid scan worker.

Credentials come from the environment only: `BRIGHT_DATA_API_TOKEN` pays for
the raw SERP fetches and `SERPAPI_API_KEY` for the structured ones. Neither is
validated here; the SERP client raises ConfigError when a scan needs a key
that is missing.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_BRIGHT_DATA_API_URL = "https://api.brightdata.com/request"


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    bright_data_api_token: Optional[str] = None
    serpapi_api_key: Optional[str] = None
    bright_data_zone: str = "serp_api1"
    bright_data_api_url: str = DEFAULT_BRIGHT_DATA_API_URL
    structured_first: bool = True
    request_timeout: float = 30.0
    max_concurrent: int = 3
    requests_per_second: float = 2.0
    max_retries: int = 2
    worker_port: int = 9000


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load, validate and cache worker settings to avoid repeated env lookups."""
    load_dotenv()

    bright_data_api_token = os.getenv("BRIGHT_DATA_API_TOKEN") or os.getenv("SERP_API1") or None
    serpapi_api_key = os.getenv("SERPAPI_API_KEY") or None
    structured_first = _env_bool("GEOGRID_STRUCTURED_FIRST", True)

    settings = Settings(
        bright_data_api_token=bright_data_api_token,
        serpapi_api_key=serpapi_api_key,
        bright_data_zone=os.getenv("BRIGHT_DATA_ZONE") or "serp_api1",
        bright_data_api_url=os.getenv("BRIGHT_DATA_API_URL") or DEFAULT_BRIGHT_DATA_API_URL,
        structured_first=structured_first,
        request_timeout=_env_number("GEOGRID_REQUEST_TIMEOUT", 30.0, float),
        max_concurrent=_env_number("GEOGRID_MAX_CONCURRENT", 3, int),
        requests_per_second=_env_number("GEOGRID_REQUESTS_PER_SECOND", 2.0, float),
        max_retries=_env_number("GEOGRID_MAX_RETRIES", 2, int),
        worker_port=_env_number("WORKER_PORT", 9000, int),
    )

    if not bright_data_api_token:
        logger.warning("BRIGHT_DATA_API_TOKEN is not configured; raw SERP fetches will fail.")
    if structured_first and not serpapi_api_key:
        logger.warning("SERPAPI_API_KEY is not configured; structured SERP fetches will fail.")

    return settings
