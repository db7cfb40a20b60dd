"""Geo-targeted Google SERP fetching.

Two integrations are used: SerpAPI returns structured organic/local results,
and Bright Data's request API proxies a raw Google results page that we parse
ourselves. The structured path is tried first and falls back to the raw one
on provider or transport failures. Both are billed per request, so callers
should route every request through the shared rate limiter.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from serpapi import GoogleSearch

from geogrid.core.config import DEFAULT_BRIGHT_DATA_API_URL, ConfigError, Settings, get_settings
from geogrid.etl.serp_parser import parse_geo_serp_html, parse_structured_serp
from geogrid.models import GeoSerpRequest, GeoSerpResponse

logger = logging.getLogger(__name__)

GOOGLE_SEARCH_URL = "https://www.google.com/search"
UULE_PREFIX = "w+CAIQICI"
UULE_KEY_TABLE = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class SerpClientError(RuntimeError):
    """Base class for failed SERP fetches."""


class ProviderError(SerpClientError):
    """The SERP provider answered with a non-success status or an error payload."""

    def __init__(self, status: Optional[int], body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"SERP provider error: {status} - {body[:200]}")


class TransportError(SerpClientError):
    """The request never produced a response (timeout, DNS, connection reset)."""


def generate_uule(lat: float, lng: float) -> str:
    """Google ``uule`` token for a coordinate.

    Without it every nearby grid point gets the same results, so the ``near``
    parameter alone is not enough.
    """
    canonical = f"{lat:.6f},{lng:.6f}"
    key = UULE_KEY_TABLE[len(canonical) % len(UULE_KEY_TABLE)]
    encoded = base64.urlsafe_b64encode(canonical.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{UULE_PREFIX}{key}{encoded}"


def build_geo_search_url(keyword: str, lat: float, lng: float, num_results: int = 20) -> str:
    params = [
        ("q", keyword),
        ("num", str(num_results)),
        ("gl", "us"),
        ("hl", "en"),
        ("near", f"{lat},{lng}"),
        ("uule", generate_uule(lat, lng)),
    ]
    return f"{GOOGLE_SEARCH_URL}?{urlencode(params)}"


def is_retryable_error(exc: BaseException) -> bool:
    """Transport failures, throttling and 5xx responses are worth another attempt."""
    if isinstance(exc, TransportError):
        return True
    if isinstance(exc, ProviderError):
        return exc.status in RETRYABLE_STATUS_CODES
    return False


class SerpClient:
    """Holds provider credentials and a pooled HTTP session; safe to share between worker threads."""

    def __init__(
        self,
        bright_data_api_token: Optional[str] = None,
        serpapi_api_key: Optional[str] = None,
        *,
        zone: str = "serp_api1",
        api_url: str = DEFAULT_BRIGHT_DATA_API_URL,
        timeout: float = 30.0,
        structured_first: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.bright_data_api_token = bright_data_api_token
        self.serpapi_api_key = serpapi_api_key
        self.zone = zone
        self.api_url = api_url
        self.timeout = timeout
        self.structured_first = structured_first
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SerpClient":
        settings = settings or get_settings()
        return cls(
            bright_data_api_token=settings.bright_data_api_token,
            serpapi_api_key=settings.serpapi_api_key,
            zone=settings.bright_data_zone,
            api_url=settings.bright_data_api_url,
            timeout=settings.request_timeout,
            structured_first=settings.structured_first,
        )

    def ensure_configured(self) -> None:
        """Raise ConfigError listing every credential the configured fetch path needs."""
        missing = []
        if not self.bright_data_api_token:
            missing.append("BRIGHT_DATA_API_TOKEN (or SERP_API1)")
        if self.structured_first and not self.serpapi_api_key:
            missing.append("SERPAPI_API_KEY")
        if missing:
            raise ConfigError(f"SERP credentials not configured: {', '.join(missing)}")

    def fetch_serp(self, request: GeoSerpRequest) -> GeoSerpResponse:
        if self.structured_first:
            return self.fetch_structured_serp(request)
        return self.fetch_geo_targeted_serp(request)

    def fetch_geo_targeted_serp(self, request: GeoSerpRequest) -> GeoSerpResponse:
        """Fetch the raw Google results page through Bright Data and parse it."""
        if not self.bright_data_api_token:
            raise ConfigError("Bright Data API token not configured (BRIGHT_DATA_API_TOKEN or SERP_API1)")

        search_url = build_geo_search_url(request.keyword, request.lat, request.lng, request.num_results)
        payload = {
            "zone": self.zone,
            "url": search_url,
            "format": "raw",
            "device_type": request.device,
        }
        headers = {
            "Authorization": f"Bearer {self.bright_data_api_token}",
            "Content-Type": "application/json",
        }

        logger.info("Fetching raw SERP keyword=%s at (%s, %s)", request.keyword, request.lat, request.lng)
        try:
            response = self._session.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise TransportError(f"Raw SERP request timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise TransportError(f"Raw SERP request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            logger.warning("Raw SERP request returned status=%s", response.status_code)
            raise ProviderError(response.status_code, response.text[:500])

        return parse_geo_serp_html(response.text)

    def fetch_structured_serp(self, request: GeoSerpRequest) -> GeoSerpResponse:
        """Try SerpAPI's structured results, falling back to the raw page on any fetch failure."""
        if not self.serpapi_api_key:
            raise ConfigError("SERPAPI_API_KEY must be set for structured SERP lookups")

        params: Dict[str, Any] = {
            "engine": "google",
            "q": request.keyword,
            "num": request.num_results,
            "gl": "us",
            "hl": "en",
            "uule": generate_uule(request.lat, request.lng),
            "device": request.device,
            "api_key": self.serpapi_api_key,
        }

        try:
            data = self._search_serpapi(params)
            return parse_structured_serp(data)
        except ConfigError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Structured SERP failed for keyword=%s at (%s, %s), falling back to raw markup: %s",
                request.keyword,
                request.lat,
                request.lng,
                exc,
                exc_info=True,
            )
        return self.fetch_geo_targeted_serp(request)

    def _search_serpapi(self, params: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Calling SerpAPI for keyword=%s uule=%s", params.get("q"), params.get("uule"))
        search = GoogleSearch(params)
        search.timeout = self.timeout
        try:
            response = search.get_response()
        except requests.Timeout as exc:
            raise TransportError(f"SerpAPI request timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise TransportError(f"SerpAPI request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise ProviderError(response.status_code, response.text[:500])
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(response.status_code, "SerpAPI returned a non-JSON payload.") from exc
        if not data:
            raise ProviderError(response.status_code, "SerpAPI returned an empty payload.")
        if "error" in data:
            raise ProviderError(response.status_code, str(data.get("error")))
        return data
