"""
Lumen — Geocoding lookup

Resolves free-text profile locations ("Austin, TX") to coordinates through a
Nominatim-compatible search endpoint.  Lookups are best effort: a location
that cannot be resolved leaves the profile without coordinates, which the
candidate selector handles by ranking such users last.
"""

from __future__ import annotations

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings

logger = structlog.get_logger("lumen.geocoding_service")


def _is_retryable_http_error(exc: BaseException) -> bool:
    """Retry transport errors, rate limiting and 5xx responses."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class GeocodingService:
    """Async client for location-text to (latitude, longitude) lookups."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        settings = get_settings()
        self._url = settings.GEOCODER_URL
        self._client = client or httpx.AsyncClient(
            timeout=settings.GEOCODER_TIMEOUT_SECONDS,
            headers={"User-Agent": settings.GEOCODER_USER_AGENT},
        )

    async def geocode(self, location: str) -> tuple[float, float] | None:
        """Return ``(lat, lon)`` for ``location``, or ``None``.

        Never raises for lookup failures; they are logged and reported as
        "no result".
        """
        query = (location or "").strip()
        if not query:
            return None

        log = logger.bind(location=query)

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable_http_error),
                stop=stop_after_attempt(3),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.get(
                        self._url,
                        params={"q": query, "format": "json", "limit": 1},
                    )
                    response.raise_for_status()
                    results = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("geocode_failed", error=str(exc), error_type=type(exc).__name__)
            return None

        if not isinstance(results, list) or not results:
            log.info("geocode_no_result")
            return None

        try:
            lat = float(results[0]["lat"])
            lon = float(results[0]["lon"])
        except (KeyError, TypeError, ValueError) as exc:
            log.warning("geocode_malformed_result", error=str(exc))
            return None

        log.debug("geocode_resolved", latitude=lat, longitude=lon)
        return lat, lon

    async def aclose(self) -> None:
        await self._client.aclose()
