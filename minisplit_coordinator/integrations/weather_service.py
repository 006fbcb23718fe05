"""Outdoor temperature for the coordinator.

``OpenWeatherClient`` fetches current conditions from OpenWeatherMap in
imperial units.  ``OutdoorTemperatureSource`` wraps any weather client with a
TTL cache, single-flight refresh and a fallback value so that a coordination
cycle can always obtain a temperature.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions / data models
# ---------------------------------------------------------------------------


class WeatherClientError(Exception):
    """Raised when current conditions cannot be fetched or parsed."""


@dataclass(slots=True)
class WeatherReading:
    """Current outdoor conditions in °F."""

    temperature: float
    humidity: float | None = None
    description: str = ""
    location_name: str = ""


class WeatherClient(Protocol):
    async def fetch_current(self) -> WeatherReading: ...


# ---------------------------------------------------------------------------
# OpenWeatherMap client
# ---------------------------------------------------------------------------


class OpenWeatherClient:
    """Current-conditions client for the OpenWeatherMap v2.5 API.

    Location is either ``lat``/``lon`` or ``zip_code`` (+ ``country``);
    coordinates win when both are given.
    """

    def __init__(
        self,
        api_key: str,
        *,
        lat: float | None = None,
        lon: float | None = None,
        zip_code: str = "",
        country: str = "US",
        base_url: str = "https://api.openweathermap.org",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("OpenWeatherMap API key is required")
        if (lat is None or lon is None) and not zip_code:
            raise ValueError("Either lat/lon or a zip code must be configured")
        self._api_key = api_key
        self._lat = lat
        self._lon = lon
        self._zip = zip_code
        self._country = country
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"appid": self._api_key, "units": "imperial"}
        if self._lat is not None and self._lon is not None:
            params["lat"] = self._lat
            params["lon"] = self._lon
        else:
            params["zip"] = f"{self._zip},{self._country}"
        return params

    async def fetch_current(self) -> WeatherReading:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get("/data/2.5/weather", params=self._params())
        except httpx.HTTPError as exc:
            raise WeatherClientError(f"Weather request failed: {exc}") from exc

        if response.status_code == 401:
            raise WeatherClientError("OpenWeatherMap rejected the API key (401)")
        if not response.is_success:
            raise WeatherClientError(
                f"OpenWeatherMap error {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()
            main = data["main"]
            temperature = float(main["temp"])
        except (ValueError, KeyError, TypeError) as exc:
            raise WeatherClientError("Malformed OpenWeatherMap payload") from exc

        weather = data.get("weather") or [{}]
        return WeatherReading(
            temperature=temperature,
            humidity=_safe_float(main.get("humidity")),
            description=str(weather[0].get("description", "")) if weather else "",
            location_name=str(data.get("name", "")),
        )


# ---------------------------------------------------------------------------
# Cached temperature source
# ---------------------------------------------------------------------------


@dataclass
class _CacheEntry:
    """Timestamped cache wrapper."""

    data: WeatherReading | None = None
    timestamp: float = 0.0

    def is_valid(self, ttl: float) -> bool:
        return self.data is not None and (time.monotonic() - self.timestamp) < ttl


class OutdoorTemperatureSource:
    """Cached outdoor temperature that never raises.

    Usage::

        source = OutdoorTemperatureSource(OpenWeatherClient(key, zip_code="10001"))
        outside_f = await source.current_temperature()
    """

    def __init__(
        self,
        client: WeatherClient | None,
        *,
        cache_ttl: float = 15 * 60,
        fallback_temperature: float = 70.0,
    ) -> None:
        self._client = client
        self._cache_ttl = cache_ttl
        self._fallback = fallback_temperature
        self._cache = _CacheEntry()
        self._last_updated: datetime | None = None
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return self._client is not None

    @property
    def last_updated(self) -> datetime | None:
        """Wall-clock time of the last successful fetch."""
        return self._last_updated

    @property
    def last_reading(self) -> WeatherReading | None:
        return self._cache.data

    def cache_valid(self) -> bool:
        return self._cache.is_valid(self._cache_ttl)

    def cache_age(self) -> float | None:
        """Seconds since the last successful fetch, or ``None``."""
        if self._cache.data is None:
            return None
        return time.monotonic() - self._cache.timestamp

    def invalidate_cache(self) -> None:
        self._cache = _CacheEntry()
        self._last_updated = None
        logger.debug("Weather cache invalidated")

    async def current_temperature(self) -> float:
        if self._cache.is_valid(self._cache_ttl):
            assert self._cache.data is not None  # noqa: S101 - checked by is_valid
            return self._cache.data.temperature

        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self._cache.is_valid(self._cache_ttl):
                assert self._cache.data is not None  # noqa: S101
                return self._cache.data.temperature
            return await self._refresh()

    async def _refresh(self) -> float:
        if self._client is None:
            logger.debug("Weather not configured; using fallback %.1f°F", self._fallback)
            return self._fallback

        try:
            reading = await self._client.fetch_current()
        except Exception:
            logger.warning("Failed to fetch outdoor temperature", exc_info=True)
            if self._cache.data is not None:
                logger.warning(
                    "Returning stale outdoor temperature %.1f°F", self._cache.data.temperature
                )
                return self._cache.data.temperature
            logger.warning("No cached weather; using fallback %.1f°F", self._fallback)
            return self._fallback

        self._cache = _CacheEntry(data=reading, timestamp=time.monotonic())
        self._last_updated = datetime.now(UTC)
        logger.info(
            "Weather updated: %.1f°F, %s (%s)",
            reading.temperature,
            reading.description or "n/a",
            reading.location_name or "unknown location",
        )
        return reading.temperature


def _safe_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "OpenWeatherClient",
    "OutdoorTemperatureSource",
    "WeatherClient",
    "WeatherClientError",
    "WeatherReading",
]
