"""Reverse geocoding (lat/lon -> human-readable address) over HTTP.

Talks to a Nominatim-compatible `/reverse` endpoint. Public instances are
rate-limited, so results are cached by rounded coordinates for a while. The
cache is bounded: expired entries are purged on insert and the least recently
used entry goes once `max_entries` is reached.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Callable

import httpx

from famguard.core.config import settings

logger = logging.getLogger(__name__)


class GeocodingError(Exception):
    """Raised when reverse geocoding fails."""


def coord_key(lat: float, lon: float, precision: int) -> str:
    """Cache key with coordinates rounded to `precision` decimals (3 ~ 110m)."""
    return f"{round(lat, precision):.{precision}f},{round(lon, precision):.{precision}f}"


def format_address(address: dict[str, Any]) -> str | None:
    """Join street number, street, city, region and country, skipping blanks."""
    city = address.get("city") or address.get("town") or address.get("village")
    parts = [
        address.get("house_number"),
        address.get("road"),
        city,
        address.get("state"),
        address.get("country"),
    ]
    joined = ", ".join(str(p) for p in parts if p)
    return joined or None


class ReverseGeocoder:
    def __init__(
        self,
        base_url: str = settings.geocoding_base_url,
        user_agent: str = settings.geocoding_user_agent,
        cache_ttl_seconds: float = settings.geocoding_cache_ttl_seconds,
        max_entries: int = settings.geocoding_cache_max_entries,
        precision: int = 3,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._ttl = cache_ttl_seconds
        self._precision = precision
        self._max_entries = max(1, max_entries)
        self._client = client
        self._clock = clock
        self._cache: OrderedDict[str, tuple[str | None, float]] = OrderedDict()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def reverse(self, latitude: float, longitude: float) -> str | None:
        key = coord_key(latitude, longitude, self._precision)
        cached = self._cache.get(key)
        now = self._clock()
        if cached and now - cached[1] < self._ttl:
            self._cache.move_to_end(key)
            return cached[0]

        address = await self._fetch(latitude, longitude)
        self._store(key, address, self._clock())
        return address

    def _store(self, key: str, address: str | None, now: float) -> None:
        for stale in [k for k, (_, stored_at) in self._cache.items() if now - stored_at >= self._ttl]:
            del self._cache[stale]
        self._cache[key] = (address, now)
        self._cache.move_to_end(key)
        while len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)

    async def _fetch(self, latitude: float, longitude: float) -> str | None:
        params = {"format": "jsonv2", "lat": latitude, "lon": longitude, "addressdetails": 1}
        headers = {"User-Agent": self._user_agent}
        url = f"{self._base_url}/reverse"
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise GeocodingError(f"Reverse geocoding request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise GeocodingError("Reverse geocoding returned invalid JSON") from exc

        if not isinstance(data, dict) or "error" in data:
            logger.debug("No address for %.5f,%.5f: %s", latitude, longitude, data)
            return None
        return format_address(data.get("address") or {})
