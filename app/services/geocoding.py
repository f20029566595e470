from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import quote

from app.canonical.v1.listing import AddressV1
from app.core.clock import Clock
from app.services.errors import EnrichmentError
from app.services.http_client import SyncHttpClient


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoResult:
    resolved: bool
    lat: float | None = None
    lng: float | None = None


UNRESOLVED = GeoResult(resolved=False)


class GeoEnricher:
    """
    Address -> (lat, lng) via Mapbox forward geocoding.

    Never raises: a failed lookup is logged and reported as UNRESOLVED, and
    the listing gets another chance on the next run because its coordinates
    are still missing. Calls are serialized and spaced at least
    `min_interval_seconds` apart to stay inside the provider's rate limit.
    """

    def __init__(
        self,
        *,
        http: SyncHttpClient,
        clock: Clock,
        endpoint: str,
        api_key: str | None,
        min_interval_seconds: float = 0.2,
        country: str | None = "US",
    ):
        self._http = http
        self._clock = clock
        self._endpoint = endpoint.rstrip("/")
        self._api_key = api_key
        self._min_interval = max(0.0, min_interval_seconds)
        self._country = country
        self._lock = asyncio.Lock()
        self._last_call: float | None = None
        self.calls = 0

        if not api_key:
            log.warning("geocoding disabled: no API key configured")

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def enrich(self, address: AddressV1) -> GeoResult:
        if not self.enabled or not address.is_complete or address.has_coordinates:
            return UNRESOLVED

        try:
            async with self._lock:
                await self._throttle()
                return await self._geocode(address)
        except EnrichmentError as e:
            log.warning("geocode unresolved address=%r reason=%s", address.one_line(), e)
            return UNRESOLVED

    async def _throttle(self) -> None:
        if self._last_call is not None:
            wait = self._min_interval - (self._clock.monotonic() - self._last_call)
            if wait > 0:
                await self._clock.sleep(wait)
        self._last_call = self._clock.monotonic()

    async def _geocode(self, address: AddressV1) -> GeoResult:
        self.calls += 1
        params = {"access_token": self._api_key, "limit": "1"}
        if self._country:
            params["country"] = self._country

        res = await self._http.get_json(
            url=f"{self._endpoint}/{quote(address.one_line(), safe='')}.json",
            params=params,
        )
        if not res.ok:
            raise EnrichmentError(f"geocoder returned {res.error_code}: {res.error_message}")

        features = res.detail.get("features")
        if not isinstance(features, list) or not features:
            raise EnrichmentError("no match")

        center = features[0].get("center") if isinstance(features[0], dict) else None
        if not isinstance(center, (list, tuple)) or len(center) != 2:
            raise EnrichmentError("match has no center")

        try:
            lng, lat = float(center[0]), float(center[1])
        except (TypeError, ValueError):
            raise EnrichmentError(f"non-numeric center {center!r}")

        if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
            raise EnrichmentError(f"center out of range {center!r}")

        log.debug("geocoded address=%r lat=%s lng=%s", address.one_line(), lat, lng)
        return GeoResult(resolved=True, lat=lat, lng=lng)
