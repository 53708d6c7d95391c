"""
Reverse geocoding: coordinates to a human-readable place description.

``ReverseGeocoder.resolve`` never raises. Providers are tried in order
(Nominatim first, Photon as fallback) and a total failure degrades to a
result whose fields are all ``None`` so the locate pipeline keeps going.
"""

import time
from typing import Any, Dict, List, Optional, Protocol

import httpx
import structlog

from photoguide.core.config import Settings
from photoguide.core.errors import UpstreamFailure, truncate
from photoguide.models.dto import ReverseGeoResult
from photoguide.utils.fallback import try_in_order
from photoguide.utils.http import request_json

logger = structlog.get_logger(__name__)

# Address granularity from finest to coarsest; the first present value is the city
CITY_FIELDS = ("city", "town", "village", "municipality", "county")


def pick_city(address: Dict[str, Any]) -> Optional[str]:
    for field in CITY_FIELDS:
        value = address.get(field)
        if value:
            return value
    return None


class GeocodeProvider(Protocol):
    name: str

    async def reverse(self, lat: float, lon: float) -> ReverseGeoResult: ...


class NominatimProvider:
    name = "nominatim"

    def __init__(self, client: httpx.AsyncClient, url: str, timeout: float, user_agent: str):
        self.client = client
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent

    async def reverse(self, lat: float, lon: float) -> ReverseGeoResult:
        data = await request_json(
            self.client,
            "GET",
            self.url,
            source=self.name,
            timeout=self.timeout,
            params={
                "format": "jsonv2",
                "lat": lat,
                "lon": lon,
                "zoom": 18,
                "addressdetails": 1,
                "accept-language": "en",
            },
            headers={"User-Agent": self.user_agent},
        )
        if not isinstance(data, dict) or data.get("error"):
            raise UpstreamFailure(f"nominatim: {truncate(data, 120)}", source=self.name)

        address = data.get("address") or {}
        return ReverseGeoResult(
            display_name=data.get("display_name"),
            city=pick_city(address),
            state=address.get("state"),
            country=address.get("country"),
        )


class PhotonProvider:
    name = "photon"

    def __init__(self, client: httpx.AsyncClient, url: str, timeout: float, user_agent: str):
        self.client = client
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent

    async def reverse(self, lat: float, lon: float) -> ReverseGeoResult:
        data = await request_json(
            self.client,
            "GET",
            self.url,
            source=self.name,
            timeout=self.timeout,
            params={"lat": lat, "lon": lon, "lang": "en", "limit": 1},
            headers={"User-Agent": self.user_agent},
        )
        features = (data or {}).get("features") if isinstance(data, dict) else None
        if not features:
            raise UpstreamFailure("photon: no features", source=self.name)

        props = features[0].get("properties") or {}
        # Photon reports the locality under "city" or, for small places, "name"/"district"
        city = pick_city(props) or props.get("district")
        parts: List[str] = []
        for value in (
            props.get("name"),
            " ".join(p for p in (props.get("housenumber"), props.get("street")) if p) or None,
            city,
            props.get("state"),
            props.get("postcode"),
            props.get("country"),
        ):
            if value and value not in parts:
                parts.append(value)
        return ReverseGeoResult(
            display_name=", ".join(parts) or None,
            city=city,
            state=props.get("state"),
            country=props.get("country"),
        )


class ReverseGeocoder:
    """Resolve coordinates through an ordered chain of providers."""

    def __init__(self, providers: List[GeocodeProvider]):
        self.providers = providers

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "ReverseGeocoder":
        timeout = settings.REVERSE_GEOCODE_TIMEOUT_SECONDS
        providers: List[GeocodeProvider] = [
            NominatimProvider(client, settings.NOMINATIM_URL, timeout, settings.HTTP_USER_AGENT)
        ]
        if settings.REVERSE_GEOCODE_FALLBACK:
            providers.append(
                PhotonProvider(client, settings.PHOTON_URL, timeout, settings.HTTP_USER_AGENT)
            )
        return cls(providers)

    async def resolve(self, lat: float, lon: float) -> ReverseGeoResult:
        started = time.perf_counter()
        attempts = [
            (provider.name, lambda provider=provider: provider.reverse(lat, lon))
            for provider in self.providers
        ]
        try:
            return await try_in_order(attempts, stage="reverse_geocode")
        except Exception as e:
            logger.warning(
                "reverse_geocode_degraded",
                lat=lat,
                lon=lon,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
                error=truncate(e),
            )
            return ReverseGeoResult()
