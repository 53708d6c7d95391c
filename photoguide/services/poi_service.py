# photoguide/services/poi_service.py
"""Nearby point-of-interest search against the Overpass API.

- One composite query selects named elements matching the tag allowlist.
- Endpoints are interchangeable mirrors, tried in order; the last error
  propagates when all of them fail.
- Results are ranked by distance, de-duplicated by name and capped.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

import httpx

from photoguide.core.config import Settings
from photoguide.core.errors import UpstreamFailure
from photoguide.models.dto import Poi
from photoguide.utils.fallback import try_in_order
from photoguide.utils.haversine import distance_m
from photoguide.utils.http import request_json

logger = logging.getLogger(__name__)

# (tag key, required value or None for any value, POI type); order decides the type
TAG_RULES: Tuple[Tuple[str, Optional[str], str], ...] = (
    ("tourism", None, "tourism"),
    ("historic", None, "historic"),
    ("amenity", "place_of_worship", "place_of_worship"),
    ("building", "temple", "temple"),
    ("man_made", None, "man_made"),
    ("leisure", "park", "park"),
)

MAX_HINT_TAGS = 3


class PoiProvider(Protocol):
    async def search(self, lat: float, lon: float, radius_m: int) -> List[Poi]: ...


def build_overpass_query(lat: float, lon: float, radius_m: int, timeout_s: int = 25) -> str:
    """Overpass QL selecting named nodes/ways/relations for every allowlisted tag."""
    around = f"around:{int(radius_m)},{lat:.6f},{lon:.6f}"
    selectors = []
    for key, value, _ in TAG_RULES:
        tag = f'["{key}"="{value}"]' if value else f'["{key}"]'
        selectors.append(f'  nwr({around})["name"]{tag};')
    return (
        f"[out:json][timeout:{timeout_s}];\n"
        "(\n" + "\n".join(selectors) + "\n);\n"
        "out center tags;"
    )


def element_coordinates(element: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """Nodes carry lat/lon; ways and relations carry the computed centre."""
    if "lat" in element and "lon" in element:
        return float(element["lat"]), float(element["lon"])
    center = element.get("center")
    if isinstance(center, dict) and "lat" in center and "lon" in center:
        return float(center["lat"]), float(center["lon"])
    return None


def _matched_tags(tags: Dict[str, str]) -> List[Tuple[str, str, str]]:
    matched = []
    for key, value, poi_type in TAG_RULES:
        actual = tags.get(key)
        if actual is None:
            continue
        if value is not None and actual != value:
            continue
        matched.append((key, actual, poi_type))
    return matched


def classify(tags: Dict[str, str]) -> Tuple[str, str]:
    """Return ``(type, hint)`` for an element's tags."""
    matched = _matched_tags(tags)
    poi_type = matched[0][2] if matched else "poi"
    hint = ", ".join(f"{key}={actual}" for key, actual, _ in matched[:MAX_HINT_TAGS])
    return poi_type, hint


def rank_pois(pois: Iterable[Poi], limit: int) -> List[Poi]:
    """Sort by distance, keep the nearest entry per case-insensitive name, cap at ``limit``."""
    seen = set()
    ranked: List[Poi] = []
    for poi in sorted(pois, key=lambda p: p.distance_m):
        key = poi.name.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        ranked.append(poi)
        if len(ranked) >= limit:
            break
    return ranked


def parse_elements(elements: Iterable[Dict[str, Any]], lat: float, lon: float, limit: int) -> List[Poi]:
    pois: List[Poi] = []
    for element in elements:
        tags = element.get("tags") or {}
        name = (tags.get("name") or "").strip()
        if not name:
            continue
        coords = element_coordinates(element)
        if coords is None:
            continue
        poi_type, hint = classify(tags)
        pois.append(
            Poi(
                name=name,
                type=poi_type,
                distance_m=distance_m(lat, lon, coords[0], coords[1]),
                hint=hint,
            )
        )
    return rank_pois(pois, limit)


class PoiLocator:
    """Service layer for nearby POI lookups over a list of Overpass mirrors."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoints: List[str],
        timeout: float,
        max_results: int = 25,
        user_agent: Optional[str] = None,
    ):
        self.client = client
        self.endpoints = list(endpoints)
        self.timeout = timeout
        self.max_results = max_results
        self.user_agent = user_agent

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "PoiLocator":
        return cls(
            client,
            settings.OVERPASS_URLS,
            settings.OVERPASS_TIMEOUT_SECONDS,
            max_results=settings.POI_MAX_RESULTS,
            user_agent=settings.HTTP_USER_AGENT,
        )

    async def _query(self, endpoint: str, query: str) -> List[Dict[str, Any]]:
        headers = {"User-Agent": self.user_agent} if self.user_agent else None
        data = await request_json(
            self.client,
            "POST",
            endpoint,
            source="overpass",
            timeout=self.timeout,
            data={"data": query},
            headers=headers,
        )
        if not isinstance(data, dict) or not isinstance(data.get("elements"), list):
            raise UpstreamFailure(f"overpass: unexpected body from {endpoint}", source="overpass")
        return data["elements"]

    async def search(self, lat: float, lon: float, radius_m: int) -> List[Poi]:
        """Named POIs within ``radius_m`` metres, nearest first."""
        query = build_overpass_query(lat, lon, radius_m, timeout_s=max(1, int(self.timeout)))
        attempts = [
            (endpoint, lambda endpoint=endpoint: self._query(endpoint, query))
            for endpoint in self.endpoints
        ]
        elements = await try_in_order(attempts, stage="poi_search")
        pois = parse_elements(elements, lat, lon, self.max_results)
        logger.info(
            f"Overpass returned {len(elements)} elements, {len(pois)} POIs within {radius_m} m."
        )
        return pois
