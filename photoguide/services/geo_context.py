"""
Geo context builder: reverse geocode + nearby POIs for one coordinate pair.

Two strategies are available:

- ``parallel``: reverse geocoding and the widening POI search run
  concurrently under one wall-clock budget. When the budget elapses the
  unfinished work is cancelled and the best partial result is used.
- ``sequential``: reverse geocoding first, then the widening POI search,
  bounded only by the per-call timeouts.

The POI search starts at the base radius and re-queries at larger radii while
fewer than ``min_results`` POIs come back. ``GeoContext.radius_m`` is always the
radius of the query whose POIs are returned.
"""

import asyncio
import time
from typing import List, Optional, Sequence, Tuple

import structlog

from photoguide.core.config import Settings
from photoguide.core.errors import truncate
from photoguide.models.dto import GeoContext, Poi, ReverseGeoResult
from photoguide.services.geocoding import ReverseGeocoder
from photoguide.services.observer import NULL_OBSERVER, PipelineObserver
from photoguide.services.poi_service import PoiProvider
from photoguide.services.ttl_cache import TTLCache

logger = structlog.get_logger(__name__)

STRATEGIES = ("parallel", "sequential")


class _PoiProgress:
    """Best POI result so far; ``pois`` and ``radius_m`` always change together."""

    def __init__(self, radius_m: int):
        self.pois: List[Poi] = []
        self.radius_m = radius_m
        self.failed = False

    def update(self, pois: List[Poi], radius_m: int) -> None:
        self.pois, self.radius_m = pois, radius_m


def widening_radii(base_radius_m: int, multipliers: Sequence[int]) -> List[int]:
    radii = sorted({int(base_radius_m * m) for m in multipliers if m > 0})
    return radii or [int(base_radius_m)]


class GeoContextBuilder:
    def __init__(
        self,
        geocoder: ReverseGeocoder,
        locator: PoiProvider,
        cache: TTLCache[GeoContext],
        base_radius_m: int = 150,
        multipliers: Sequence[int] = (1, 2, 4),
        min_results: int = 3,
        strategy: str = "parallel",
        total_budget_s: float = 12.0,
    ):
        if strategy not in STRATEGIES:
            raise ValueError(f"unknown geo strategy {strategy!r}, expected one of {STRATEGIES}")
        self.geocoder = geocoder
        self.locator = locator
        self.cache = cache
        self.base_radius_m = int(base_radius_m)
        self.radii = widening_radii(base_radius_m, multipliers)
        self.min_results = min_results
        self.strategy = strategy
        self.total_budget_s = total_budget_s

    @classmethod
    def from_settings(
        cls,
        geocoder: ReverseGeocoder,
        locator: PoiProvider,
        cache: TTLCache[GeoContext],
        settings: Settings,
    ) -> "GeoContextBuilder":
        return cls(
            geocoder,
            locator,
            cache,
            base_radius_m=settings.POI_BASE_RADIUS_M,
            multipliers=settings.POI_RADIUS_MULTIPLIERS,
            min_results=settings.POI_MIN_RESULTS,
            strategy=settings.GEO_STRATEGY,
            total_budget_s=settings.GEO_TOTAL_BUDGET_SECONDS,
        )

    @staticmethod
    def cache_key(lat: float, lon: float, radius_m: int) -> str:
        # 5 decimal places is about 1.1 m at the equator
        return f"{lat:.5f},{lon:.5f},{int(radius_m)}"

    async def build(
        self, lat: float, lon: float, observer: PipelineObserver = NULL_OBSERVER
    ) -> GeoContext:
        key = self.cache_key(lat, lon, self.base_radius_m)
        cached = self.cache.get(key)
        if cached is not None:
            observer.reverse_resolved(cached.reverse)
            observer.pois_found(cached.pois, cached.radius_m)
            observer.trace("geo_cache_hit", f"{len(cached.pois)} POIs within {cached.radius_m} m")
            return cached

        started = time.perf_counter()
        if self.strategy == "sequential":
            context, complete = await self._build_sequential(lat, lon, observer)
        else:
            context, complete = await self._build_parallel(lat, lon, observer)

        logger.info(
            "geo_context_built",
            strategy=self.strategy,
            radius_m=context.radius_m,
            pois=len(context.pois),
            reverse=context.reverse.display_name,
            complete=complete,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        # Partial results are not cached so the next request retries upstream
        if complete:
            self.cache.set(key, context)
        return context

    async def _resolve_reverse(
        self, lat: float, lon: float, observer: PipelineObserver
    ) -> ReverseGeoResult:
        reverse = await self.geocoder.resolve(lat, lon)
        observer.reverse_resolved(reverse)
        observer.trace("reverse", reverse.display_name or "unresolved")
        return reverse

    async def _search_widening(
        self, lat: float, lon: float, progress: _PoiProgress, observer: PipelineObserver
    ) -> None:
        for radius_m in self.radii:
            started = time.perf_counter()
            try:
                pois = await self.locator.search(lat, lon, radius_m)
            except Exception as e:
                progress.failed = True
                logger.warning(
                    "poi_search_degraded",
                    radius_m=radius_m,
                    kept=len(progress.pois),
                    elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
                    error=truncate(e),
                )
                observer.trace("pois_failed", f"{radius_m} m: {truncate(e, 120)}")
                return
            progress.update(pois, radius_m)
            observer.pois_found(pois, radius_m)
            observer.trace("pois", f"{len(pois)} within {radius_m} m")
            if len(pois) >= self.min_results:
                return

    async def _build_sequential(
        self, lat: float, lon: float, observer: PipelineObserver
    ) -> Tuple[GeoContext, bool]:
        reverse = await self._resolve_reverse(lat, lon, observer)
        progress = _PoiProgress(self.radii[0])
        await self._search_widening(lat, lon, progress, observer)
        context = GeoContext(reverse=reverse, pois=progress.pois, radius_m=progress.radius_m)
        return context, not progress.failed

    async def _build_parallel(
        self, lat: float, lon: float, observer: PipelineObserver
    ) -> Tuple[GeoContext, bool]:
        progress = _PoiProgress(self.radii[0])
        reverse_task = asyncio.create_task(self._resolve_reverse(lat, lon, observer))
        poi_task = asyncio.create_task(self._search_widening(lat, lon, progress, observer))

        done, pending = await asyncio.wait({reverse_task, poi_task}, timeout=self.total_budget_s)
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "geo_budget_exceeded",
                budget_s=self.total_budget_s,
                reverse_done=reverse_task in done,
                pois_done=poi_task in done,
                pois_kept=len(progress.pois),
            )
            observer.trace("geo_budget_exceeded", f"{self.total_budget_s}s")

        reverse: Optional[ReverseGeoResult] = None
        if reverse_task in done and reverse_task.exception() is None:
            reverse = reverse_task.result()
        if poi_task in done and poi_task.exception() is not None:
            progress.failed = True
            logger.warning("poi_search_crashed", error=truncate(poi_task.exception()))

        context = GeoContext(
            reverse=reverse or ReverseGeoResult(),
            pois=progress.pois,
            radius_m=progress.radius_m,
        )
        return context, not pending and not progress.failed
