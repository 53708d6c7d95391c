import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx

from photoguide.core.config import Settings
from photoguide.models.dto import GeoContext
from photoguide.services.chat import ChatService
from photoguide.services.geo_context import GeoContextBuilder
from photoguide.services.geocoding import ReverseGeocoder
from photoguide.services.housekeeping import Sweepable
from photoguide.services.jobs import JobStore
from photoguide.services.locate import LocatePipeline
from photoguide.services.model_client import GenerationModel, OpenAIModel
from photoguide.services.poi_service import PoiLocator, PoiProvider
from photoguide.services.ttl_cache import TTLCache
from photoguide.services.vision import VisionIdentifier
from photoguide.services.wikipedia import WikipediaImageService


@dataclass
class Services:
    """Process-wide service graph, attached to ``app.state.services``."""

    settings: Settings
    geocoder: ReverseGeocoder
    poi_locator: PoiProvider
    geo_cache: TTLCache[GeoContext]
    photo_contexts: TTLCache[str]
    geo_builder: GeoContextBuilder
    identifier: VisionIdentifier
    pipeline: LocatePipeline
    jobs: JobStore
    chat: ChatService
    wikipedia: WikipediaImageService
    http_client: Optional[httpx.AsyncClient] = None
    model: Optional[GenerationModel] = None

    def sweepables(self) -> Dict[str, Sweepable]:
        return {
            "geo_cache": self.geo_cache,
            "photo_contexts": self.photo_contexts,
            "jobs": self.jobs,
        }


def build_services(
    settings: Settings,
    http_client: httpx.AsyncClient,
    model: Optional[GenerationModel] = None,
    geocoder: Optional[ReverseGeocoder] = None,
    poi_locator: Optional[PoiProvider] = None,
    wikipedia: Optional[WikipediaImageService] = None,
    clock: Callable[[], float] = time.time,
) -> Services:
    """Wire every service from settings; any collaborator can be replaced (tests, scripts)."""
    model = model or OpenAIModel.from_settings(settings)
    geocoder = geocoder or ReverseGeocoder.from_settings(http_client, settings)
    poi_locator = poi_locator or PoiLocator.from_settings(http_client, settings)
    geo_cache: TTLCache[GeoContext] = TTLCache(settings.GEO_CACHE_TTL_SECONDS, clock=clock, name="geo_cache")
    photo_contexts: TTLCache[str] = TTLCache(
        settings.PHOTO_CONTEXT_TTL_SECONDS, clock=clock, name="photo_contexts"
    )
    geo_builder = GeoContextBuilder.from_settings(geocoder, poi_locator, geo_cache, settings)
    identifier = VisionIdentifier(model)
    pipeline = LocatePipeline(geo_builder, identifier, photo_contexts)
    jobs = JobStore(
        pipeline,
        ttl_seconds=settings.JOB_TTL_SECONDS,
        trace_limit=settings.JOB_TRACE_LIMIT,
        clock=clock,
    )
    return Services(
        settings=settings,
        geocoder=geocoder,
        poi_locator=poi_locator,
        geo_cache=geo_cache,
        photo_contexts=photo_contexts,
        geo_builder=geo_builder,
        identifier=identifier,
        pipeline=pipeline,
        jobs=jobs,
        chat=ChatService(model),
        wikipedia=wikipedia or WikipediaImageService.from_settings(http_client, settings),
        http_client=http_client,
        model=model,
    )
