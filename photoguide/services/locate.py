from dataclasses import dataclass
from typing import Optional

from photoguide.models.dto import GeoPoint, JobStatus, LocateAnswer
from photoguide.services.geo_context import GeoContextBuilder
from photoguide.services.observer import NULL_OBSERVER, PipelineObserver
from photoguide.services.ttl_cache import TTLCache
from photoguide.services.vision import VisionIdentifier


@dataclass
class LocateRequest:
    image_bytes: bytes
    mime_type: str = "image/jpeg"
    point: Optional[GeoPoint] = None
    user_text: Optional[str] = None
    fingerprint: Optional[str] = None


class LocatePipeline:
    """Geo context (only with coordinates), then identification, then photo context caching."""

    def __init__(
        self,
        geo_builder: GeoContextBuilder,
        identifier: VisionIdentifier,
        photo_contexts: TTLCache[str],
    ):
        self.geo_builder = geo_builder
        self.identifier = identifier
        self.photo_contexts = photo_contexts

    async def run(
        self, request: LocateRequest, observer: PipelineObserver = NULL_OBSERVER
    ) -> LocateAnswer:
        geo = None
        if request.point is not None:
            observer.stage(JobStatus.GEO)
            geo = await self.geo_builder.build(request.point.lat, request.point.lon, observer=observer)
            observer.geo_resolved(geo)
        else:
            observer.trace("geo_skipped", "no coordinates")

        observer.stage(JobStatus.OPENAI)
        answer = await self.identifier.identify(
            request.image_bytes,
            request.mime_type,
            request.user_text,
            geo,
            point=request.point,
            observer=observer,
        )

        if request.fingerprint:
            self.photo_contexts.set(request.fingerprint, answer.photo_context)
        return answer
