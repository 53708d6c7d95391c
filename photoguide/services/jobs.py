"""
Asynchronous locate jobs.

``JobStore.create`` records a job and schedules the locate pipeline as an
independent asyncio task, returning before any upstream call starts. Clients
poll ``JobStore.get`` until the job reaches ``done`` or ``error``. Jobs live
for ``ttl_seconds`` from creation, whatever their state, and are removed by
``sweep``.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

import structlog

from photoguide.core.errors import UnknownResource, truncate
from photoguide.models.dto import (
    GeoContext,
    GeoPoint,
    JobStatus,
    JobView,
    LocateAnswer,
    Poi,
    ReverseGeoResult,
    TraceEntry,
)
from photoguide.services.locate import LocatePipeline, LocateRequest
from photoguide.services.observer import PipelineObserver

logger = structlog.get_logger(__name__)


@dataclass
class LocateJob:
    job_id: str
    created_at: float
    lat: Optional[float] = None
    lon: Optional[float] = None
    acc: Optional[float] = None
    user_text: Optional[str] = None
    image: Optional[bytes] = None
    mime_type: str = "image/jpeg"
    fingerprint: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    geo_context: Optional[GeoContext] = None
    reverse_display_name: Optional[str] = None
    pois_count: int = 0
    result: Optional[LocateAnswer] = None
    error: Optional[str] = None
    trace: List[TraceEntry] = field(default_factory=list)

    @property
    def point(self) -> Optional[GeoPoint]:
        if self.lat is None or self.lon is None:
            return None
        return GeoPoint(lat=self.lat, lon=self.lon, accuracy_m=self.acc)

    def view(self, trace_limit: int = 50) -> JobView:
        result = self.result
        return JobView(
            job_id=self.job_id,
            status=self.status,
            created_at=self.created_at,
            reverse=self.reverse_display_name,
            pois_count=self.pois_count,
            photo_context=result.photo_context if result else None,
            candidates=list(result.candidates) if result else None,
            error=self.error,
            trace=self.trace[-trace_limit:] if trace_limit > 0 else [],
        )


class JobObserver(PipelineObserver):
    """Writes pipeline progress onto one job record."""

    def __init__(self, job: LocateJob, clock: Callable[[], float]):
        self.job = job
        self.clock = clock

    def stage(self, status: JobStatus) -> None:
        if self.job.status.is_terminal:
            return
        self.job.status = status
        self.trace("status", status.value)

    def trace(self, step: str, detail: str = "") -> None:
        self.job.trace.append(TraceEntry(ts=self.clock(), step=step, detail=detail))

    def reverse_resolved(self, reverse: ReverseGeoResult) -> None:
        self.job.reverse_display_name = reverse.display_name

    def pois_found(self, pois: List[Poi], radius_m: int) -> None:
        self.job.pois_count = len(pois)

    def geo_resolved(self, context: GeoContext) -> None:
        self.job.geo_context = context
        self.job.reverse_display_name = context.reverse.display_name
        self.job.pois_count = len(context.pois)


class JobStore:
    def __init__(
        self,
        pipeline: LocatePipeline,
        ttl_seconds: float = 900,
        trace_limit: int = 50,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.pipeline = pipeline
        self.ttl_seconds = ttl_seconds
        self.trace_limit = trace_limit
        self._clock = clock
        self._id_factory = id_factory
        self._jobs: Dict[str, LocateJob] = {}
        self._tasks: Set[asyncio.Task] = set()

    def create(
        self,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        acc: Optional[float] = None,
        user_text: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> str:
        """Record a job and schedule its pipeline. Must be called from a running event loop."""
        job = LocateJob(
            job_id=self._id_factory(),
            created_at=self._clock(),
            lat=lat,
            lon=lon,
            acc=acc,
            user_text=user_text,
            image=image_bytes,
            mime_type=mime_type,
            fingerprint=fingerprint,
        )
        self._jobs[job.job_id] = job
        JobObserver(job, self._clock).trace(
            "created", f"{len(image_bytes)} bytes, coords={'yes' if job.point else 'no'}"
        )

        task = asyncio.create_task(self._run(job), name=f"locate-job-{job.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job.job_id

    async def _run(self, job: LocateJob) -> None:
        observer = JobObserver(job, self._clock)
        started = time.perf_counter()
        request = LocateRequest(
            image_bytes=job.image or b"",
            mime_type=job.mime_type,
            point=job.point,
            user_text=job.user_text,
            fingerprint=job.fingerprint,
        )
        try:
            answer = await self.pipeline.run(request, observer)
        except Exception as e:
            job.error = str(e) or e.__class__.__name__
            job.status = JobStatus.ERROR
            observer.trace("error", truncate(e, 200))
            logger.warning(
                "locate_job_failed",
                job_id=job.job_id,
                error_type=e.__class__.__name__,
                error=truncate(e),
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        else:
            job.result = answer
            job.status = JobStatus.DONE
            observer.trace("done", answer.candidates[0].name)
            logger.info(
                "locate_job_done",
                job_id=job.job_id,
                top=answer.candidates[0].name,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        finally:
            job.image = None

    def _expired(self, job: LocateJob) -> bool:
        return self._clock() - job.created_at >= self.ttl_seconds

    def get_job(self, job_id: str) -> LocateJob:
        job = self._jobs.get(job_id)
        if job is None or self._expired(job):
            raise UnknownResource(f"unknown jobId: {job_id}")
        return job

    def get(self, job_id: str) -> JobView:
        return self.get_job(job_id).view(self.trace_limit)

    def sweep(self) -> int:
        expired = [job_id for job_id, job in list(self._jobs.items()) if self._expired(job)]
        for job_id in expired:
            self._jobs.pop(job_id, None)
        return len(expired)

    async def drain(self) -> None:
        """Wait for every scheduled job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __len__(self) -> int:
        return len(self._jobs)
