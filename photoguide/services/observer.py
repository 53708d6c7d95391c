from typing import List

from photoguide.models.dto import GeoContext, JobStatus, Poi, ReverseGeoResult


class PipelineObserver:
    """
    Receives progress from the locate pipeline.

    The default implementation ignores everything; the job store subclasses it
    to record status, partial geo results and trace entries on a job.
    """

    def stage(self, status: JobStatus) -> None:
        pass

    def trace(self, step: str, detail: str = "") -> None:
        pass

    def reverse_resolved(self, reverse: ReverseGeoResult) -> None:
        pass

    def pois_found(self, pois: List[Poi], radius_m: int) -> None:
        pass

    def geo_resolved(self, context: GeoContext) -> None:
        pass


NULL_OBSERVER = PipelineObserver()
