# photoguide/api/routes.py
# Public API: locate (job or synchronous), job polling, chat follow-ups,
# place thumbnails, plus token-guarded debug probes.

import math
import time
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, Header, Query, Request, UploadFile

from photoguide.core.config import is_valid_coordinate
from photoguide.core.errors import ClientInputError, PhotoGuideError, UpstreamError, truncate
from photoguide.models.dto import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    GeoPoint,
    LocateJobResponse,
    LocateSyncResponse,
    PlaceImageResponse,
)
from photoguide.services.container import Services
from photoguide.services.locate import LocateRequest
from photoguide.services.poi_service import PoiLocator
from photoguide.utils.security import client_fingerprint, verify_debug_token

router = APIRouter()
logger = structlog.get_logger(__name__)

ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------
def get_services(request: Request) -> Services:
    return request.app.state.services


def get_fingerprint(request: Request) -> str:
    return getattr(request.state, "fingerprint", None) or client_fingerprint(request)


def require_debug_token(
    services: Services = Depends(get_services),
    x_debug_token: Optional[str] = Header(None),
) -> None:
    verify_debug_token(services.settings, x_debug_token)


def _parse_float(value: Optional[str], field: str) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        number = float(value.strip())
    except ValueError:
        raise ClientInputError(f"'{field}' must be a number.")
    if not math.isfinite(number):
        raise ClientInputError(f"'{field}' must be a finite number.")
    return number


def parse_point(lat: Optional[str], lon: Optional[str], accuracy: Optional[str]) -> Optional[GeoPoint]:
    """Coordinates are optional, but when given both must be present and in range."""
    lat_value = _parse_float(lat, "lat")
    lon_value = _parse_float(lon, "lon")
    if lat_value is None and lon_value is None:
        return None
    if lat_value is None or lon_value is None:
        raise ClientInputError("'lat' and 'lon' must be provided together.")
    if not is_valid_coordinate(lat_value, lon_value):
        raise ClientInputError("Coordinates are out of range.")
    try:
        accuracy_value = _parse_float(accuracy, "accuracyMeters")
    except ClientInputError:
        logger.info("accuracy_ignored", raw=truncate(accuracy, 40))
        accuracy_value = None
    return GeoPoint(lat=lat_value, lon=lon_value, accuracy_m=accuracy_value)

# ----------------------------------------------------------------------
# Locate
# ----------------------------------------------------------------------
@router.post("/locate", responses={**ERROR_RESPONSES, 413: {"model": ErrorResponse}})
async def locate(
    request: Request,
    image: Optional[UploadFile] = File(None),
    message: Optional[str] = Form(None),
    lat: Optional[str] = Form(None),
    lon: Optional[str] = Form(None),
    accuracyMeters: Optional[str] = Form(None),
    services: Services = Depends(get_services),
    fingerprint: str = Depends(get_fingerprint),
):
    """Identify the place in a photo. Answers a jobId to poll, or the candidates in sync mode."""
    if image is None:
        raise ClientInputError("Missing form field 'image'.")
    max_bytes = services.settings.MAX_UPLOAD_BYTES
    data = await image.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ClientInputError(f"Image exceeds {max_bytes} bytes.", status_code=413)
    if not data:
        raise ClientInputError("Uploaded image is empty.")

    point = parse_point(lat, lon, accuracyMeters)
    mime_type = image.content_type or "image/jpeg"
    user_text = message.strip() if message and message.strip() else None

    if services.settings.LOCATE_MODE == "sync":
        started = time.perf_counter()
        try:
            answer = await services.pipeline.run(
                LocateRequest(
                    image_bytes=data,
                    mime_type=mime_type,
                    point=point,
                    user_text=user_text,
                    fingerprint=fingerprint,
                )
            )
        except UpstreamError as e:
            logger.error(
                "locate_failed",
                error=truncate(e),
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            raise PhotoGuideError(f"Locate failed: {e.message}")
        if await request.is_disconnected():
            logger.info("locate_client_disconnected")
        return LocateSyncResponse(candidates=answer.candidates).model_dump(by_alias=True)

    job_id = services.jobs.create(
        data,
        mime_type=mime_type,
        lat=point.lat if point else None,
        lon=point.lon if point else None,
        acc=point.accuracy_m if point else None,
        user_text=user_text,
        fingerprint=fingerprint,
    )
    logger.info("locate_job_created", job_id=job_id, has_coords=point is not None, bytes=len(data))
    return LocateJobResponse(job_id=job_id).model_dump(by_alias=True)


@router.get("/locate_result", responses=ERROR_RESPONSES)
async def locate_result(
    jobId: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Poll a locate job. Pipeline failures are reported with status 200 and ``status: error``."""
    if not jobId:
        raise ClientInputError("Missing 'jobId'.")
    return services.jobs.get(jobId).to_envelope()

# ----------------------------------------------------------------------
# Chat and place images
# ----------------------------------------------------------------------
@router.post("/chat", response_model=ChatResponse, responses=ERROR_RESPONSES)
async def chat(
    data: ChatRequest,
    services: Services = Depends(get_services),
    fingerprint: str = Depends(get_fingerprint),
):
    photo_context = data.photo_context or services.photo_contexts.get(fingerprint)
    text = await services.chat.answer(
        data.place,
        message=data.message,
        photo_context=photo_context,
        facts_instruction=data.facts_instruction,
    )
    return ChatResponse(text=text)


@router.get("/place_image", response_model=PlaceImageResponse, responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse}})
async def place_image(
    q: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    if not q or not q.strip():
        raise ClientInputError("Missing 'q'.")
    return await services.wikipedia.find_image(q.strip())

# ----------------------------------------------------------------------
# Debug probes (X-Debug-Token)
# ----------------------------------------------------------------------
@router.get("/debug/reverse", dependencies=[Depends(require_debug_token)], include_in_schema=False)
async def debug_reverse(
    lat: float = Query(...),
    lon: float = Query(...),
    services: Services = Depends(get_services),
):
    """Call every reverse geocoding provider separately and report each outcome."""
    probes: List[Dict[str, Any]] = []
    for provider in services.geocoder.providers:
        started = time.perf_counter()
        probe: Dict[str, Any] = {"provider": provider.name}
        try:
            result = await provider.reverse(lat, lon)
            probe["ok"] = True
            probe["result"] = result.model_dump(by_alias=True)
        except Exception as e:
            probe["ok"] = False
            probe["error"] = truncate(e)
        probe["elapsedMs"] = round((time.perf_counter() - started) * 1000, 1)
        probes.append(probe)
    return {"lat": lat, "lon": lon, "providers": probes}


@router.get("/debug/pois", dependencies=[Depends(require_debug_token)], include_in_schema=False)
async def debug_pois(
    lat: float = Query(...),
    lon: float = Query(...),
    radius: Optional[int] = Query(None, ge=1, le=5000),
    services: Services = Depends(get_services),
):
    """Run one POI search at a fixed radius, bypassing the geo cache."""
    radius_m = radius or services.settings.POI_BASE_RADIUS_M
    started = time.perf_counter()
    body: Dict[str, Any] = {"lat": lat, "lon": lon, "radiusM": radius_m}
    if isinstance(services.poi_locator, PoiLocator):
        body["endpoints"] = services.poi_locator.endpoints
    try:
        pois = await services.poi_locator.search(lat, lon, radius_m)
        body.update(ok=True, count=len(pois), pois=[p.model_dump() for p in pois])
    except Exception as e:
        body.update(ok=False, error=truncate(e))
    body["elapsedMs"] = round((time.perf_counter() - started) * 1000, 1)
    return body


@router.get("/debug/job", dependencies=[Depends(require_debug_token)], include_in_schema=False)
async def debug_job(
    jobId: str = Query(...),
    services: Services = Depends(get_services),
):
    """Full job view including the recent trace and the geo context used."""
    job = services.jobs.get_job(jobId)
    view = job.view(services.jobs.trace_limit).model_dump(by_alias=True, mode="json")
    view["geoContext"] = job.geo_context.model_dump(by_alias=True) if job.geo_context else None
    view["imageRetained"] = job.image is not None
    view["coords"] = {"lat": job.lat, "lon": job.lon, "acc": job.acc}
    return view
