"""
Vision identification: photo + optional geo context to three ranked place candidates.

When nearby POIs are known the model is required to pick from them, unless the
photo clearly contradicts the coordinates, in which case the justification
carries ``CONFLICT_SENTINEL`` and the confidence stays at or below
``CONFLICT_MAX_CONFIDENCE``. An answer that ignores the POI list gets exactly
one repair call; a failed repair falls back to the original answer.
"""

import time
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from photoguide.core.errors import ModelContractViolation, truncate
from photoguide.models.dto import Candidate, GeoContext, GeoPoint, LocateAnswer, Poi
from photoguide.services.model_client import GenerationModel
from photoguide.services.observer import NULL_OBSERVER, PipelineObserver

logger = structlog.get_logger(__name__)

CONFLICT_SENTINEL = "coordinate conflict"
CONFLICT_MAX_CONFIDENCE = 0.2
MAX_REPAIR_ATTEMPTS = 1

LOCATE_SCHEMA_NAME = "place_candidates"

_CANDIDATE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string"},
        "why": {"type": "string"},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "searchQuery": {"type": "string"},
    },
    "required": ["name", "why", "confidence", "searchQuery"],
}

LOCATE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "photoContext": {"type": "string"},
        "candidates": {
            "type": "array",
            "minItems": 3,
            "maxItems": 3,
            "items": _CANDIDATE_SCHEMA,
        },
    },
    "required": ["photoContext", "candidates"],
}

_BASE_INSTRUCTIONS = """You identify the real-world place shown in a photo.
Return JSON with:
- "photoContext": a neutral visual description of the photo (architecture, materials, signage, landscape, people, weather). Do NOT name or guess the place in this field.
- "candidates": exactly 3 place candidates ranked best first. Each has "name" (specific place name), "why" (justification citing visual cues), "confidence" (0 to 1) and "searchQuery" (a short query to find a photo of the place)."""


def format_poi_list(pois: List[Poi]) -> str:
    lines = []
    for poi in pois:
        line = f"- {poi.name} ({poi.type}, {poi.distance_m} m"
        if poi.hint:
            line += f"; {poi.hint}"
        lines.append(line + ")")
    return "\n".join(lines)


def _grounding_rule() -> str:
    return (
        "HARD CONSTRAINT: every candidate MUST be taken from the nearby places list, using the name as listed, "
        "unless the visual evidence clearly contradicts the coordinates. In that case the candidate's \"why\" "
        f"MUST contain the exact phrase \"{CONFLICT_SENTINEL}\" and its confidence MUST be {CONFLICT_MAX_CONFIDENCE} or lower."
    )


def _location_block(geo: GeoContext, point: Optional[GeoPoint]) -> str:
    lines = ["Location evidence:"]
    if point is not None:
        coords = f"- Coordinates: {point.lat:.6f}, {point.lon:.6f}"
        if point.accuracy_m is not None:
            coords += f" (accuracy about {point.accuracy_m:.0f} m)"
        lines.append(coords)
    reverse = geo.reverse
    if reverse.display_name:
        lines.append(f"- Address: {reverse.display_name}")
    area = ", ".join(p for p in (reverse.city, reverse.state, reverse.country) if p)
    if area:
        lines.append(f"- Area: {area}")
    return "\n".join(lines)


def build_prompt(
    user_text: Optional[str],
    geo: Optional[GeoContext],
    point: Optional[GeoPoint] = None,
) -> str:
    parts = [_BASE_INSTRUCTIONS]
    if geo is None:
        parts.append(
            "No location data is available. Rely only on visual cues in the photo and on the user's text."
        )
    elif not geo.pois:
        parts.append(_location_block(geo, point))
        parts.append(
            f"No named places were found within {geo.radius_m} m. Use the address as a strong hint, "
            "but let the visual cues decide."
        )
    else:
        parts.append(_location_block(geo, point))
        parts.append(f"Nearby places within {geo.radius_m} m (nearest first):\n{format_poi_list(geo.pois)}")
        parts.append(_grounding_rule())
    if user_text and user_text.strip():
        parts.append(f"User note: {user_text.strip()}")
    return "\n\n".join(parts)


def build_repair_prompt(geo: GeoContext) -> str:
    return "\n\n".join(
        [
            _BASE_INSTRUCTIONS,
            "Your previous answer ignored the nearby places list. Answer again.",
            f"Nearby places within {geo.radius_m} m (nearest first):\n{format_poi_list(geo.pois)}",
            _grounding_rule(),
        ]
    )


def names_overlap(a: str, b: str) -> bool:
    a, b = a.strip().lower(), b.strip().lower()
    if not a or not b:
        return False
    return a in b or b in a


def needs_repair(geo: Optional[GeoContext], candidates: List[Candidate]) -> bool:
    """True when POI evidence existed and the answer neither used it nor flagged a conflict."""
    if geo is None or not geo.pois:
        return False
    for candidate in candidates:
        if CONFLICT_SENTINEL in candidate.why.lower():
            return False
        if any(names_overlap(candidate.name, poi.name) for poi in geo.pois):
            return False
    return True


def parse_answer(raw: Any) -> LocateAnswer:
    if not isinstance(raw, dict):
        raise ModelContractViolation(f"model answer is not a JSON object: {truncate(raw, 120)}")
    try:
        answer = LocateAnswer.model_validate(raw)
    except ValidationError as e:
        raise ModelContractViolation(
            f"model answer failed validation ({e.error_count()} errors): {truncate(e, 300)}"
        ) from e
    return cap_conflict_confidence(answer)


def cap_conflict_confidence(answer: LocateAnswer) -> LocateAnswer:
    capped = []
    for candidate in answer.candidates:
        if CONFLICT_SENTINEL in candidate.why.lower() and candidate.confidence > CONFLICT_MAX_CONFIDENCE:
            candidate = candidate.model_copy(update={"confidence": CONFLICT_MAX_CONFIDENCE})
        capped.append(candidate)
    return answer.model_copy(update={"candidates": capped})


class VisionIdentifier:
    def __init__(self, model: GenerationModel):
        self.model = model

    async def _ask(
        self, prompt: str, image_bytes: bytes, mime_type: str
    ) -> LocateAnswer:
        raw = await self.model.complete(
            prompt,
            image_bytes=image_bytes,
            mime_type=mime_type,
            schema=LOCATE_SCHEMA,
            schema_name=LOCATE_SCHEMA_NAME,
        )
        return parse_answer(raw)

    async def identify(
        self,
        image_bytes: bytes,
        mime_type: str,
        user_text: Optional[str],
        geo: Optional[GeoContext],
        point: Optional[GeoPoint] = None,
        observer: PipelineObserver = NULL_OBSERVER,
    ) -> LocateAnswer:
        started = time.perf_counter()
        prompt = build_prompt(user_text, geo, point)
        answer = await self._ask(prompt, image_bytes, mime_type)
        observer.trace("model_answer", ", ".join(c.name for c in answer.candidates))

        attempts = 0
        while attempts < MAX_REPAIR_ATTEMPTS and needs_repair(geo, answer.candidates):
            attempts += 1
            observer.trace("repair", "candidates ignored the nearby places list")
            try:
                answer = await self._ask(build_repair_prompt(geo), image_bytes, mime_type)
                observer.trace("repair_answer", ", ".join(c.name for c in answer.candidates))
            except Exception as e:
                logger.warning("repair_failed_keeping_original", error=truncate(e))
                observer.trace("repair_failed", truncate(e, 120))

        logger.info(
            "identify_completed",
            pois=len(geo.pois) if geo else None,
            repaired=attempts > 0,
            top=answer.candidates[0].name,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return answer
