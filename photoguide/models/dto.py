from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

# --- Geo Data Models ---

class GeoPoint(BaseModel):
    """Coordinates supplied with a photo."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    lat: float = Field(..., description="Latitude.")
    lon: float = Field(..., description="Longitude.")
    accuracy_m: Optional[float] = Field(None, alias="accuracyMeters", description="Reported GPS accuracy in metres.")

class ReverseGeoResult(BaseModel):
    """Human-readable description of a coordinate. All fields null when every provider failed."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    display_name: Optional[str] = Field(None, alias="displayName")
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None

class Poi(BaseModel):
    """A named point of interest near the query point."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Public name, de-duplication key (case-insensitive).")
    type: str = Field("poi", description="Category derived from the first matching tag rule.")
    distance_m: int = Field(..., description="Great-circle distance from the query point, rounded.")
    hint: str = Field("", description="Up to 3 matched tag=value pairs.")

class GeoContext(BaseModel):
    """Reverse geocode plus nearby POIs used to ground identification."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    reverse: ReverseGeoResult = Field(default_factory=ReverseGeoResult)
    pois: List[Poi] = Field(default_factory=list)
    radius_m: int = Field(..., alias="radiusM", description="Radius that actually produced `pois`.")

# --- Model Output ---

class Candidate(BaseModel):
    """One ranked place guess."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    why: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    search_query: str = Field(..., alias="searchQuery")

class LocateAnswer(BaseModel):
    """Structured answer of the vision model. Exactly three candidates, best first."""
    model_config = ConfigDict(populate_by_name=True)

    photo_context: str = Field(..., alias="photoContext")
    candidates: List[Candidate] = Field(..., min_length=3, max_length=3)

# --- Jobs ---

class JobStatus(str, Enum):
    PENDING = "pending"
    GEO = "geo"
    OPENAI = "openai"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.ERROR)

class TraceEntry(BaseModel):
    ts: float
    step: str
    detail: str = ""

class JobView(BaseModel):
    """Snapshot of a job as seen by a polling client."""
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    status: JobStatus
    created_at: float = Field(..., alias="createdAt")
    reverse: Optional[str] = None
    pois_count: int = Field(0, alias="poisCount")
    photo_context: Optional[str] = Field(None, alias="photoContext")
    candidates: Optional[List[Candidate]] = None
    error: Optional[str] = None
    trace: List[TraceEntry] = Field(default_factory=list)

    def to_envelope(self) -> Dict[str, Any]:
        """Status envelope returned by /api/locate_result."""
        if self.status == JobStatus.DONE:
            return {
                "status": self.status.value,
                "photoContext": self.photo_context,
                "candidates": [c.model_dump(by_alias=True) for c in self.candidates or []],
            }
        if self.status == JobStatus.ERROR:
            return {"status": self.status.value, "error": self.error}
        return {"status": self.status.value, "reverse": self.reverse, "poisCount": self.pois_count}

# --- API Request / Response Models ---

class LocateJobResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")

class LocateSyncResponse(BaseModel):
    candidates: List[Candidate]

class ChatRequest(BaseModel):
    """Request model for the /api/chat endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    place: str = Field(..., description="Name of the identified place.")
    message: Optional[str] = Field(None, description="Follow-up question; empty or a keyword asks for facts.")
    photo_context: Optional[str] = Field(None, alias="photoContext")
    facts_instruction: Optional[str] = Field(None, alias="factsInstruction")

class ChatResponse(BaseModel):
    text: str

class PlaceImageResponse(BaseModel):
    title: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    page_url: Optional[str] = Field(None, alias="pageUrl")

    model_config = ConfigDict(populate_by_name=True)

# --- Error Response Model ---

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A human-readable explanation.")
    error_id: Optional[str] = Field(None, description="Correlation id for unexpected failures.")
