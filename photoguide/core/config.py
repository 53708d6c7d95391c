from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "Photo Place Guide"
    VERSION: str = "0.3.0"
    BRIEF_DESCRIPTION: str = "Identifies the place shown in a photo using nearby POIs and a vision model, then answers questions about it."
    ENV: str = Field("development", description="Application environment (e.g., production, development)")
    LOG_LEVEL: str = Field("INFO", description="Root log level (DEBUG, INFO, WARNING, ...)")

    # --- Model capability ---
    OPENAI_API_KEY: Optional[str] = Field(None, description="API key for the vision/text model")
    OPENAI_MODEL: str = Field("gpt-4.1-mini", description="Model used for locate and chat")
    OPENAI_TIMEOUT_SECONDS: float = 45.0

    # --- Reverse geocoding ---
    HTTP_USER_AGENT: str = "photo-place-guide/0.3 (+https://github.com/photo-place-guide)"
    NOMINATIM_URL: str = "https://nominatim.openstreetmap.org/reverse"
    PHOTON_URL: str = "https://photon.komoot.io/reverse"
    REVERSE_GEOCODE_TIMEOUT_SECONDS: float = 2.5
    REVERSE_GEOCODE_FALLBACK: bool = Field(True, description="Try the secondary provider when the primary fails")

    # --- POI search (Overpass) ---
    OVERPASS_URLS: List[str] = Field(
        [
            "https://overpass-api.de/api/interpreter",
            "https://overpass.kumi.systems/api/interpreter",
            "https://overpass.private.coffee/api/interpreter",
        ],
        description="Interchangeable Overpass endpoints, tried in order",
    )
    OVERPASS_TIMEOUT_SECONDS: float = 6.0
    POI_BASE_RADIUS_M: int = 150
    POI_RADIUS_MULTIPLIERS: List[int] = [1, 2, 4]
    POI_MIN_RESULTS: int = 3
    POI_MAX_RESULTS: int = 25

    # --- Geo context ---
    GEO_STRATEGY: str = Field("parallel", description="'parallel' (budgeted) or 'sequential' (widening only)")
    GEO_TOTAL_BUDGET_SECONDS: float = 12.0
    GEO_CACHE_TTL_SECONDS: int = 600

    # --- Jobs and short-lived caches ---
    LOCATE_MODE: str = Field("job", description="'job' returns a jobId to poll, 'sync' answers inline")
    JOB_TTL_SECONDS: int = 900
    JOB_TRACE_LIMIT: int = 50
    PHOTO_CONTEXT_TTL_SECONDS: int = 1800
    SWEEP_INTERVAL_SECONDS: float = 60.0

    # --- Uploads ---
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # --- Encyclopedia thumbnails ---
    WIKIPEDIA_API_URL: str = "https://en.wikipedia.org/w/api.php"
    WIKIPEDIA_REST_URL: str = "https://en.wikipedia.org/api/rest_v1/page/summary/"
    WIKIPEDIA_TIMEOUT_SECONDS: float = 5.0

    # --- Operational tooling ---
    DEBUG_TOKEN: Optional[str] = Field(None, description="Shared secret for /api/debug/* (disabled when unset)")

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()

def is_valid_coordinate(lat: float, lon: float) -> bool:
    """Latitude within [-90, 90] and longitude within [-180, 180]."""
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0
