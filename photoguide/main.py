from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import time
import uuid

import httpx
import structlog

from photoguide.core.config import Settings, settings as default_settings
from photoguide.core.errors import PhotoGuideError, truncate
from photoguide.core.middleware import ClientFingerprintMiddleware
from photoguide.api.routes import router as api_router
from photoguide.logging import configure_logging
from photoguide.middleware.logging import LoggingMiddleware
from photoguide.models.dto import ErrorResponse
from photoguide.services.container import Services, build_services
from photoguide.services.housekeeping import run_sweeper

logger = structlog.get_logger(__name__)

# --- Application Lifecycle Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings)
    logger.info("application_startup", version=settings.VERSION, env=settings.ENV, locate_mode=settings.LOCATE_MODE)

    owned_client: Optional[httpx.AsyncClient] = None
    if getattr(app.state, "services", None) is None:
        owned_client = httpx.AsyncClient(
            headers={"User-Agent": settings.HTTP_USER_AGENT},
            follow_redirects=True,
        )
        app.state.services = build_services(settings, owned_client)
    services: Services = app.state.services

    sweeper = asyncio.create_task(
        run_sweeper(services.sweepables(), settings.SWEEP_INTERVAL_SECONDS), name="sweeper"
    )

    yield

    logger.info("application_shutdown", pending_jobs=len(services.jobs))
    sweeper.cancel()
    await asyncio.gather(sweeper, return_exceptions=True)
    await services.jobs.shutdown()
    if owned_client is not None:
        close_model = getattr(services.model, "close", None)
        if close_model is not None:
            await close_model()
        await owned_client.aclose()


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the application. Tests pass pre-wired ``services``; otherwise they are built at startup."""
    settings = settings or (services.settings if services else default_settings)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=settings.BRIEF_DESCRIPTION,
        lifespan=lifespan,
        docs_url="/docs" if settings.ENV == "development" else None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.services = services

    app.add_middleware(ClientFingerprintMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.include_router(api_router, prefix="/api")

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check():
        return {"ok": True, "ts": int(time.time() * 1000)}

    @app.exception_handler(PhotoGuideError)
    async def photoguide_error_handler(request: Request, exc: PhotoGuideError):
        if exc.status_code >= 500:
            logger.error("request_failed", error_type=exc.__class__.__name__, error=truncate(exc.message))
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.message).model_dump(exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(error="; ".join(problems) or "Invalid request.").model_dump(exclude_none=True),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        error_id = str(uuid.uuid4())
        logger.error("unhandled_exception", error_id=error_id, error=truncate(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error="Server error", error_id=error_id).model_dump(),
        )

    return app


app = create_app()
