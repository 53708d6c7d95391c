import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

log = structlog.get_logger()

# Polling endpoints are hit every second or so by each client
QUIET_PATHS = {"/api/locate_result", "/health"}

class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        clear_contextvars()

        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex

        bind_contextvars(
            request_id=request_id,
            http_method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        request.state.request_id = request_id

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            log.exception(
                "http_request_failed",
                elapsed_ms=round(elapsed_ms, 2),
                error=str(e)
            )
            raise

        elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
        fields = {
            "status_code": response.status_code,
            "elapsed_ms": elapsed_ms,
            "content_length": request.headers.get("content-length"),
        }
        if response.status_code >= 500:
            log.error("http_request", **fields)
        elif response.status_code >= 400:
            log.warning("http_request", **fields)
        elif request.url.path in QUIET_PATHS:
            log.debug("http_request", **fields)
        else:
            log.info("http_request", **fields)

        response.headers["X-Request-ID"] = request_id
        return response
