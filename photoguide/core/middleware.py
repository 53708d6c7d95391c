from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from photoguide.utils.security import client_fingerprint


class ClientFingerprintMiddleware(BaseHTTPMiddleware):
    """
    Attaches a best-effort client fingerprint (address + truncated user agent)
    to ``request.state.fingerprint``. The locate flow stores the photo
    description under it and chat follow-ups read it back. Collisions between
    clients are tolerated; the fingerprint is never used for access control.
    """
    async def dispatch(self, request: Request, call_next):
        request.state.fingerprint = client_fingerprint(request)
        return await call_next(request)
