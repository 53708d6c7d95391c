import hmac
import logging
from typing import Optional

from fastapi import Request, status

from photoguide.core.config import Settings
from photoguide.core.errors import ClientInputError, UnknownResource

logger = logging.getLogger(__name__)

DEBUG_TOKEN_HEADER = "x-debug-token"
FINGERPRINT_UA_CHARS = 80


def get_client_ip(request: Request) -> str:
    """
    Extracts the client's IP address from the request.
    Assumes a standard proxy setup where the client IP is the first
    entry of the 'x-forwarded-for' header.
    """
    x_forwarded_for = request.headers.get("x-forwarded-for")
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()

    return request.client.host if request.client else "unknown_ip"


def client_fingerprint(request: Request) -> str:
    """
    Best-effort correlation key for the photo context cache: client address
    plus a truncated user agent. Two clients behind one proxy with the same
    browser share a key; this is a convenience, never an identity.
    """
    ua = request.headers.get("user-agent", "")[:FINGERPRINT_UA_CHARS]
    return f"{get_client_ip(request)}|{ua}"


def verify_debug_token(settings: Settings, token: Optional[str]) -> None:
    """
    Debug endpoints are hidden (404) when no DEBUG_TOKEN is configured and
    refused (401) when the header does not match.
    """
    if not settings.DEBUG_TOKEN:
        raise UnknownResource("Not found.")
    if not token or not hmac.compare_digest(token.encode("utf-8"), settings.DEBUG_TOKEN.encode("utf-8")):
        logger.warning("Rejected debug request with missing or invalid token.")
        raise ClientInputError("Invalid debug token.", status_code=status.HTTP_401_UNAUTHORIZED)
