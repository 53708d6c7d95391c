from typing import Any, Dict, Optional

import httpx

from photoguide.core.errors import UpstreamFailure, UpstreamTimeout


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    source: str,
    timeout: float,
    params: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    missing_ok: bool = False,
) -> Any:
    """
    Perform one outbound call and decode its JSON body.

    Timeouts become ``UpstreamTimeout``; bad statuses, transport errors and
    undecodable bodies become ``UpstreamFailure``. With ``missing_ok`` a 404
    answers ``None`` instead.
    """
    try:
        response = await client.request(
            method, url, params=params, data=data, headers=headers, timeout=timeout
        )
        if missing_ok and response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()
    except httpx.TimeoutException as e:
        raise UpstreamTimeout(f"{source} timed out after {timeout}s", source=source) from e
    except httpx.HTTPStatusError as e:
        raise UpstreamFailure(
            f"{source} returned status {e.response.status_code}", source=source
        ) from e
    except httpx.HTTPError as e:
        raise UpstreamFailure(f"{source} request failed: {e!r}", source=source) from e
    except ValueError as e:
        raise UpstreamFailure(f"{source} returned a malformed body", source=source) from e
