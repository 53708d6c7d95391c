from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
import structlog

from photoguide.core.config import Settings
from photoguide.core.errors import UpstreamFailure
from photoguide.models.dto import PlaceImageResponse
from photoguide.utils.http import request_json

logger = structlog.get_logger(__name__)


class WikipediaImageService:
    """Find a representative thumbnail for a place name: search, then page summary."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_url: str,
        rest_url: str,
        timeout: float = 5.0,
        user_agent: Optional[str] = None,
    ):
        self.client = client
        self.api_url = api_url
        self.rest_url = rest_url if rest_url.endswith("/") else rest_url + "/"
        self.timeout = timeout
        self.headers = {"User-Agent": user_agent} if user_agent else None

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "WikipediaImageService":
        return cls(
            client,
            settings.WIKIPEDIA_API_URL,
            settings.WIKIPEDIA_REST_URL,
            settings.WIKIPEDIA_TIMEOUT_SECONDS,
            settings.HTTP_USER_AGENT,
        )

    async def _search_title(self, query: str) -> Optional[str]:
        data = await request_json(
            self.client,
            "GET",
            self.api_url,
            source="wikipedia",
            timeout=self.timeout,
            params={
                "action": "query",
                "list": "search",
                "srsearch": query,
                "srlimit": 1,
                "format": "json",
            },
            headers=self.headers,
        )
        if not isinstance(data, dict):
            raise UpstreamFailure("wikipedia search returned a malformed body", source="wikipedia")
        hits = (data.get("query") or {}).get("search") or []
        if not hits or not isinstance(hits[0], dict):
            return None
        return hits[0].get("title")

    async def _summary(self, title: str) -> Optional[Dict[str, Any]]:
        """Page summary, or None when the page is gone (search index lagging behind deletions)."""
        url = self.rest_url + quote(title.replace(" ", "_"), safe="")
        data = await request_json(
            self.client,
            "GET",
            url,
            source="wikipedia",
            timeout=self.timeout,
            headers=self.headers,
            missing_ok=True,
        )
        if data is not None and not isinstance(data, dict):
            raise UpstreamFailure("wikipedia summary returned a malformed body", source="wikipedia")
        return data

    async def find_image(self, query: str) -> PlaceImageResponse:
        """Raises ``UpstreamError`` when Wikipedia is unreachable; empty response when nothing matches."""
        title = await self._search_title(query)
        if not title:
            logger.info("place_image_not_found", query=query)
            return PlaceImageResponse()

        summary = await self._summary(title)
        if summary is None:
            logger.info("place_image_page_missing", query=query, title=title)
            return PlaceImageResponse()

        thumbnail = summary.get("thumbnail") or summary.get("originalimage") or {}
        page = ((summary.get("content_urls") or {}).get("desktop") or {}).get("page")
        return PlaceImageResponse(
            title=summary.get("title") or title,
            image_url=thumbnail.get("source"),
            page_url=page,
        )
