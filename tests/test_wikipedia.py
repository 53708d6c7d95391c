import httpx
import pytest

from photoguide.core.errors import UpstreamFailure, UpstreamTimeout
from photoguide.services.wikipedia import WikipediaImageService

API = "https://wiki.test/w/api.php"
REST = "https://wiki.test/api/rest_v1/page/summary"

SUMMARY = {
    "title": "Eiffel Tower",
    "thumbnail": {"source": "https://upload.wiki.test/eiffel-320px.jpg"},
    "content_urls": {"desktop": {"page": "https://wiki.test/wiki/Eiffel_Tower"}},
}


@pytest.mark.asyncio
async def test_search_then_summary(mock_http):
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == "/w/api.php":
            assert request.url.params["srsearch"] == "Eiffel Tower Paris"
            return httpx.Response(200, json={"query": {"search": [{"title": "Eiffel Tower"}]}})
        return httpx.Response(200, json=SUMMARY)

    service = WikipediaImageService(mock_http(handler), API, REST, timeout=1)
    image = await service.find_image("Eiffel Tower Paris")
    assert paths == ["/w/api.php", "/api/rest_v1/page/summary/Eiffel_Tower"]
    assert image.title == "Eiffel Tower"
    assert image.image_url == "https://upload.wiki.test/eiffel-320px.jpg"
    assert image.page_url == "https://wiki.test/wiki/Eiffel_Tower"


@pytest.mark.asyncio
async def test_no_search_hit_is_empty(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"query": {"search": []}})

    image = await WikipediaImageService(mock_http(handler), API, REST).find_image("zzzz")
    assert image.model_dump() == {"title": None, "image_url": None, "page_url": None}


@pytest.mark.asyncio
async def test_timeout_is_an_upstream_error(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(UpstreamTimeout):
        await WikipediaImageService(mock_http(handler), API, REST).find_image("Louvre")


@pytest.mark.asyncio
async def test_missing_summary_page_is_empty(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/w/api.php":
            return httpx.Response(200, json={"query": {"search": [{"title": "Ghost Page"}]}})
        return httpx.Response(404, json={"type": "not_found"})

    image = await WikipediaImageService(mock_http(handler), API, REST).find_image("ghost")
    assert image.model_dump() == {"title": None, "image_url": None, "page_url": None}


@pytest.mark.asyncio
async def test_summary_server_error_still_fails(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/w/api.php":
            return httpx.Response(200, json={"query": {"search": [{"title": "Louvre"}]}})
        return httpx.Response(503)

    with pytest.raises(UpstreamFailure):
        await WikipediaImageService(mock_http(handler), API, REST).find_image("Louvre")


@pytest.mark.asyncio
@pytest.mark.parametrize("search_body,summary_body", [
    (["not", "an", "object"], SUMMARY),
    ({"query": {"search": [{"title": "Eiffel Tower"}]}}, ["not", "an", "object"]),
], ids=["search", "summary"])
async def test_non_object_body_is_an_upstream_failure(mock_http, search_body, summary_body):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/w/api.php":
            return httpx.Response(200, json=search_body)
        return httpx.Response(200, json=summary_body)

    with pytest.raises(UpstreamFailure):
        await WikipediaImageService(mock_http(handler), API, REST).find_image("Eiffel Tower")
