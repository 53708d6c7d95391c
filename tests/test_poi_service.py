from urllib.parse import parse_qs

import httpx
import pytest

from photoguide.core.errors import UpstreamFailure, UpstreamTimeout
from photoguide.services.poi_service import (
    PoiLocator,
    build_overpass_query,
    classify,
    parse_elements,
    rank_pois,
)

from stubs import poi

LAT, LON = 48.8584, 2.2945
PRIMARY = "https://overpass.primary.test/api/interpreter"
MIRROR = "https://overpass.mirror.test/api/interpreter"


def node(name, lat, lon, **tags):
    element = {"type": "node", "lat": lat, "lon": lon, "tags": dict(tags)}
    if name is not None:
        element["tags"]["name"] = name
    return element


def way(name, lat, lon, **tags):
    return {"type": "way", "center": {"lat": lat, "lon": lon}, "tags": {"name": name, **tags}}


def test_query_covers_every_allowlisted_tag():
    query = build_overpass_query(LAT, LON, 300)
    assert query.startswith("[out:json]")
    assert "around:300,48.858400,2.294500" in query
    for selector in ('["tourism"]', '["historic"]', '["amenity"="place_of_worship"]',
                     '["building"="temple"]', '["man_made"]', '["leisure"="park"]'):
        assert selector in query
    assert query.count('["name"]') == 6
    assert query.rstrip().endswith("out center tags;")


def test_classify_uses_first_matching_rule_and_builds_hint():
    assert classify({"historic": "monument", "tourism": "attraction"}) == (
        "tourism",
        "tourism=attraction, historic=monument",
    )
    assert classify({"amenity": "place_of_worship", "religion": "christian"}) == (
        "place_of_worship",
        "amenity=place_of_worship",
    )
    assert classify({"leisure": "garden"}) == ("poi", "")


def test_hint_is_limited_to_three_pairs():
    _, hint = classify({
        "tourism": "attraction", "historic": "yes", "man_made": "tower", "leisure": "park",
    })
    assert hint.count("=") == 3


def test_parse_drops_unnamed_and_unlocated_elements():
    elements = [
        node(None, LAT, LON, tourism="attraction"),
        {"type": "relation", "tags": {"name": "Floating", "historic": "yes"}},
        way("Champ de Mars", 48.8556, 2.2986, leisure="park"),
        node("Eiffel Tower", 48.85837, 2.294481, tourism="attraction", man_made="tower"),
    ]
    pois = parse_elements(elements, LAT, LON, limit=25)
    assert [p.name for p in pois] == ["Eiffel Tower", "Champ de Mars"]
    assert pois[1].type == "park"
    assert pois[0].hint == "tourism=attraction, man_made=tower"


def test_duplicate_names_keep_the_nearest():
    elements = [
        node("Statue of Liberty", 48.8600, 2.2950, tourism="attraction"),
        node("statue of liberty", 48.8585, 2.2946, historic="memorial"),
    ]
    pois = parse_elements(elements, LAT, LON, limit=25)
    assert len(pois) == 1
    assert pois[0].name == "statue of liberty"
    assert pois[0].distance_m < 50


def test_rank_caps_and_sorts():
    many = [poi(f"Place {i}", distance_m=1000 - i) for i in range(60)]
    ranked = rank_pois(many, limit=25)
    assert len(ranked) == 25
    distances = [p.distance_m for p in ranked]
    assert distances == sorted(distances)
    assert distances[0] == 941


def _overpass_body(elements):
    return {"version": 0.6, "elements": elements}


@pytest.mark.asyncio
async def test_search_posts_query_and_parses(mock_http):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json=_overpass_body([
            node("Eiffel Tower", 48.85837, 2.294481, tourism="attraction"),
        ]))

    locator = PoiLocator(mock_http(handler), [PRIMARY], timeout=2)
    pois = await locator.search(LAT, LON, 150)
    assert seen["url"] == PRIMARY
    assert "around:150" in seen["form"]["data"][0]
    assert pois[0].name == "Eiffel Tower"
    assert pois[0].type == "tourism"


@pytest.mark.asyncio
async def test_search_falls_back_to_next_endpoint(mock_http):
    hits = []

    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(str(request.url))
        if str(request.url) == PRIMARY:
            return httpx.Response(429, text="rate limited")
        return httpx.Response(200, json=_overpass_body([node("Louvre", 48.8606, 2.3376, tourism="museum")]))

    locator = PoiLocator(mock_http(handler), [PRIMARY, MIRROR], timeout=2)
    pois = await locator.search(LAT, LON, 150)
    assert hits == [PRIMARY, MIRROR]
    assert [p.name for p in pois] == ["Louvre"]


@pytest.mark.asyncio
async def test_search_stops_at_first_success(mock_http):
    hits = []

    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(str(request.url))
        return httpx.Response(200, json=_overpass_body([]))

    locator = PoiLocator(mock_http(handler), [PRIMARY, MIRROR], timeout=2)
    assert await locator.search(LAT, LON, 150) == []
    assert hits == [PRIMARY]


@pytest.mark.asyncio
async def test_search_raises_last_error_when_all_endpoints_fail(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == PRIMARY:
            return httpx.Response(504)
        raise httpx.ReadTimeout("slow", request=request)

    locator = PoiLocator(mock_http(handler), [PRIMARY, MIRROR], timeout=2)
    with pytest.raises(UpstreamTimeout):
        await locator.search(LAT, LON, 150)


@pytest.mark.asyncio
async def test_malformed_body_is_an_upstream_failure(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"remark": "runtime error"})

    locator = PoiLocator(mock_http(handler), [PRIMARY], timeout=2)
    with pytest.raises(UpstreamFailure):
        await locator.search(LAT, LON, 150)
