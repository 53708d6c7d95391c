import pytest

from photoguide.core.errors import UpstreamFailure
from photoguide.models.dto import ReverseGeoResult
from photoguide.services.geo_context import GeoContextBuilder, widening_radii
from photoguide.services.observer import PipelineObserver

from stubs import StubGeocoder, StubLocator, poi

LAT, LON = 48.8584, 2.2945

ONE = [poi("Eiffel Tower", 50)]
THREE = [poi("Eiffel Tower", 50), poi("Champ de Mars", 220), poi("Trocadero Gardens", 280)]
FOUR = THREE + [poi("Musee du Quai Branly", 450)]


def test_widening_radii_are_sorted_and_unique():
    assert widening_radii(150, (4, 1, 2, 2)) == [150, 300, 600]
    assert widening_radii(100, ()) == [100]


def test_unknown_strategy_rejected(geocoder, locator, geo_cache):
    with pytest.raises(ValueError):
        GeoContextBuilder(geocoder, locator, geo_cache, strategy="psychic")


def test_cache_key_rounds_to_about_a_metre():
    assert GeoContextBuilder.cache_key(48.858401, 2.294499, 150) == "48.85840,2.29450,150"
    assert GeoContextBuilder.cache_key(48.858404, 2.294501, 150) == GeoContextBuilder.cache_key(48.8584, 2.2945, 150)


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["sequential", "parallel"])
async def test_no_escalation_when_threshold_met(make_builder, strategy):
    locator = StubLocator(by_radius={150: THREE})
    context = await make_builder(strategy, locator=locator).build(LAT, LON)
    assert locator.radii == [150]
    assert context.radius_m == 150
    assert [p.name for p in context.pois] == [p.name for p in THREE]
    assert context.reverse.city == "Paris"


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["sequential", "parallel"])
async def test_radius_widens_until_threshold(make_builder, strategy):
    locator = StubLocator(by_radius={150: [], 300: ONE, 600: FOUR})
    context = await make_builder(strategy, locator=locator).build(LAT, LON)
    assert locator.radii == [150, 300, 600]
    assert context.radius_m == 600
    assert len(context.pois) == 4


@pytest.mark.asyncio
async def test_stops_at_largest_radius_and_reports_it(make_builder):
    locator = StubLocator(default=ONE)
    context = await make_builder(locator=locator).build(LAT, LON)
    assert locator.radii == [150, 300, 600]
    assert context.radius_m == 600
    assert len(context.pois) == 1


@pytest.mark.asyncio
async def test_locator_failure_keeps_previous_radius_result(make_builder, geo_cache):
    locator = StubLocator(by_radius={150: ONE, 300: UpstreamFailure("all mirrors down")})
    context = await make_builder(locator=locator).build(LAT, LON)
    assert locator.radii == [150, 300]
    assert context.radius_m == 150
    assert [p.name for p in context.pois] == ["Eiffel Tower"]
    # degraded results are not cached
    assert len(geo_cache) == 0


@pytest.mark.asyncio
async def test_locator_failure_at_base_radius_degrades_to_empty(make_builder):
    locator = StubLocator(default=UpstreamFailure("down"))
    context = await make_builder(locator=locator).build(LAT, LON)
    assert context.pois == []
    assert context.radius_m == 150
    assert context.reverse.city == "Paris"


@pytest.mark.asyncio
async def test_sequential_reverse_runs_before_pois(make_builder):
    order = []

    class OrderedGeocoder(StubGeocoder):
        async def resolve(self, lat, lon):
            order.append("reverse")
            return await super().resolve(lat, lon)

    class OrderedLocator(StubLocator):
        async def search(self, lat, lon, radius_m):
            order.append("pois")
            return await super().search(lat, lon, radius_m)

    await make_builder("sequential", geocoder=OrderedGeocoder(), locator=OrderedLocator(default=THREE)).build(LAT, LON)
    assert order == ["reverse", "pois"]


@pytest.mark.asyncio
async def test_cache_hit_is_identical_and_skips_upstream(make_builder, geocoder, locator):
    locator.default = THREE
    builder = make_builder()
    first = await builder.build(LAT, LON)
    second = await builder.build(LAT + 0.000001, LON - 0.000001)
    assert second is first
    assert len(geocoder.calls) == 1
    assert len(locator.calls) == 1


@pytest.mark.asyncio
async def test_cache_expires_after_ttl(make_builder, geocoder, locator, clock):
    locator.default = THREE
    builder = make_builder()
    await builder.build(LAT, LON)
    clock.advance(599)
    await builder.build(LAT, LON)
    assert len(locator.calls) == 1
    clock.advance(2)
    await builder.build(LAT, LON)
    assert len(locator.calls) == 2
    assert len(geocoder.calls) == 2


@pytest.mark.asyncio
async def test_parallel_budget_keeps_partial_results(make_builder, geo_cache):
    # The base radius answers quickly with too few POIs, the wider query hangs.
    locator = StubLocator(by_radius={150: ONE}, default=FOUR, delay=lambda r: 0 if r == 150 else 10)
    geocoder = StubGeocoder(delay=10)
    context = await make_builder(
        "parallel", geocoder=geocoder, locator=locator, total_budget_s=0.2
    ).build(LAT, LON)
    assert context.reverse == ReverseGeoResult()
    assert context.radius_m == 150
    assert [p.name for p in context.pois] == ["Eiffel Tower"]
    assert len(geo_cache) == 0


@pytest.mark.asyncio
async def test_parallel_runs_reverse_and_pois_concurrently(make_builder):
    events = []

    class RecordingGeocoder(StubGeocoder):
        async def resolve(self, lat, lon):
            events.append(("start", "reverse"))
            result = await super().resolve(lat, lon)
            events.append(("end", "reverse"))
            return result

    class RecordingLocator(StubLocator):
        async def search(self, lat, lon, radius_m):
            events.append(("start", "pois"))
            result = await super().search(lat, lon, radius_m)
            events.append(("end", "pois"))
            return result

    geocoder = RecordingGeocoder(delay=0.05)
    locator = RecordingLocator(default=THREE, delay=0.05)
    context = await make_builder("parallel", geocoder=geocoder, locator=locator).build(LAT, LON)
    # both lookups are in flight before either finishes
    first_end = next(i for i, (kind, _) in enumerate(events) if kind == "end")
    assert {name for kind, name in events[:first_end] if kind == "start"} == {"reverse", "pois"}
    assert context.reverse.city == "Paris"
    assert len(context.pois) == 3


@pytest.mark.asyncio
async def test_observer_receives_progress(make_builder):
    events = []

    class Recorder(PipelineObserver):
        def reverse_resolved(self, reverse):
            events.append(("reverse", reverse.city))

        def pois_found(self, pois, radius_m):
            events.append(("pois", len(pois), radius_m))

        def trace(self, step, detail=""):
            events.append(("trace", step))

    locator = StubLocator(by_radius={150: ONE, 300: THREE})
    await make_builder(locator=locator).build(LAT, LON, observer=Recorder())
    assert ("reverse", "Paris") in events
    assert ("pois", 1, 150) in events
    assert ("pois", 3, 300) in events
