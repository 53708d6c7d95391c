"""
Pytest configuration for the photo place guide tests.

Every upstream collaborator is replaced by an in-process stub; no test
touches the network.
"""
import httpx
import pytest

from photoguide.core.config import Settings
from photoguide.services.geo_context import GeoContextBuilder
from photoguide.services.ttl_cache import TTLCache

from stubs import FakeClock, StubGeocoder, StubLocator, StubModel


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        ENV="test",
        OPENAI_API_KEY=None,
        DEBUG_TOKEN="letmein",
        LOCATE_MODE="job",
        SWEEP_INTERVAL_SECONDS=3600,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def geocoder():
    return StubGeocoder()


@pytest.fixture
def locator():
    return StubLocator()


@pytest.fixture
def model():
    return StubModel()


@pytest.fixture
def geo_cache(clock):
    return TTLCache(600, clock=clock, name="geo_cache")


@pytest.fixture
def make_builder(geocoder, locator, geo_cache):
    """Factory for builders over the stub geocoder/locator and the fake-clock cache."""
    default_geocoder, default_locator = geocoder, locator

    def _make(strategy="sequential", geocoder=None, locator=None, **kwargs) -> GeoContextBuilder:
        params = dict(base_radius_m=150, multipliers=(1, 2, 4), min_results=3, total_budget_s=5.0)
        params.update(kwargs)
        return GeoContextBuilder(
            geocoder or default_geocoder,
            locator or default_locator,
            geo_cache,
            strategy=strategy,
            **params,
        )

    return _make


@pytest.fixture
def mock_http():
    """Build an ``httpx.AsyncClient`` whose requests are answered by ``handler``."""
    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
