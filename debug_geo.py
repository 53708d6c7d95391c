import asyncio
import sys
import os
import httpx

# Add the current directory to sys.path
sys.path.append(os.getcwd())

from photoguide.core.config import settings
from photoguide.services.geocoding import ReverseGeocoder
from photoguide.services.poi_service import PoiLocator, build_overpass_query
from photoguide.utils.haversine import haversine

# Eiffel Tower, Champ de Mars
TEST_LAT = 48.8584
TEST_LON = 2.2945

# Reference point the nearest POI should be close to
REFERENCE_NAME = "Eiffel Tower"
REFERENCE_LAT = 48.85837
REFERENCE_LON = 2.294481

async def probe(lat: float, lon: float):
    print(f"--- Reference Distance ---")
    dist_m = haversine(lat, lon, REFERENCE_LAT, REFERENCE_LON)
    print(f"{REFERENCE_NAME}: {dist_m:.1f} meters from {lat}, {lon}")

    async with httpx.AsyncClient(headers={"User-Agent": settings.HTTP_USER_AGENT}) as client:
        print(f"\n--- Reverse Geocoding ---")
        geocoder = ReverseGeocoder.from_settings(client, settings)
        for provider in geocoder.providers:
            try:
                result = await provider.reverse(lat, lon)
                print(f"[{provider.name}] {result.display_name}")
                print(f"    city={result.city} state={result.state} country={result.country}")
            except Exception as e:
                print(f"[{provider.name}] FAILED: {e}")

        print(f"\n--- POI Search (Overpass) ---")
        locator = PoiLocator.from_settings(client, settings)
        radius = settings.POI_BASE_RADIUS_M
        print(build_overpass_query(lat, lon, radius))
        for endpoint in locator.endpoints:
            single = PoiLocator(client, [endpoint], locator.timeout, locator.max_results, settings.HTTP_USER_AGENT)
            try:
                pois = await single.search(lat, lon, radius)
                print(f"[{endpoint}] {len(pois)} POIs within {radius} m")
                for i, poi in enumerate(pois[:5]):
                    print(f"[{i}] {poi.name} ({poi.type}) {poi.distance_m} m  {poi.hint}")
            except Exception as e:
                print(f"[{endpoint}] FAILED: {e}")

if __name__ == "__main__":
    lat = float(sys.argv[1]) if len(sys.argv) > 2 else TEST_LAT
    lon = float(sys.argv[2]) if len(sys.argv) > 2 else TEST_LON
    asyncio.run(probe(lat, lon))
