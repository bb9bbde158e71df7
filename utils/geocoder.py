from datetime import datetime, timezone
from typing import Protocol
import asyncio
import time

from geopy.geocoders import Nominatim
from loguru import logger

from api.schemas import Location
from config.config import (
    DRIVER_STAND_ADDRESS, DRIVER_STAND_LAT, DRIVER_STAND_LNG, GEOCODER_USER_AGENT,
)

# Bounding box for the geocoder search (Special Region of Yogyakarta)
# Coordinates [south-west, north-east]
YOGYAKARTA_VIEWBOX = [(-8.20, 110.00), (-7.55, 110.85)]


class RateLimitedGeocoder:
    """
    Async wrapper around geopy.Nominatim that keeps to the one request per
    second usage policy without blocking the event loop.
    """
    def __init__(self, user_agent: str, timeout: int = 10):
        self._geolocator = Nominatim(user_agent=user_agent, timeout=timeout)
        self._lock = asyncio.Lock()
        self._last_request_time = 0
        self._delay = 1.1  # A little over one second

    async def _execute_request(self, func, *args, **kwargs):
        async with self._lock:
            time_since_last_request = time.monotonic() - self._last_request_time
            if time_since_last_request < self._delay:
                await asyncio.sleep(self._delay - time_since_last_request)

            try:
                # The geopy call is blocking, run it in a worker thread
                return await asyncio.to_thread(func, *args, **kwargs)
            except Exception as e:
                logger.error(f"Geocoding request failed for query '{args[0]}': {e}")
                return None
            finally:
                self._last_request_time = time.monotonic()

    async def geocode(self, query: str, **kwargs):
        """Turns an address into a geopy Location, or None."""
        return await self._execute_request(self._geolocator.geocode, query, **kwargs)


class LocationProvider(Protocol):
    async def current_location(self) -> Location | None: ...


class StaticLocationProvider:
    """Always reports the same coordinates, stamped with the current time."""

    def __init__(self, latitude: float, longitude: float):
        self.latitude = latitude
        self.longitude = longitude

    async def current_location(self) -> Location | None:
        return Location(latitude=self.latitude, longitude=self.longitude, timestamp=datetime.now(timezone.utc))


class StandAddressLocationProvider:
    """
    Reports the position of the driver's stand. The address is geocoded on the
    first successful lookup and cached; failed lookups are retried on the next call.
    """

    def __init__(self, address: str, geocoder: RateLimitedGeocoder | None = None):
        self.address = address
        self._geocoder = geocoder or RateLimitedGeocoder(user_agent=GEOCODER_USER_AGENT)
        self._coordinates: tuple[float, float] | None = None

    async def current_location(self) -> Location | None:
        if self._coordinates is None:
            place = await self._geocoder.geocode(self.address, viewbox=YOGYAKARTA_VIEWBOX, bounded=True)
            if place is None:
                logger.warning(f"Stand address '{self.address}' could not be geocoded")
                return None
            self._coordinates = (place.latitude, place.longitude)
            logger.info(f"Stand address geocoded to {self._coordinates}")

        latitude, longitude = self._coordinates
        return Location(latitude=latitude, longitude=longitude, timestamp=datetime.now(timezone.utc))


def build_location_provider() -> LocationProvider | None:
    """Picks a provider from the stand settings: explicit coordinates win over an address."""
    if DRIVER_STAND_LAT and DRIVER_STAND_LNG:
        try:
            return StaticLocationProvider(float(DRIVER_STAND_LAT), float(DRIVER_STAND_LNG))
        except ValueError:
            logger.error(f"Invalid stand coordinates: {DRIVER_STAND_LAT}, {DRIVER_STAND_LNG}")
    if DRIVER_STAND_ADDRESS:
        return StandAddressLocationProvider(DRIVER_STAND_ADDRESS)
    logger.warning("No stand location configured; location reporting is disabled")
    return None
