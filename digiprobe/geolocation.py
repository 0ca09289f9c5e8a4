"""Best-effort, single-shot position capture."""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from digiprobe.models import GeoPosition, GeolocationConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


class Locator(ABC):
    """Source of position fixes. Each call to ``locate`` must take a fresh fix."""

    @abstractmethod
    async def locate(self) -> Optional[GeoPosition]:
        ...


class NullLocator(Locator):
    """Used where no positioning is available."""

    async def locate(self) -> Optional[GeoPosition]:
        return None


class FixedLocator(Locator):
    """Reports a configured survey point, stamped with the time of the request."""

    def __init__(self, latitude: float, longitude: float, accuracy: Optional[float] = None) -> None:
        self.latitude = latitude
        self.longitude = longitude
        self.accuracy = accuracy

    async def locate(self) -> Optional[GeoPosition]:
        return GeoPosition(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy=self.accuracy,
            timestamp=_utcnow(),
        )


def locator_from_config(config: GeolocationConfig) -> Locator:
    if config.latitude is None or config.longitude is None:
        return NullLocator()
    return FixedLocator(config.latitude, config.longitude, config.accuracy)


async def capture_position(locator: Locator, timeout: float = DEFAULT_TIMEOUT) -> Optional[GeoPosition]:
    """Ask *locator* for a fix; unavailable, denied or late fixes become ``None``.

    No previous fix is ever reused.
    """
    try:
        return await asyncio.wait_for(locator.locate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Geolocation timed out after %.1fs", timeout)
    except Exception as exc:
        logger.warning("Geolocation unavailable: %s", exc)
    return None
