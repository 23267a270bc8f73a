import asyncio
import logging
from typing import Optional

from distress_monitor.safety.interfaces import GeolocationProvider
from distress_monitor.safety.models import Location
from distress_monitor.safety.timers import AsyncioScheduler, Scheduler

log = logging.getLogger("safety.location")


def map_url(location: Location) -> str:
    return f"https://www.google.com/maps?q={location.latitude},{location.longitude}"


def location_text(location: Optional[Location]) -> str:
    if location is None:
        return "Location unavailable"
    return f"Location: {location.latitude:.6f}, {location.longitude:.6f}"


class LocationService:
    """Bounded-wait position lookup; every failure mode resolves to None."""

    def __init__(
        self,
        provider: Optional[GeolocationProvider],
        timeout_s: float = 10.0,
        maximum_age_s: float = 300.0,
        scheduler: Optional[Scheduler] = None,
    ):
        self.provider = provider
        self.timeout_s = timeout_s
        self.maximum_age_s = maximum_age_s
        self.scheduler = scheduler or AsyncioScheduler()
        self.cached: Optional[Location] = None

    async def get_current_location(self) -> Optional[Location]:
        if self.provider is None or not getattr(self.provider, "supported", False):
            log.warning("Geolocation not supported")
            return None

        lookup = asyncio.ensure_future(self.provider.get_current_position(
            timeout_s=self.timeout_s,
            high_accuracy=True,
            maximum_age_s=self.maximum_age_s,
        ))
        expired = []

        def expire() -> None:
            expired.append(True)
            lookup.cancel()

        timer = self.scheduler.call_later(self.timeout_s * 1000.0, expire)
        try:
            location = await lookup
        except asyncio.CancelledError:
            if not expired:
                raise
            log.info("Location lookup timed out after %.1fs", self.timeout_s)
            return None
        except asyncio.TimeoutError:
            log.info("Location lookup timed out after %.1fs", self.timeout_s)
            return None
        except PermissionError as exc:
            log.warning("Location permission denied: %s", exc)
            return None
        except Exception as exc:
            log.warning("Location error: %s", exc)
            return None
        finally:
            timer.cancel()

        self.cached = location
        return location

    def get_location_url(self) -> Optional[str]:
        return map_url(self.cached) if self.cached else None
