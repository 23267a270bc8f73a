import asyncio
import logging
import time
from typing import Callable, Optional, Protocol

log = logging.getLogger("safety.timers")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float:
        """Wall-clock milliseconds."""
        ...

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.time() * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(max(delay_ms, 0) / 1000.0, callback)


class PeriodicTimer:
    """Re-arming interval timer on top of a Scheduler."""

    def __init__(self, scheduler: Scheduler, interval_ms: float, callback: Callable[[], None]):
        self._scheduler = scheduler
        self._interval_ms = interval_ms
        self._callback = callback
        self._handle: Optional[TimerHandle] = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        if self._handle is None:
            self._arm()

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self) -> None:
        self._handle = self._scheduler.call_later(self._interval_ms, self._fire)

    def _fire(self) -> None:
        if self._handle is None:
            return
        self._arm()
        try:
            self._callback()
        except Exception:
            log.exception("Periodic callback failed")
