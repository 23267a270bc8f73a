import asyncio
import logging
from typing import Optional

from distress_monitor.safety.interfaces import ConfirmationPrompt
from distress_monitor.safety.models import EventStatus, SafetyEvent, UserResponse
from distress_monitor.safety.store import SafetyEventStore
from distress_monitor.safety.timers import Scheduler

log = logging.getLogger("safety.confirmation")


class EmergencyConfirmationGate:
    """
    Asks "are you in danger?" for one event at a time.

    Yes and no-answer-before-timeout both confirm; only an explicit no marks
    the event as a false positive. Requests made while a prompt is open wait
    their turn in arrival order.
    """

    def __init__(
        self,
        prompt: ConfirmationPrompt,
        store: SafetyEventStore,
        scheduler: Scheduler,
        timeout_ms: int = 10000,
    ):
        self.prompt = prompt
        self.store = store
        self.scheduler = scheduler
        self.timeout_ms = timeout_ms
        self._lock = asyncio.Lock()
        self._waiting = 0
        self.active_event: Optional[SafetyEvent] = None

    @property
    def queued(self) -> int:
        return self._waiting

    async def confirm(self, event: SafetyEvent) -> bool:
        self._waiting += 1
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1

        try:
            if event.status.terminal:
                log.info("Event %s already %s; skipping prompt", event.id, event.status.value)
                return False
            self.active_event = event
            response = await self._ask(event)
        finally:
            self.active_event = None
            self._lock.release()

        if response is UserResponse.DENIED:
            self.store.transition(event, EventStatus.FALSE_POSITIVE, user_response=response)
            return False

        if response is UserResponse.NO_RESPONSE:
            log.info("No response for event %s within %d ms; assuming emergency", event.id, self.timeout_ms)
        self.store.transition(event, EventStatus.CONFIRMED, user_response=response)
        return True

    async def _ask(self, event: SafetyEvent) -> UserResponse:
        answer: asyncio.Future = asyncio.get_running_loop().create_future()

        def respond(confirmed: bool) -> None:
            if not answer.done():
                answer.set_result(UserResponse.CONFIRMED if confirmed else UserResponse.DENIED)

        def expire() -> None:
            if not answer.done():
                answer.set_result(UserResponse.NO_RESPONSE)

        timer = self.scheduler.call_later(self.timeout_ms, expire)
        try:
            self.prompt.show(event, self.timeout_ms, respond)
        except Exception:
            # the timeout still resolves the wait
            log.exception("Failed to show confirmation prompt for %s", event.id)

        try:
            return await answer
        finally:
            timer.cancel()
            try:
                self.prompt.dismiss(event)
            except Exception:
                log.exception("Failed to dismiss confirmation prompt for %s", event.id)
