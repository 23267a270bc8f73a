import json
import logging
from typing import Callable, Generic, List, Optional, TypeVar

from distress_monitor.safety.interfaces import KeyValueStore
from distress_monitor.safety.models import (
    DistressIndicator,
    EmergencyAlert,
    EventStatus,
    Location,
    SafetyEvent,
    UserResponse,
    new_id,
)
from distress_monitor.safety.timers import Scheduler

log = logging.getLogger("safety.store")

SAFETY_EVENTS_KEY = "safety-events"
ALERT_HISTORY_KEY = "emergency-alert-history"

T = TypeVar("T")


class _JsonCollection(Generic[T]):
    """Whole-collection JSON persistence under one key."""

    def __init__(self, kv: KeyValueStore, key: str, decode: Callable[[dict], T]):
        self.kv = kv
        self.key = key
        self._decode = decode
        self._items: List[T] = self._load()

    def _load(self) -> List[T]:
        try:
            raw = self.kv.get(self.key)
            if not raw:
                return []
            return [self._decode(item) for item in json.loads(raw)]
        except Exception as exc:
            log.warning("Failed to load %s: %s", self.key, exc)
            return []

    def _save(self) -> None:
        try:
            self.kv.set(self.key, json.dumps([item.to_dict() for item in self._items]))
        except Exception as exc:
            log.warning("Failed to save %s: %s", self.key, exc)

    def _clear(self) -> None:
        self._items = []
        try:
            self.kv.remove(self.key)
        except Exception as exc:
            log.warning("Failed to clear %s: %s", self.key, exc)


class SafetyEventStore(_JsonCollection[SafetyEvent]):
    """
    Append-only log of safety events.

    Detectors only append; status changes go through ``transition`` so the
    event state machine is enforced in one place.
    """

    def __init__(self, kv: KeyValueStore, scheduler: Scheduler):
        super().__init__(kv, SAFETY_EVENTS_KEY, SafetyEvent.from_dict)
        self.scheduler = scheduler

    def append(self, indicator: DistressIndicator) -> SafetyEvent:
        now = self.scheduler.now()
        event = SafetyEvent(id=new_id("safety", now), detected_at=now, indicators=[indicator])
        self._items.append(event)
        self._save()
        log.info(
            "Safety event %s detected: %s/%s (confidence=%.2f)",
            event.id, indicator.kind.value, indicator.severity.value, indicator.confidence,
        )
        return event

    def list(self) -> List[SafetyEvent]:
        return list(self._items)

    def recent(self, window_ms: float) -> List[SafetyEvent]:
        cutoff = self.scheduler.now() - window_ms
        return [e for e in self._items if e.detected_at > cutoff]

    def clear(self) -> None:
        self._clear()
        log.info("Safety events cleared")

    def transition(
        self,
        event: SafetyEvent,
        status: EventStatus,
        user_response: Optional[UserResponse] = None,
        location: Optional[Location] = None,
    ) -> bool:
        if not event.can_transition(status):
            log.warning(
                "Refusing transition %s -> %s for event %s",
                event.status.value, status.value, event.id,
            )
            return False
        event.status = status
        if user_response is not None:
            event.user_response = user_response
        if location is not None and status is EventStatus.EMERGENCY_ACTIVATED:
            event.location = location
        self._save()
        log.info("Safety event %s -> %s", event.id, status.value)
        return True


class AlertHistory(_JsonCollection[EmergencyAlert]):
    def __init__(self, kv: KeyValueStore):
        super().__init__(kv, ALERT_HISTORY_KEY, EmergencyAlert.from_dict)

    def append(self, alert: EmergencyAlert) -> None:
        self._items.append(alert)
        self._save()

    def list(self) -> List[EmergencyAlert]:
        return list(self._items)

    def clear(self) -> None:
        self._clear()
        log.info("Alert history cleared")
