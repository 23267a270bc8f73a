# SPDX-License-Identifier: Apache-2.0
import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pytest

from distress_monitor.safety.assistant import SafetyMonitoringAssistant
from distress_monitor.safety.config import get_config
from distress_monitor.safety.confirmation import EmergencyConfirmationGate
from distress_monitor.safety.contacts import EmergencyContactManager
from distress_monitor.safety.dispatcher import EmergencyAlertDispatcher
from distress_monitor.safety.interfaces import AcousticFeatures, MotionReading, Utterance
from distress_monitor.safety.location import LocationService
from distress_monitor.safety.models import Location, SafetyEvent
from distress_monitor.safety.motion import MotionSampler
from distress_monitor.safety.store import AlertHistory, SafetyEventStore


# ---------- Time ----------

class FakeTimer:
    def __init__(self, due: float, seq: int, callback: Callable[[], None]):
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock: nothing fires until advance() walks past a timer's due time."""
    def __init__(self, start_ms: float = 1_700_000_000_000.0):
        self._now = start_ms
        self._seq = 0
        self._timers: List[FakeTimer] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback):
        self._seq += 1
        timer = FakeTimer(self._now + max(delay_ms, 0), self._seq, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return len([t for t in self._timers if not t.cancelled])

    def advance(self, ms: float) -> None:
        target = self._now + ms
        while True:
            due = [t for t in self._timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due, t.seq))
            self._timers.remove(timer)
            self._now = timer.due
            timer.callback()
        self._timers = [t for t in self._timers if not t.cancelled]
        self._now = target


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run until they block on something the test controls."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------- Collaborators ----------

class InMemoryKV:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})
        self.writes = 0

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.writes += 1
        self.data[key] = value

    def remove(self, key):
        self.data.pop(key, None)

    def load_json(self, key):
        raw = self.data.get(key)
        return json.loads(raw) if raw else None


class FakeGeolocation:
    def __init__(self, location: Optional[Location] = None, error: Optional[Exception] = None,
                 supported: bool = True, delay_s: float = 0.0):
        self.location = location
        self.error = error
        self.supported = supported
        self.delay_s = delay_s
        self.calls = 0

    async def get_current_position(self, timeout_s, high_accuracy, maximum_age_s):
        self.calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.location


class GatewayCapture:
    """Records every outbound target; can be told to fail on a prefix."""
    def __init__(self, fail_prefix=None):
        self.targets: List[str] = []
        self.fail_prefix = fail_prefix

    def open(self, target: str) -> None:
        if self.fail_prefix and target.startswith(self.fail_prefix):
            raise OSError(f"cannot open {target}")
        self.targets.append(target)

    def with_prefix(self, prefix: str) -> List[str]:
        return [t for t in self.targets if t.startswith(prefix)]


class FakeNotifier:
    def __init__(self):
        self.toasts: List[Dict[str, str]] = []

    def notify(self, title, description, variant="default"):
        self.toasts.append({"title": title, "description": description, "variant": variant})

    def titles(self) -> List[str]:
        return [t["title"] for t in self.toasts]


class FakeMotionSource:
    def __init__(self, supported: bool = True, requires_permission: bool = False,
                 grant: bool = True, permission_gate: Optional[asyncio.Event] = None):
        self.supported = supported
        self.requires_permission = requires_permission
        self.grant = grant
        self.permission_gate = permission_gate
        self.permission_requests = 0
        self.listeners: List[Callable[[MotionReading], None]] = []

    async def request_permission(self) -> bool:
        self.permission_requests += 1
        if self.permission_gate is not None:
            await self.permission_gate.wait()
        return self.grant

    def add_listener(self, listener):
        self.listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def emit(self, x, y, z, gravity: bool = True):
        vector = (x, y, z)
        reading = MotionReading(acceleration_including_gravity=vector) if gravity else MotionReading(acceleration=vector)
        for listener in list(self.listeners):
            listener(reading)


class FakeSpeechSource:
    def __init__(self, supported: bool = True):
        self.supported = supported
        self.started = False
        self.stopped = 0
        self._on_result = None
        self._on_error = None

    def start(self, on_result, on_error):
        self.started = True
        self._on_result = on_result
        self._on_error = on_error

    def stop(self):
        self.started = False
        self.stopped += 1

    def say(self, transcript: str, features: Optional[AcousticFeatures] = None, confidence: float = 0.9):
        if self.started and self._on_result:
            self._on_result(Utterance(transcript, confidence, features))


class ScriptedPrompt:
    """
    Answers prompts from a script: True (yes), False (no) or None (stay silent
    until respond() is called or the gate times out).
    """
    def __init__(self, answers: Optional[List[Optional[bool]]] = None):
        self.answers = list(answers or [])
        self.shown: List[SafetyEvent] = []
        self.dismissed: List[SafetyEvent] = []
        self._respond = None

    def show(self, event, timeout_ms, respond):
        self.shown.append(event)
        self._respond = respond
        answer = self.answers.pop(0) if self.answers else None
        if answer is not None:
            respond(answer)

    def dismiss(self, event):
        self.dismissed.append(event)

    def respond(self, confirmed: bool) -> None:
        assert self._respond is not None, "no prompt open"
        self._respond(confirmed)


# ---------- Utilities to capture MQTT publishes ----------

class PublishCapture:
    """Capture all publish(topic, payload) calls."""
    def __init__(self):
        self.events: List[tuple] = []

    def __call__(self, topic: str, payload: str):
        try:
            data = json.loads(payload)
        except Exception:
            data = payload
        self.events.append((topic, data))

    def last(self, topic: Optional[str] = None):
        if topic is None:
            return self.events[-1] if self.events else None
        for t, d in reversed(self.events):
            if t == topic:
                return (t, d)
        return None

    def by_topic(self, topic: str) -> List[tuple]:
        return [e for e in self.events if e[0] == topic]


class FakeMQTT:
    """Minimal paho client stand-in routing publish() into a PublishCapture."""
    def __init__(self, cap: PublishCapture):
        self.cap = cap
        self.subscriptions: List[str] = []

    def publish(self, topic: str, payload: str, qos: int = 0, retain: bool = False):
        self.cap(topic, payload)

    def subscribe(self, topic, qos=0):
        self.subscriptions.append(topic)


# ---------- Pipeline assembly ----------

HOME = Location(latitude=37.774929, longitude=-122.419416, accuracy=12.0)


@dataclass
class Pipeline:
    cfg: dict
    scheduler: FakeScheduler
    kv: InMemoryKV
    motion: FakeMotionSource
    speech: FakeSpeechSource
    prompt: ScriptedPrompt
    gateway: GatewayCapture
    geolocation: FakeGeolocation
    contacts: EmergencyContactManager
    store: SafetyEventStore
    gate: EmergencyConfirmationGate
    dispatcher: EmergencyAlertDispatcher
    assistant: SafetyMonitoringAssistant
    extra: Dict[str, Any] = field(default_factory=dict)


def build_pipeline(answers=None, location: Optional[Location] = HOME, geo_error=None,
                   gateway: Optional[GatewayCapture] = None, cfg_overrides=None,
                   kv: Optional[InMemoryKV] = None) -> Pipeline:
    cfg = get_config()
    if cfg_overrides:
        cfg.update(cfg_overrides)
    scheduler = FakeScheduler()
    kv = kv if kv is not None else InMemoryKV()
    motion = FakeMotionSource()
    speech = FakeSpeechSource()
    prompt = ScriptedPrompt(answers)
    gateway = gateway or GatewayCapture()
    geolocation = FakeGeolocation(location=location, error=geo_error)
    contacts = EmergencyContactManager(kv, scheduler)
    store = SafetyEventStore(kv, scheduler)
    gate = EmergencyConfirmationGate(prompt, store, scheduler, cfg["CONFIRM_TIMEOUT_MS"])
    dispatcher = EmergencyAlertDispatcher(
        contacts=contacts,
        location=LocationService(geolocation, timeout_s=cfg["LOCATION_TIMEOUT_S"], scheduler=scheduler),
        gateway=gateway,
        history=AlertHistory(kv),
        scheduler=scheduler,
        emergency_number=cfg["EMERGENCY_NUMBER"],
        local_authority_numbers=cfg["LOCAL_AUTHORITY_NUMBERS"],
        app_name=cfg["APP_NAME"],
    )
    assistant = SafetyMonitoringAssistant(
        cfg, scheduler, MotionSampler(motion, scheduler), speech, store, gate, dispatcher,
    )
    return Pipeline(cfg, scheduler, kv, motion, speech, prompt, gateway, geolocation,
                    contacts, store, gate, dispatcher, assistant)


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def kv():
    return InMemoryKV()


@pytest.fixture
def publish_capture():
    return PublishCapture()
