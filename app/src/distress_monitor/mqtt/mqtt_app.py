import asyncio
import json
import logging
import os
import threading
from typing import Callable, List, Optional, Set

import paho.mqtt.client as mqtt

from distress_monitor.safety.assistant import SafetyMonitoringAssistant
from distress_monitor.safety.config import get_config
from distress_monitor.safety.confirmation import EmergencyConfirmationGate
from distress_monitor.safety.contacts import EmergencyContactManager
from distress_monitor.safety.dispatcher import EmergencyAlertDispatcher
from distress_monitor.safety.interfaces import (
    AcousticFeatures,
    KeyValueStore,
    MotionReading,
    Utterance,
)
from distress_monitor.safety.kv_store import JsonFileStore
from distress_monitor.safety.location import LocationService
from distress_monitor.safety.models import AlertType, Location, SafetyEvent
from distress_monitor.safety.motion import MotionSampler
from distress_monitor.safety.store import AlertHistory, SafetyEventStore
from distress_monitor.safety.timers import AsyncioScheduler, Scheduler
from distress_monitor.shake_bridge import ShakeEmergencyBridge

log = logging.getLogger("safety.mqtt")

TOPIC_MOTION = os.getenv("TOPIC_MOTION", "safety/input/motion")
TOPIC_SPEECH = os.getenv("TOPIC_SPEECH", "safety/input/speech")
TOPIC_LOCATION = os.getenv("TOPIC_LOCATION", "safety/input/location")
TOPIC_CONFIRM = os.getenv("TOPIC_CONFIRM", "safety/input/confirm")
TOPIC_MONITORING = os.getenv("TOPIC_MONITORING", "safety/input/monitoring")
TOPIC_ALERT = os.getenv("TOPIC_ALERT", "safety/input/alert")

TOPIC_OUTBOUND = os.getenv("TOPIC_OUTBOUND", "ext/safety/outbound")
TOPIC_TOAST = os.getenv("TOPIC_TOAST", "ext/safety/toast")
TOPIC_PROMPT = os.getenv("TOPIC_PROMPT", "ext/safety/prompt")
TOPIC_STATUS = os.getenv("TOPIC_STATUS", "ext/safety/status")


def _parse_bool(s: str) -> bool:
    s = s.strip().lower()
    if s in ("true", "1", "on", "yes"): return True
    if s in ("false", "0", "off", "no"): return False
    try:
        return bool(json.loads(s))
    except Exception:
        return False


def _vector(data: dict):
    if not isinstance(data, dict):
        return None
    return (data.get("x"), data.get("y"), data.get("z"))


# ---------- platform bindings over MQTT ----------
class MqttPublisher:
    def __init__(self, client):
        self.client = client

    def publish(self, topic: str, obj: dict, qos: int = 0) -> None:
        self.client.publish(topic, json.dumps(obj), qos=qos, retain=False)


class MqttMessagingGateway(MqttPublisher):
    """Hands tel:/sms:/mailto: targets to whatever device listens on the outbound topic."""

    def open(self, target: str) -> None:
        self.publish(TOPIC_OUTBOUND, {"target": target}, qos=1)


class MqttNotifier(MqttPublisher):
    def notify(self, title: str, description: str, variant: str = "default") -> None:
        self.publish(TOPIC_TOAST, {"title": title, "description": description, "variant": variant})


class MqttConfirmationPrompt(MqttPublisher):
    def __init__(self, client):
        super().__init__(client)
        self._respond: Optional[Callable[[bool], None]] = None

    def show(self, event: SafetyEvent, timeout_ms: int, respond: Callable[[bool], None]) -> None:
        self._respond = respond
        self.publish(TOPIC_PROMPT, {
            "eventId": event.id,
            "state": "open",
            "title": "Safety Alert Detected",
            "question": "We detected signs of distress. Are you in danger?",
            "indicators": [i.to_dict() for i in event.indicators],
            "timeoutMs": timeout_ms,
        }, qos=1)

    def dismiss(self, event: SafetyEvent) -> None:
        self._respond = None
        self.publish(TOPIC_PROMPT, {"eventId": event.id, "state": "closed"}, qos=1)

    def answer(self, confirmed: bool) -> bool:
        if self._respond is None:
            return False
        self._respond(confirmed)
        return True


class MqttMotionSource:
    supported = True
    requires_permission = False

    def __init__(self):
        self._listeners: List[Callable[[MotionReading], None]] = []

    async def request_permission(self) -> bool:
        return True

    def add_listener(self, listener: Callable[[MotionReading], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[MotionReading], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def feed(self, data: dict) -> None:
        reading = MotionReading(
            acceleration_including_gravity=_vector(data.get("accelerationIncludingGravity")),
            acceleration=_vector(data.get("acceleration")),
        )
        if reading.acceleration_including_gravity is None and reading.acceleration is None:
            reading.acceleration_including_gravity = _vector(data)
        for listener in list(self._listeners):
            listener(reading)


class MqttSpeechSource:
    supported = True

    def __init__(self):
        self._on_result: Optional[Callable[[Utterance], None]] = None
        self._on_error: Optional[Callable[[str], None]] = None

    def start(self, on_result, on_error) -> None:
        self._on_result = on_result
        self._on_error = on_error

    def stop(self) -> None:
        self._on_result = None
        self._on_error = None

    def feed(self, data: dict) -> None:
        if self._on_result is None:
            return
        if "error" in data:
            if self._on_error is not None:
                self._on_error(str(data["error"]))
            return
        features = data.get("audioFeatures")
        self._on_result(Utterance(
            transcript=str(data.get("transcript", "")),
            confidence=float(data.get("confidence", 0.0)),
            features=AcousticFeatures(
                pitch_variation=float(features["pitchVariation"]),
                volume_variation=float(features["volumeVariation"]),
                speech_rate=float(features["speechRate"]),
            ) if features else None,
        ))


class MqttGeolocation:
    """Serves the last fix published on the location topic."""
    supported = True

    def __init__(self, scheduler: Scheduler):
        self.scheduler = scheduler
        self.last_fix: Optional[Location] = None

    def feed(self, data: dict) -> None:
        self.last_fix = Location(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=float(data.get("accuracy", 0.0)),
            timestamp=self.scheduler.now(),
        )

    async def get_current_position(self, timeout_s: float, high_accuracy: bool, maximum_age_s: float) -> Location:
        fix = self.last_fix
        if fix is None:
            raise LookupError("no location fix received")
        if self.scheduler.now() - (fix.timestamp or 0) > maximum_age_s * 1000:
            raise LookupError("location fix is stale")
        return fix


# ---------- MQTT app ----------
class SafetyMqttApp:
    def __init__(self, client=None, kv: Optional[KeyValueStore] = None, scheduler: Optional[Scheduler] = None):
        self.cfg = get_config()
        self.broker_host = os.getenv("MQTT_HOST", "127.0.0.1")
        self.broker_port = int(os.getenv("MQTT_PORT", "1883"))

        if client is None:
            client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            client.on_connect = self._on_connect
            client.on_message = self._on_message
        self.client = client
        self.scheduler = scheduler or AsyncioScheduler()
        self.kv = kv if kv is not None else JsonFileStore(self.cfg["STATE_FILE"])
        self.loop: Optional[asyncio.AbstractEventLoop] = None

        # platform bindings
        self.motion_source = MqttMotionSource()
        self.speech_source = MqttSpeechSource()
        self.geolocation = MqttGeolocation(self.scheduler)
        self.prompt = MqttConfirmationPrompt(client)
        self.gateway = MqttMessagingGateway(client)
        self.notifier = MqttNotifier(client)
        self.status = MqttPublisher(client)

        # pipeline
        self.contacts = EmergencyContactManager(self.kv, self.scheduler)
        self.dispatcher = EmergencyAlertDispatcher(
            contacts=self.contacts,
            location=LocationService(
                self.geolocation, timeout_s=self.cfg["LOCATION_TIMEOUT_S"], scheduler=self.scheduler,
            ),
            gateway=self.gateway,
            history=AlertHistory(self.kv),
            scheduler=self.scheduler,
            emergency_number=self.cfg["EMERGENCY_NUMBER"],
            local_authority_numbers=self.cfg["LOCAL_AUTHORITY_NUMBERS"],
            app_name=self.cfg["APP_NAME"],
        )
        self.store = SafetyEventStore(self.kv, self.scheduler)
        self.gate = EmergencyConfirmationGate(self.prompt, self.store, self.scheduler, self.cfg["CONFIRM_TIMEOUT_MS"])
        self.assistant = SafetyMonitoringAssistant(
            self.cfg,
            self.scheduler,
            MotionSampler(self.motion_source, self.scheduler),
            self.speech_source,
            self.store,
            self.gate,
            self.dispatcher,
        )
        self.shake_bridge = ShakeEmergencyBridge(
            self.cfg,
            self.scheduler,
            MotionSampler(self.motion_source, self.scheduler),
            self.dispatcher,
            self.notifier,
        )
        self._tasks: Set[asyncio.Task] = set()

    # MQTT callbacks (paho network thread)
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        log.info("Connected to MQTT broker rc=%s", reason_code)
        subs = [TOPIC_MOTION, TOPIC_SPEECH, TOPIC_LOCATION, TOPIC_CONFIRM, TOPIC_MONITORING, TOPIC_ALERT]
        for t in subs:
            client.subscribe(t, 0)
        log.info("Subscribed to input topics")

    def _on_message(self, client, userdata, msg):
        if self.loop is None:
            log.warning("Dropping %s: app not started", msg.topic)
            return
        self.loop.call_soon_threadsafe(self.handle_message, msg.topic, msg.payload)

    # event-loop side
    def handle_message(self, topic: str, payload) -> None:
        try:
            if isinstance(payload, (bytes, bytearray)):
                payload = payload.decode("utf-8")
            if topic == TOPIC_MOTION:
                self.motion_source.feed(json.loads(payload))
            elif topic == TOPIC_SPEECH:
                self.speech_source.feed(json.loads(payload))
            elif topic == TOPIC_LOCATION:
                self.geolocation.feed(json.loads(payload))
            elif topic == TOPIC_CONFIRM:
                if not self.prompt.answer(_parse_bool(payload)):
                    log.info("Confirmation received with no open prompt")
            elif topic == TOPIC_MONITORING:
                self._spawn(self.set_monitoring(_parse_bool(payload)))
            elif topic == TOPIC_ALERT:
                data = json.loads(payload) if payload.strip().startswith("{") else {"type": payload.strip()}
                self._spawn(self.send_alert(AlertType(data.get("type") or "general"), data.get("info")))
        except Exception as e:
            log.warning("Bad input '%s' on %s: %s", payload, topic, e)

    async def set_monitoring(self, enabled: bool) -> None:
        if enabled and not self.assistant.is_active():
            await self.assistant.start_monitoring()
            self.notifier.notify("Safety Monitoring Started", "Continuous monitoring for distress indicators is now active.")
        elif not enabled and self.assistant.is_active():
            self.assistant.stop_monitoring()
            self.notifier.notify("Safety Monitoring Stopped", "Continuous safety monitoring has been disabled.")
        self.status.publish(TOPIC_STATUS, {"monitoring": self.assistant.is_active()}, qos=1)

    async def send_alert(self, alert_type: AlertType, info: Optional[str] = None) -> bool:
        ok = await self.dispatcher.send_direct_emergency_alert(alert_type, info)
        if ok:
            self.notifier.notify("Emergency Alert Sent", "Direct alert has been sent to emergency personnel and contacts.")
        else:
            self.notifier.notify("Alert Failed", "Failed to send emergency alert. Please try again.", "destructive")
        return ok

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.assistant.wait_idle()
        await self.shake_bridge.wait_idle()

    # lifecycle
    def connect(self):
        self.client.connect(self.broker_host, self.broker_port, keepalive=60)

    def start_loop_in_thread(self):
        th = threading.Thread(target=self.client.loop_forever, daemon=True)
        th.start()

    async def start(self, monitoring: bool = True) -> None:
        self.loop = asyncio.get_running_loop()
        await self.shake_bridge.enable()
        if monitoring:
            await self.set_monitoring(True)
        log.info("SafetyMqttApp started cfg=%s", self.cfg)

    async def stop(self) -> None:
        self.shake_bridge.disable()
        await self.set_monitoring(False)

    async def run(self) -> None:
        log.info("Starting SafetyMqttApp broker=%s:%s", self.broker_host, self.broker_port)
        self.connect()
        self.start_loop_in_thread()
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
            self.client.disconnect()
