"""
Collaborator contracts consumed by the safety pipeline.

Platform bindings (browser, MQTT, test fakes) implement these; the pipeline
only ever talks to them through the methods below.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Tuple

from distress_monitor.safety.models import Location, SafetyEvent

Vector = Tuple[Optional[float], Optional[float], Optional[float]]


@dataclass
class MotionReading:
    """Raw platform motion event; either vector may be missing."""
    acceleration_including_gravity: Optional[Vector] = None
    acceleration: Optional[Vector] = None


@dataclass
class AcousticFeatures:
    pitch_variation: float
    volume_variation: float
    speech_rate: float


@dataclass
class Utterance:
    transcript: str
    confidence: float = 0.0
    features: Optional[AcousticFeatures] = None


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...


class GeolocationProvider(Protocol):
    supported: bool

    async def get_current_position(
        self, timeout_s: float, high_accuracy: bool, maximum_age_s: float
    ) -> Location: ...


class MessagingGateway(Protocol):
    def open(self, target: str) -> None: ...


class Notifier(Protocol):
    def notify(self, title: str, description: str, variant: str = "default") -> None: ...


class MotionSource(Protocol):
    supported: bool
    requires_permission: bool

    async def request_permission(self) -> bool: ...
    def add_listener(self, listener: Callable[[MotionReading], None]) -> None: ...
    def remove_listener(self, listener: Callable[[MotionReading], None]) -> None: ...


class SpeechSource(Protocol):
    supported: bool

    def start(
        self,
        on_result: Callable[[Utterance], None],
        on_error: Callable[[str], None],
    ) -> None: ...
    def stop(self) -> None: ...


class ConfirmationPrompt(Protocol):
    def show(
        self, event: SafetyEvent, timeout_ms: int, respond: Callable[[bool], None]
    ) -> None: ...
    def dismiss(self, event: SafetyEvent) -> None: ...
