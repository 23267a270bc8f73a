import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from distress_monitor.safety.interfaces import MotionReading, MotionSource
from distress_monitor.safety.timers import Scheduler, TimerHandle

log = logging.getLogger("safety.motion")

STANDARD_GRAVITY = 9.80665


@dataclass
class MotionSample:
    magnitude: float
    x: float
    y: float
    z: float
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "acceleration": self.magnitude,
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "timestamp": self.timestamp,
        }


class MotionSampler:
    """
    Turns platform motion readings into magnitude samples.

    Consent (where the source needs it) is asked once; a refusal or an
    unsupported source leaves the sampler idle without raising.
    """

    def __init__(self, source: MotionSource, scheduler: Scheduler):
        self.source = source
        self.scheduler = scheduler
        self._subscriber: Optional[Callable[[MotionSample], None]] = None
        self._subscribed = False
        self._wanted = False
        self._permission: Optional[bool] = None
        self._permission_request: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._subscribed

    async def enable(self, subscriber: Callable[[MotionSample], None]) -> bool:
        self._subscriber = subscriber
        if self._subscribed:
            return True
        if not getattr(self.source, "supported", False):
            log.warning("Device motion not supported; motion sampling disabled")
            return False

        self._wanted = True
        if getattr(self.source, "requires_permission", False):
            if self._permission is None:
                # callers arriving while consent is pending share the one request
                if self._permission_request is None:
                    self._permission_request = asyncio.get_running_loop().create_task(self._request_permission())
                self._permission = await asyncio.shield(self._permission_request)
            if not self._permission:
                log.warning("Motion permission denied; motion sampling disabled")
                return False

        # disable() may have run while we were waiting on consent
        if not self._wanted or self._subscribed:
            return self._subscribed

        self.source.add_listener(self._on_reading)
        self._subscribed = True
        log.info("Motion sampling enabled")
        return True

    async def _request_permission(self) -> bool:
        try:
            return bool(await self.source.request_permission())
        except Exception as exc:
            log.warning("Motion permission request failed: %s", exc)
            return False

    def disable(self) -> None:
        self._wanted = False
        if not self._subscribed:
            return
        self.source.remove_listener(self._on_reading)
        self._subscribed = False
        log.info("Motion sampling disabled")

    def _on_reading(self, reading: MotionReading) -> None:
        if not self._subscribed or self._subscriber is None:
            return
        vector = reading.acceleration_including_gravity or reading.acceleration
        if not vector:
            return
        x, y, z = (float(v or 0.0) for v in vector)
        magnitude = float(np.linalg.norm([x, y, z]))
        self._subscriber(MotionSample(magnitude, x, y, z, self.scheduler.now()))


@dataclass
class ShakeConfig:
    """
    threshold:
        Spike threshold, compared against ``magnitude / scale``.
    scale:
        STANDARD_GRAVITY for g-force thresholds, 1.0 for raw m/s^2.
    """
    threshold: float
    window_ms: float
    required: int
    cooldown_ms: float
    scale: float = 1.0


def gesture_shake_config(cfg: dict) -> ShakeConfig:
    return ShakeConfig(
        threshold=cfg["GESTURE_THRESHOLD_G"],
        window_ms=cfg["GESTURE_WINDOW_MS"],
        required=cfg["GESTURE_REQUIRED_SHAKES"],
        cooldown_ms=cfg["GESTURE_COOLDOWN_MS"],
        scale=STANDARD_GRAVITY,
    )


def safety_motion_config(cfg: dict) -> ShakeConfig:
    return ShakeConfig(
        threshold=cfg["MOTION_THRESHOLD"],
        window_ms=cfg["MOTION_WINDOW_MS"],
        required=cfg["MOTION_REQUIRED_SPIKES"],
        cooldown_ms=cfg["MOTION_COOLDOWN_MS"],
        scale=1.0,
    )


class ShakeGestureDetector:
    def __init__(
        self,
        on_shake: Callable[[MotionSample], None],
        config: ShakeConfig,
        scheduler: Scheduler,
    ):
        self.on_shake = on_shake
        self.config = config
        self.scheduler = scheduler
        self.last_spike_time: Optional[float] = None
        self.consecutive_count = 0
        self.in_cooldown = False
        self._cooldown_timer: Optional[TimerHandle] = None

    def on_sample(self, sample: MotionSample) -> bool:
        """Feed one sample; returns True when this sample fired the shake callback."""
        if sample.magnitude / self.config.scale <= self.config.threshold:
            return False

        now = sample.timestamp
        if self.last_spike_time is not None and now - self.last_spike_time < self.config.window_ms:
            self.consecutive_count += 1
        else:
            self.consecutive_count = 1
        self.last_spike_time = now
        log.debug("Spike %.2f (count=%d)", sample.magnitude, self.consecutive_count)

        if self.in_cooldown or self.consecutive_count < self.config.required:
            return False

        self.in_cooldown = True
        self.consecutive_count = 0
        try:
            self.on_shake(sample)
        finally:
            self._cooldown_timer = self.scheduler.call_later(self.config.cooldown_ms, self._end_cooldown)
        return True

    def cancel(self) -> None:
        """Drop pending cooldown and spike history; safe to call repeatedly."""
        if self._cooldown_timer is not None:
            self._cooldown_timer.cancel()
            self._cooldown_timer = None
        self.in_cooldown = False
        self.consecutive_count = 0
        self.last_spike_time = None

    def _end_cooldown(self) -> None:
        self._cooldown_timer = None
        self.in_cooldown = False
