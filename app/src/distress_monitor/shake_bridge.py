# SPDX-License-Identifier: Apache-2.0
import asyncio
import logging
from typing import Optional, Set

from distress_monitor.safety.dispatcher import EmergencyAlertDispatcher
from distress_monitor.safety.interfaces import Notifier
from distress_monitor.safety.models import AlertType
from distress_monitor.safety.motion import (
    MotionSample,
    MotionSampler,
    ShakeGestureDetector,
    gesture_shake_config,
)
from distress_monitor.safety.timers import Scheduler

logger = logging.getLogger(__name__)

SHAKE_ALERT_INFO = "Emergency detected via triple-shake gesture"


class ShakeEmergencyBridge:
    """
    App-wide shake gesture: shaking the phone sends a direct ``general`` alert.

    Uses the g-force gesture configuration, which is separate from the safety
    monitor's raw-acceleration detector.
    """

    def __init__(
        self,
        cfg: dict,
        scheduler: Scheduler,
        sampler: MotionSampler,
        dispatcher: EmergencyAlertDispatcher,
        notifier: Notifier,
    ):
        self.sampler = sampler
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.detector = ShakeGestureDetector(self._on_shake, gesture_shake_config(cfg), scheduler)
        self._tasks: Set[asyncio.Task] = set()

    async def enable(self) -> bool:
        return await self.sampler.enable(self.detector.on_sample)

    def disable(self) -> None:
        self.sampler.disable()
        self.detector.cancel()

    def _on_shake(self, sample: MotionSample) -> None:
        logger.info("Shake gesture detected (%.2f m/s^2)", sample.magnitude)
        self.notifier.notify(
            "Shake detected",
            f"Triggering emergency protocol ({self.detector.config.required} shakes).",
            "destructive",
        )
        task = asyncio.get_running_loop().create_task(self._send_alert())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send_alert(self) -> Optional[bool]:
        try:
            return await self.dispatcher.send_direct_emergency_alert(AlertType.GENERAL, SHAKE_ALERT_INFO)
        except Exception:
            logger.exception("Emergency alert failed from shake")
            return None

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
