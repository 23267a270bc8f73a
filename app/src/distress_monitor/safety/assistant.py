import asyncio
import logging
from typing import List, Optional, Set

from distress_monitor.safety.confirmation import EmergencyConfirmationGate
from distress_monitor.safety.dispatcher import EmergencyAlertDispatcher
from distress_monitor.safety.interfaces import SpeechSource, Utterance
from distress_monitor.safety.models import (
    AlertType,
    DistressIndicator,
    EventStatus,
    IndicatorKind,
    SafetyEvent,
    Severity,
    new_id,
)
from distress_monitor.safety.motion import (
    MotionSample,
    MotionSampler,
    ShakeGestureDetector,
    safety_motion_config,
)
from distress_monitor.safety.speech import SpeechDistressAnalyzer
from distress_monitor.safety.store import SafetyEventStore
from distress_monitor.safety.timers import PeriodicTimer, Scheduler

log = logging.getLogger("safety.assistant")

MOTION_SCORE = 1.0
MOTION_CONFIDENCE = 0.9


class SafetyMonitoringAssistant:
    """
    Continuous distress monitoring.

    - Motion: raw acceleration spikes (safety-monitor shake config) become a
      critical ``motion`` indicator.
    - Speech: each utterance is scored; anything above ``low`` is stored.
    - Events at or above the direct-escalation severity go straight to the
      confirmation gate; a periodic correlation pass merges recent events so
      several weaker signals can escalate together.

    Stopping monitoring never cancels an escalation that is already running.
    """

    def __init__(
        self,
        cfg: dict,
        scheduler: Scheduler,
        motion: MotionSampler,
        speech: Optional[SpeechSource],
        store: SafetyEventStore,
        gate: EmergencyConfirmationGate,
        dispatcher: Optional[EmergencyAlertDispatcher] = None,
        analyzer: Optional[SpeechDistressAnalyzer] = None,
    ):
        self.cfg = cfg
        self.scheduler = scheduler
        self.motion = motion
        self.speech = speech
        self.store = store
        self.gate = gate
        self.dispatcher = dispatcher
        self.analyzer = analyzer or SpeechDistressAnalyzer()
        self.direct_escalation_severity = Severity(cfg["DIRECT_ESCALATION_SEVERITY"])
        self.correlation_window_ms = cfg["CORRELATION_WINDOW_MS"]

        self.shake = ShakeGestureDetector(self._on_motion_distress, safety_motion_config(cfg), scheduler)
        self._correlation = PeriodicTimer(scheduler, cfg["CORRELATION_INTERVAL_MS"], self.correlate)
        # events reloaded from storage were handled by an earlier run
        self._correlated_ids: Set[str] = {e.id for e in store.list()}
        self._tasks: Set[asyncio.Task] = set()
        self._monitoring = False
        self._speech_started = False

    # -------------------- lifecycle --------------------
    async def start_monitoring(self, dispatcher: Optional[EmergencyAlertDispatcher] = None) -> None:
        if self._monitoring:
            return
        if dispatcher is not None:
            self.dispatcher = dispatcher
        self._monitoring = True

        await self.motion.enable(self.shake.on_sample)
        # stop_monitoring() may have run while motion consent was pending
        if not self._monitoring:
            self.motion.disable()
            return
        self._start_speech()
        self._correlation.start()
        log.info("Safety monitoring started")

    def stop_monitoring(self) -> None:
        self._monitoring = False
        self._correlation.stop()
        self.motion.disable()
        self.shake.cancel()
        if self._speech_started and self.speech is not None:
            try:
                self.speech.stop()
            except Exception as exc:
                log.warning("Failed to stop speech recognition: %s", exc)
            self._speech_started = False
        log.info("Safety monitoring stopped")

    def is_active(self) -> bool:
        return self._monitoring

    def _start_speech(self) -> None:
        if self._speech_started:
            return
        if self.speech is None or not getattr(self.speech, "supported", False):
            log.warning("Speech recognition not supported")
            return
        try:
            self.speech.start(self.handle_utterance, self._on_speech_error)
            self._speech_started = True
        except PermissionError as exc:
            log.warning("Microphone permission denied: %s", exc)
        except Exception as exc:
            log.warning("Speech recognition unavailable: %s", exc)

    def _on_speech_error(self, error: str) -> None:
        log.error("Speech recognition error: %s", error)

    # -------------------- detectors --------------------
    def _on_motion_distress(self, sample: MotionSample) -> None:
        if not self._monitoring:
            return
        indicator = DistressIndicator(
            kind=IndicatorKind.MOTION,
            score=MOTION_SCORE,
            confidence=MOTION_CONFIDENCE,
            observed_at=sample.timestamp,
            payload=sample.to_dict(),
        )
        self._record(indicator)

    def handle_utterance(self, utterance: Utterance) -> Optional[SafetyEvent]:
        if not self._monitoring:
            return None
        indicator = self.analyzer.analyze(utterance, self.scheduler.now())
        if indicator is None:
            return None
        return self._record(indicator)

    def _record(self, indicator: DistressIndicator) -> SafetyEvent:
        event = self.store.append(indicator)
        if indicator.severity >= self.direct_escalation_severity:
            self._spawn(self.escalate(event))
        return event

    # -------------------- correlation --------------------
    def correlate(self) -> Optional[SafetyEvent]:
        """Merge recent events into one combined event when a new one has arrived."""
        recent = self.store.recent(self.correlation_window_ms)
        if len(recent) < 2:
            return None
        if all(e.id in self._correlated_ids for e in recent):
            return None
        self._correlated_ids.update(e.id for e in recent)

        now = self.scheduler.now()
        combined = SafetyEvent(
            id=new_id("combined", now),
            detected_at=now,
            indicators=[i for e in recent for i in e.indicators],
        )
        log.info(
            "Correlated %d events into %s (%d indicators)",
            len(recent), combined.id, len(combined.indicators),
        )
        self._spawn(self.escalate(combined))
        return combined

    # -------------------- escalation --------------------
    async def escalate(self, event: SafetyEvent) -> bool:
        """Confirmation gate, then dispatch. Returns True when the emergency protocol ran."""
        confirmed = await self.gate.confirm(event)
        if not confirmed:
            return False
        await self._activate_emergency_protocol(event)
        return True

    async def _activate_emergency_protocol(self, event: SafetyEvent) -> None:
        location = None
        if self.dispatcher is not None:
            kinds = ", ".join(i.kind.value for i in event.indicators)
            try:
                result = await self.dispatcher.dispatch(
                    AlertType.GENERAL, f"Safety monitoring detected distress: {kinds}"
                )
                if result is not None:
                    location = result.alert.location
                else:
                    log.error("Emergency alert for %s could not be recorded", event.id)
            except Exception:
                log.exception("Emergency dispatch failed for %s", event.id)
        else:
            log.warning("No emergency alert dispatcher configured for %s", event.id)

        self.store.transition(event, EventStatus.EMERGENCY_ACTIVATED, location=location)
        log.info("Emergency protocol activated for %s", event.id)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for all escalations started so far (and any they start) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------- history --------------------
    def get_safety_events(self) -> List[SafetyEvent]:
        return self.store.list()

    def clear_safety_events(self) -> None:
        self.store.clear()
        self._correlated_ids.clear()
