import os
from typing import List


def _split_numbers(raw: str) -> List[str]:
    return [n.strip() for n in raw.split(",") if n.strip()]


def get_config() -> dict:
    return {
        # safety-monitor motion detector (raw m/s^2 magnitude)
        "MOTION_THRESHOLD": float(os.getenv("SAFETY_MOTION_THRESHOLD", "15.0")),
        "MOTION_WINDOW_MS": int(os.getenv("SAFETY_MOTION_WINDOW_MS", "2000")),
        "MOTION_REQUIRED_SPIKES": int(os.getenv("SAFETY_MOTION_REQUIRED_SPIKES", "3")),
        "MOTION_COOLDOWN_MS": int(os.getenv("SAFETY_MOTION_COOLDOWN_MS", "4000")),
        # UI shake gesture (g-force ratio)
        "GESTURE_THRESHOLD_G": float(os.getenv("SHAKE_THRESHOLD_G", "2.2")),
        "GESTURE_WINDOW_MS": int(os.getenv("SHAKE_WINDOW_MS", "800")),
        "GESTURE_REQUIRED_SHAKES": int(os.getenv("SHAKE_REQUIRED_SHAKES", "3")),
        "GESTURE_COOLDOWN_MS": int(os.getenv("SHAKE_COOLDOWN_MS", "4000")),
        "CONFIRM_TIMEOUT_MS": int(os.getenv("SAFETY_CONFIRM_TIMEOUT_MS", "10000")),
        "CORRELATION_INTERVAL_MS": int(os.getenv("SAFETY_CORRELATION_INTERVAL_MS", "1000")),
        "CORRELATION_WINDOW_MS": int(os.getenv("SAFETY_CORRELATION_WINDOW_MS", "30000")),
        "DIRECT_ESCALATION_SEVERITY": os.getenv("SAFETY_DIRECT_ESCALATION_SEVERITY", "high"),
        "LOCATION_TIMEOUT_S": float(os.getenv("SAFETY_LOCATION_TIMEOUT_S", "10")),
        "EMERGENCY_NUMBER": os.getenv("EMERGENCY_NUMBER", "911"),
        "LOCAL_AUTHORITY_NUMBERS": _split_numbers(os.getenv("LOCAL_AUTHORITY_NUMBERS", "911,112")),
        "APP_NAME": os.getenv("SAFETY_APP_NAME", "Mentor AI"),
        "STATE_FILE": os.getenv("SAFETY_STATE_FILE", "app/src/distress_monitor/config/state.json"),
    }
