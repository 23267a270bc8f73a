import random
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_id(prefix: str, now_ms: float) -> str:
    """Time-based id with a random base36 suffix; unique in practice, not by construction."""
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}_{int(now_ms)}_{suffix}"


class IndicatorKind(Enum):
    MOTION = "motion"
    SPEECH = "speech"
    VOICE_PATTERN = "voice_pattern"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __ge__(self, other: "Severity") -> bool:
        return self.rank >= other.rank

    def __gt__(self, other: "Severity") -> bool:
        return self.rank > other.rank

    def __le__(self, other: "Severity") -> bool:
        return self.rank <= other.rank

    def __lt__(self, other: "Severity") -> bool:
        return self.rank < other.rank


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


def severity_for_score(score: float) -> Severity:
    if score >= 0.8:
        return Severity.CRITICAL
    if score >= 0.6:
        return Severity.HIGH
    if score >= 0.4:
        return Severity.MEDIUM
    return Severity.LOW


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class EventStatus(Enum):
    DETECTED = "detected"
    CONFIRMED = "confirmed"
    FALSE_POSITIVE = "false_positive"
    EMERGENCY_ACTIVATED = "emergency_activated"

    @property
    def terminal(self) -> bool:
        return self in (EventStatus.FALSE_POSITIVE, EventStatus.EMERGENCY_ACTIVATED)


_TRANSITIONS = {
    EventStatus.DETECTED: {
        EventStatus.CONFIRMED,
        EventStatus.FALSE_POSITIVE,
        EventStatus.EMERGENCY_ACTIVATED,
    },
    EventStatus.CONFIRMED: {EventStatus.EMERGENCY_ACTIVATED},
    EventStatus.FALSE_POSITIVE: set(),
    EventStatus.EMERGENCY_ACTIVATED: set(),
}


class UserResponse(Enum):
    CONFIRMED = "confirmed"
    DENIED = "denied"
    NO_RESPONSE = "no_response"


class AlertType(Enum):
    MEDICAL = "medical"
    SAFETY = "safety"
    FIRE = "fire"
    POLICE = "police"
    FALL = "fall"
    PANIC = "panic"
    GENERAL = "general"


class AlertStatus(Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class Location:
    latitude: float
    longitude: float
    accuracy: float
    timestamp: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
        }
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Location"]:
        if not data:
            return None
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=float(data.get("accuracy", 0.0)),
            timestamp=data.get("timestamp"),
        )


@dataclass
class DistressIndicator:
    """
    One detector's evidence of possible danger.

    Severity is computed from ``score`` and cannot be passed in; confidence is
    clamped to [0, 1].
    """
    kind: IndicatorKind
    score: float
    confidence: float
    observed_at: float
    payload: Dict[str, Any] = field(default_factory=dict)
    severity: Severity = field(init=False)

    def __post_init__(self) -> None:
        self.confidence = _clamp01(self.confidence)
        self.severity = severity_for_score(self.score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "severity": self.severity.value,
            "score": self.score,
            "confidence": self.confidence,
            "timestamp": self.observed_at,
            "data": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DistressIndicator":
        return cls(
            kind=IndicatorKind(data["type"]),
            score=float(data.get("score", 0.0)),
            confidence=float(data.get("confidence", 0.0)),
            observed_at=data["timestamp"],
            payload=data.get("data") or {},
        )


@dataclass
class SafetyEvent:
    id: str
    detected_at: float
    indicators: List[DistressIndicator]
    status: EventStatus = EventStatus.DETECTED
    location: Optional[Location] = None
    user_response: Optional[UserResponse] = None

    def can_transition(self, target: EventStatus) -> bool:
        return target in _TRANSITIONS[self.status]

    @property
    def highest_severity(self) -> Severity:
        return max((i.severity for i in self.indicators), key=lambda s: s.rank)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.detected_at,
            "indicators": [i.to_dict() for i in self.indicators],
            "status": self.status.value,
        }
        if self.location is not None:
            data["location"] = self.location.to_dict()
        if self.user_response is not None:
            data["userResponse"] = self.user_response.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafetyEvent":
        response = data.get("userResponse")
        return cls(
            id=data["id"],
            detected_at=data["timestamp"],
            indicators=[DistressIndicator.from_dict(i) for i in data.get("indicators", [])],
            status=EventStatus(data.get("status", EventStatus.DETECTED.value)),
            location=Location.from_dict(data.get("location")),
            user_response=UserResponse(response) if response else None,
        )


@dataclass
class EmergencyAlert:
    id: str
    type: AlertType
    timestamp: str
    location: Optional[Location]
    additional_info: str = ""
    status: AlertStatus = AlertStatus.SENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "location": self.location.to_dict() if self.location else None,
            "additionalInfo": self.additional_info,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmergencyAlert":
        return cls(
            id=data["id"],
            type=AlertType(data["type"]),
            timestamp=data["timestamp"],
            location=Location.from_dict(data.get("location")),
            additional_info=data.get("additionalInfo", ""),
            status=AlertStatus(data.get("status", AlertStatus.SENT.value)),
        )


@dataclass
class EmergencyContact:
    id: str
    name: str
    phone: str
    relationship: str = ""
    email: Optional[str] = None
    is_primary: bool = False
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "relationship": self.relationship,
            "isPrimary": self.is_primary,
            "isActive": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmergencyContact":
        return cls(
            id=data["id"],
            name=data["name"],
            phone=data["phone"],
            relationship=data.get("relationship", ""),
            email=data.get("email") or None,
            is_primary=bool(data.get("isPrimary", False)),
            is_active=bool(data.get("isActive", True)),
        )
