import logging
from dataclasses import dataclass, field
from typing import List, Optional

from distress_monitor.safety.interfaces import Utterance
from distress_monitor.safety.models import (
    DistressIndicator,
    IndicatorKind,
    Severity,
    severity_for_score,
)

log = logging.getLogger("safety.speech")

URGENT_PHRASES = ("can't breathe", "choking", "drowning", "help me", "emergency")


@dataclass
class DistressScore:
    score: float = 0.0
    confidence: float = 0.0
    reasons: List[str] = field(default_factory=list)

    @property
    def severity(self) -> Severity:
        return severity_for_score(self.score)


def _normalize(text: str) -> str:
    return text.lower().replace("’", "'")


class SpeechDistressAnalyzer:
    """Keyword + acoustic heuristics over one utterance. Contributions add up."""

    def __init__(self, urgent_phrases=URGENT_PHRASES):
        self.urgent_phrases = tuple(urgent_phrases)

    def score(self, utterance: Utterance) -> DistressScore:
        text = _normalize(utterance.transcript or "")
        result = DistressScore()

        matched = [p for p in self.urgent_phrases if p in text]
        if matched:
            result.score += 0.8
            result.confidence += 0.9
            result.reasons.append("urgent:" + ",".join(matched))

        help_count = text.count("help")
        if help_count >= 3:
            result.score += 0.6
            result.confidence += 0.7
            result.reasons.append(f"help_x{help_count}")

        features = utterance.features
        if features is not None:
            if features.pitch_variation > 0.5:
                result.score += 0.3
                result.reasons.append("pitch_variation")
            if features.volume_variation > 0.4:
                result.score += 0.2
                result.reasons.append("volume_variation")
            if features.speech_rate < 0.5:
                result.score += 0.4
                result.reasons.append("slow_speech")

        result.confidence = min(result.confidence, 1.0)
        return result

    def analyze(self, utterance: Utterance, observed_at: float) -> Optional[DistressIndicator]:
        """Indicator for the utterance, or None when it only rates as low."""
        result = self.score(utterance)
        if result.severity is Severity.LOW:
            log.debug("Speech below distress threshold (score=%.2f)", result.score)
            return None

        payload = {
            "transcript": utterance.transcript,
            "transcriptConfidence": utterance.confidence,
            "reasons": result.reasons,
        }
        if utterance.features is not None:
            payload["audioFeatures"] = {
                "pitchVariation": utterance.features.pitch_variation,
                "volumeVariation": utterance.features.volume_variation,
                "speechRate": utterance.features.speech_rate,
            }
        return DistressIndicator(
            kind=IndicatorKind.SPEECH,
            score=result.score,
            confidence=result.confidence,
            observed_at=observed_at,
            payload=payload,
        )
