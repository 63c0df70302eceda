"""
Zeshto Vision — Analysis Readiness Gate
=======================================
Decides whether the "analyze" action is enabled for the latest
QualityResult:

    ready = face_detected
            and confidence >= confidence_threshold
            and quality    >= quality_threshold

When not ready, exactly one reason is reported, in fixed priority:
NO_FACE > LOW_CONFIDENCE > POOR_POSITION.

The gate keeps no history. The caller holds the previous readiness
and uses just_became_ready() for one-time notifications.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from zeshto_config import CONFIG
from zeshto_types import QualityResult, ReadinessDecision


class ReadinessReason(str, Enum):
    NO_FACE = "no_face"
    LOW_CONFIDENCE = "low_confidence"
    POOR_POSITION = "poor_position"

    @property
    def message(self) -> str:
        return _REASON_MESSAGES[self]


_REASON_MESSAGES = {
    ReadinessReason.NO_FACE: "No face detected. Position your face in front of the camera.",
    ReadinessReason.LOW_CONFIDENCE: "Face detection confidence too low. Improve lighting.",
    ReadinessReason.POOR_POSITION: "Move closer and center your face in the frame.",
}

READY_MESSAGE = "Face detected. Ready to analyze your skin."


class ReadinessGate:
    """Threshold policy over QualityResult."""

    def __init__(
        self,
        confidence_threshold: Optional[float] = None,
        quality_threshold: Optional[float] = None,
    ) -> None:
        section = CONFIG["readiness"]
        self.confidence_threshold = float(
            section["confidence_threshold"] if confidence_threshold is None else confidence_threshold
        )
        self.quality_threshold = float(
            section["quality_threshold"] if quality_threshold is None else quality_threshold
        )

    def evaluate(self, result: QualityResult) -> ReadinessDecision:
        reason = self.blocking_reason(
            result.face_detected, result.confidence, result.quality
        )
        if reason is None:
            return ReadinessDecision(ready=True, reason=None, message=READY_MESSAGE)
        return ReadinessDecision(ready=False, reason=reason.value, message=reason.message)

    def is_ready(self, face_detected: bool, confidence: float, quality: float) -> bool:
        return self.blocking_reason(face_detected, confidence, quality) is None

    def blocking_reason(
        self, face_detected: bool, confidence: float, quality: float
    ) -> Optional[ReadinessReason]:
        if not face_detected:
            return ReadinessReason.NO_FACE
        if confidence < self.confidence_threshold:
            return ReadinessReason.LOW_CONFIDENCE
        if quality < self.quality_threshold:
            return ReadinessReason.POOR_POSITION
        return None


def just_became_ready(previous_ready: bool, current_ready: bool) -> bool:
    """Rising edge of readiness; drives the one-time "ready" notification."""
    return current_ready and not previous_ready
