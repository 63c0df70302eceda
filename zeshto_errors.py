"""
Zeshto Vision — Error Taxonomy
==============================
Every failure the capture/detection/analysis core can surface.

  ZeshtoError
  ├── InitializationError       detector/model not loaded (fatal for session)
  ├── DeviceUnavailableError    camera could not be acquired (classified)
  ├── DetectionTransientError   one tick failed (recovered inside the loop)
  └── ExtractionError           capture/crop/feature extraction failed
      └── NotReadyError         analyze requested while the gate is closed

A frame that is not decoded yet is NOT an error: the tick is skipped.
"""

from __future__ import annotations

from typing import Optional


class ZeshtoError(Exception):
    """Base class for all Zeshto Vision errors."""


class InitializationError(ZeshtoError):
    """Detector or model failed to load, or was used before loading.

    Surfaced once per session. Never retried automatically; the caller
    must call ``initialize()`` again.
    """


class DeviceUnavailableError(ZeshtoError):
    """Camera could not be acquired.

    Attributes:
        reason: One of REASONS. Retry is the caller's decision.
    """

    DENIED = "denied"
    NOT_FOUND = "not_found"
    BUSY = "busy"
    CONSTRAINTS_UNSUPPORTED = "constraints_unsupported"
    UNKNOWN = "unknown"

    REASONS = (DENIED, NOT_FOUND, BUSY, CONSTRAINTS_UNSUPPORTED, UNKNOWN)

    def __init__(self, message: str, reason: str = UNKNOWN) -> None:
        if reason not in self.REASONS:
            reason = self.UNKNOWN
        super().__init__(message)
        self.reason = reason

    def __str__(self) -> str:
        return f"{super().__str__()} (reason={self.reason})"


class DetectionTransientError(ZeshtoError):
    """A single detection tick failed.

    Never propagates out of the scheduler loop; converted into a
    ``face_detected=False`` result carrying the message.
    """


class ExtractionError(ZeshtoError):
    """Capture, crop or skin-feature extraction failed for one analyze action."""


class NotReadyError(ExtractionError):
    """Analyze requested while the readiness gate is closed."""

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason


# Keyword table for classifying camera failures. Checked in order.
_DEVICE_ERROR_KEYWORDS = (
    (DeviceUnavailableError.DENIED, (
        "permission", "not authorized", "notallowed", "denied", "access",
    )),
    (DeviceUnavailableError.BUSY, (
        "busy", "in use", "notreadable", "resource", "already", "locked",
        "conflict", "aborted",
    )),
    (DeviceUnavailableError.NOT_FOUND, (
        "not found", "notfound", "no device", "no camera", "out of device",
        "can't open camera", "cannot open camera", "index",
    )),
    (DeviceUnavailableError.CONSTRAINTS_UNSUPPORTED, (
        "constraint", "resolution", "unsupported", "not supported",
        "overconstrained",
    )),
)


def classify_device_error(message: str) -> str:
    """Map a camera error message to a DeviceUnavailableError reason."""
    text = (message or "").lower()
    for reason, keywords in _DEVICE_ERROR_KEYWORDS:
        if any(k in text for k in keywords):
            return reason
    return DeviceUnavailableError.UNKNOWN
