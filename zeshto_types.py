"""
Zeshto Vision — Shared Data Types
=================================
Value objects passed between camera, detector, scheduler, readiness
gate and skin-feature extractor.

Geometry convention: every BoundingBox is in PIXEL units of the frame
it was detected on.
"""

from __future__ import annotations

import base64
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned face box in pixel coordinates (x, y = top-left)."""
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def clip(self, frame_width: int, frame_height: int) -> "BoundingBox":
        """Intersect with the frame rectangle (may become empty)."""
        x1 = min(max(self.x, 0.0), float(frame_width))
        y1 = min(max(self.y, 0.0), float(frame_height))
        x2 = min(max(self.x + self.width, 0.0), float(frame_width))
        y2 = min(max(self.y + self.height, 0.0), float(frame_height))
        return BoundingBox(x1, y1, x2 - x1, y2 - y1)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_corners(cls, top_left, bottom_right) -> "BoundingBox":
        return cls(
            float(top_left[0]),
            float(top_left[1]),
            float(bottom_right[0] - top_left[0]),
            float(bottom_right[1] - top_left[1]),
        )


@dataclass(frozen=True)
class Frame:
    """One decoded video frame. Never retained past one detection cycle."""
    pixels: np.ndarray          # (H, W, 3) uint8 BGR
    timestamp: float            # monotonic seconds, strictly increasing per source

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])


@dataclass(frozen=True)
class Detection:
    """Single best face for a frame, or an explicit absence.

    raw_confidence is always populated when present=True; when the
    backend gave no per-face score it holds the fallback value and
    confidence_measured is False.
    """
    present: bool
    bounding_box: Optional[BoundingBox] = None
    raw_confidence: Optional[float] = None
    confidence_measured: bool = False
    face_count: int = 0

    @classmethod
    def absent(cls) -> "Detection":
        return cls(present=False)


@dataclass
class QualityResult:
    """Unit delivered to the caller on every scheduler tick."""
    face_detected: bool
    confidence: float = 0.0
    quality: float = 0.0
    face_count: int = 0
    bounding_box: Optional[BoundingBox] = None
    error: Optional[str] = None
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        if not self.face_detected:
            self.confidence = 0.0
            self.quality = 0.0
        else:
            self.confidence = _clamp(self.confidence, 0.0, 1.0)
            self.quality = _clamp(self.quality, 0.0, 1.0)

    @classmethod
    def no_face(cls, error: Optional[str] = None, timestamp: float = 0.0) -> "QualityResult":
        return cls(face_detected=False, error=error, timestamp=timestamp)

    def to_dict(self) -> dict:
        data = {
            "faceDetected": self.face_detected,
            "confidence": self.confidence,
            "quality": self.quality,
            "faceCount": self.face_count,
            "boundingBox": self.bounding_box.to_dict() if self.bounding_box else None,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class SkinMetrics:
    """Per-capture skin metrics; every numeric field lies in [0, 100]."""
    oiliness: float
    dryness: float
    acne_level: float
    pigmentation_level: float
    wrinkle_level: float
    texture_score: float
    overall_health: float
    skin_tone: str = "unknown"
    skin_type: str = "unknown"
    concerns: tuple = ()

    _NUMERIC_FIELDS = (
        "oiliness", "dryness", "acne_level", "pigmentation_level",
        "wrinkle_level", "texture_score", "overall_health",
    )

    def __post_init__(self) -> None:
        for name in self._NUMERIC_FIELDS:
            object.__setattr__(self, name, _clamp(getattr(self, name), 0.0, 100.0))
        object.__setattr__(self, "concerns", tuple(self.concerns))

    def to_dict(self) -> dict:
        return {
            "oiliness": self.oiliness,
            "dryness": self.dryness,
            "acneLevel": self.acne_level,
            "pigmentationLevel": self.pigmentation_level,
            "wrinkleLevel": self.wrinkle_level,
            "textureScore": self.texture_score,
            "overallHealth": self.overall_health,
            "skinTone": self.skin_tone,
            "skinType": self.skin_type,
            "primaryConcerns": list(self.concerns),
        }


@dataclass(frozen=True)
class ReadinessDecision:
    """Outcome of the readiness gate for one QualityResult."""
    ready: bool
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class AnalysisPayload:
    """Metrics + captured image handed to the external backend."""
    metrics: SkinMetrics
    image_jpeg: bytes
    bounding_box: BoundingBox
    confidence: float
    quality: float
    timestamp: float
    extras: dict = field(default_factory=dict)

    def to_dict(self, include_image: bool = True) -> dict:
        data = {
            "skinMetrics": self.metrics.to_dict(),
            "faceBox": self.bounding_box.to_dict(),
            "confidence": self.confidence,
            "quality": self.quality,
            "timestamp": self.timestamp,
        }
        if include_image:
            data["imageJpegBase64"] = base64.b64encode(self.image_jpeg).decode("ascii")
        if self.extras:
            data["extras"] = dict(self.extras)
        return data


def _clamp(value: float, lo: float, hi: float) -> float:
    value = float(value)
    if math.isnan(value):
        return lo
    return min(hi, max(lo, value))
