"""
Zeshto Vision — Face Quality Scoring
====================================
Converts a detection + frame size into a [0, 1] "usable for analysis"
score. Independent of detector confidence, which only measures
"is this a face".

  quality = size_bucket(face_area / frame_area)
          + (1 - center_distance / half_diagonal) * center_weight
  clamped to [0, 1]

Pure functions: identical inputs always give identical scores.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from zeshto_config import CONFIG
from zeshto_types import BoundingBox, Detection, Frame


@dataclass(frozen=True)
class QualityParams:
    optimal_ratio: tuple[float, float] = (0.10, 0.40)
    acceptable_ratio: tuple[float, float] = (0.05, 0.60)
    optimal_score: float = 0.5
    acceptable_score: float = 0.3
    poor_score: float = 0.1
    center_weight: float = 0.5
    default_quality: float = 0.5

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "QualityParams":
        section = (config or CONFIG)["quality"]
        return cls(
            optimal_ratio=tuple(section["optimal_ratio"]),
            acceptable_ratio=tuple(section["acceptable_ratio"]),
            optimal_score=float(section["optimal_score"]),
            acceptable_score=float(section["acceptable_score"]),
            poor_score=float(section["poor_score"]),
            center_weight=float(section["center_weight"]),
            default_quality=float(section["default_quality"]),
        )


def size_score(face_ratio: float, params: QualityParams) -> float:
    """Bucket score for face area as a fraction of frame area."""
    lo, hi = params.optimal_ratio
    if lo <= face_ratio <= hi:
        return params.optimal_score
    lo, hi = params.acceptable_ratio
    if lo <= face_ratio <= hi:
        return params.acceptable_score
    return params.poor_score


def center_score(box: BoundingBox, frame_width: float, frame_height: float) -> float:
    """1.0 when the box is dead-center, 0.0 at a frame corner."""
    cx, cy = box.center
    distance = math.hypot(cx - frame_width / 2.0, cy - frame_height / 2.0)
    max_distance = math.hypot(frame_width / 2.0, frame_height / 2.0)
    return 1.0 - min(1.0, distance / max_distance)


def compute_face_quality(
    box: Optional[BoundingBox],
    frame_width: float,
    frame_height: float,
    params: Optional[QualityParams] = None,
) -> float:
    """Quality score in [0, 1] for one face box.

    Returns params.default_quality when there is no box or the frame
    dimensions are unknown; some backends assert a face without
    precise geometry.
    """
    params = params or QualityParams()
    if box is None or not frame_width or not frame_height:
        return params.default_quality

    face_ratio = box.area / float(frame_width * frame_height)
    quality = size_score(face_ratio, params)
    quality += center_score(box, frame_width, frame_height) * params.center_weight
    return min(max(quality, 0.0), 1.0)


class QualityScorer:
    """Detection-level wrapper around compute_face_quality()."""

    def __init__(self, params: Optional[QualityParams] = None) -> None:
        self.params = params or QualityParams.from_config()

    def score(self, detection: Detection, frame: Frame) -> float:
        if not detection.present:
            return 0.0
        return compute_face_quality(
            detection.bounding_box, frame.width, frame.height, self.params
        )
