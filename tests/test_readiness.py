"""
Zeshto Vision — Readiness Gate Tests
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from zeshto_readiness import READY_MESSAGE, ReadinessGate, ReadinessReason, just_became_ready
from zeshto_types import BoundingBox, QualityResult


@pytest.fixture
def gate():
    return ReadinessGate(confidence_threshold=0.7, quality_threshold=0.6)


def _result(confidence: float, quality: float, face: bool = True) -> QualityResult:
    return QualityResult(
        face_detected=face,
        confidence=confidence,
        quality=quality,
        face_count=1 if face else 0,
        bounding_box=BoundingBox(0, 0, 10, 10) if face else None,
    )


def test_no_face_blocks_with_no_face_reason(gate):
    decision = gate.evaluate(QualityResult.no_face())
    assert decision.ready is False
    assert decision.reason == "no_face"
    assert decision.message == ReadinessReason.NO_FACE.message


def test_low_confidence_takes_priority_over_position(gate):
    decision = gate.evaluate(_result(0.5, 0.3))
    assert decision.reason == "low_confidence"


def test_poor_position_when_confidence_is_fine(gate):
    decision = gate.evaluate(_result(0.8, 0.5))
    assert decision.reason == "poor_position"


def test_thresholds_are_inclusive(gate):
    decision = gate.evaluate(_result(0.7, 0.6))
    assert decision.ready is True
    assert decision.reason is None
    assert decision.message == READY_MESSAGE


def test_raising_scores_never_revokes_readiness(gate):
    assert gate.is_ready(True, 0.8, 0.7)
    for c in (0.8, 0.9, 1.0):
        for q in (0.7, 0.85, 1.0):
            assert gate.is_ready(True, c, q)


def test_face_detected_false_is_never_ready(gate):
    assert gate.is_ready(False, 1.0, 1.0) is False
    assert gate.blocking_reason(False, 1.0, 1.0) is ReadinessReason.NO_FACE


def test_gate_defaults_from_config():
    gate = ReadinessGate()
    assert gate.confidence_threshold == 0.7
    assert gate.quality_threshold == 0.6


def test_just_became_ready_is_a_rising_edge():
    assert just_became_ready(False, True) is True
    assert just_became_ready(True, True) is False
    assert just_became_ready(True, False) is False
    assert just_became_ready(False, False) is False
