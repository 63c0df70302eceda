"""
Zeshto Vision — Detection Scheduler Tests
=========================================
Manual ticks against a fake clock for ordering/throttle semantics,
plus one threaded run for the no-overlap and no-callback-after-stop
guarantees.
"""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

import numpy as np
import pytest

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from zeshto_errors import DetectionTransientError, InitializationError
from zeshto_quality import QualityParams, QualityScorer
from zeshto_scheduler import DetectionScheduler, SchedulerState
from zeshto_types import BoundingBox, Detection, Frame


# ─── Fakes ────────────────────────────────────────────────────

class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDetector:
    backend_name = "fake"

    def __init__(self, fail_on=(), delay_s: float = 0.0, load_error=None, loaded=True):
        self.calls = 0
        self.fail_on = set(fail_on)
        self.delay_s = delay_s
        self.load_error = load_error
        self.is_loaded = loaded
        self.released = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def load(self):
        if self.load_error:
            raise self.load_error
        self.is_loaded = True

    def detect(self, frame):
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            call = self.calls
        try:
            if self.delay_s:
                time.sleep(self.delay_s)
            if call in self.fail_on:
                raise RuntimeError(f"detector failure #{call}")
            return Detection(
                present=True,
                bounding_box=BoundingBox(160, 48, 320, 384),
                raw_confidence=0.95,
                confidence_measured=True,
                face_count=1,
            )
        finally:
            with self._lock:
                self.in_flight -= 1

    def release(self):
        self.released += 1
        self.is_loaded = False


class FakeSource:
    def __init__(self, ready=True):
        self.ready = ready
        self._ts = 0.0

    def read_frame(self):
        if not self.ready:
            return None
        self._ts += 1.0
        return Frame(pixels=np.full((480, 640, 3), 100, dtype=np.uint8), timestamp=self._ts)


def _scheduler(detector=None, clock=None, interval_ms=60_000):
    # Long interval keeps the background loop idle during manual ticks
    return DetectionScheduler(
        detector or FakeDetector(),
        scorer=QualityScorer(QualityParams()),
        interval_ms=interval_ms,
        clock=clock or FakeClock(),
    )


# ─── Ordering / delivery ──────────────────────────────────────

def test_each_tick_delivers_one_result_in_order():
    clock = FakeClock()
    sched = _scheduler(clock=clock)
    results = []
    sched.start(FakeSource(), results.append)

    for _ in range(3):
        sched.tick()
        clock.advance(60.0)
    sched.stop()

    assert len(results) == 3
    assert [r.timestamp for r in results] == sorted(r.timestamp for r in results)
    assert all(r.face_detected for r in results)
    assert results[0].confidence == pytest.approx(0.95)
    assert results[0].quality == pytest.approx(1.0)


def test_detector_error_becomes_error_result_and_loop_continues():
    clock = FakeClock()
    detector = FakeDetector(fail_on={2})
    sched = _scheduler(detector, clock)
    results = []
    sched.start(FakeSource(), results.append)

    for _ in range(3):
        sched.tick()
        clock.advance(60.0)
    sched.stop()

    assert len(results) == 3
    assert results[1].face_detected is False
    assert results[1].confidence == 0.0 and results[1].quality == 0.0
    assert "detector failure #2" in results[1].error
    assert results[2].face_detected is True
    assert isinstance(sched.last_error, DetectionTransientError)


def test_early_tick_is_dropped_not_queued():
    clock = FakeClock()
    sched = _scheduler(clock=clock)
    results = []
    sched.start(FakeSource(), results.append)

    assert sched.tick() is not None
    clock.advance(1.0)  # well inside the 60 s throttle window
    assert sched.tick() is None
    sched.stop()

    assert len(results) == 1
    assert sched.ticks_dropped == 1


def test_frame_not_ready_skips_without_callback():
    clock = FakeClock()
    source = FakeSource(ready=False)
    sched = _scheduler(clock=clock)
    results = []
    sched.start(source, results.append)

    assert sched.tick() is None
    assert sched.ticks_skipped == 1
    source.ready = True
    # A skipped tick does not consume the throttle window
    assert sched.tick() is not None
    sched.stop()
    assert len(results) == 1


# ─── Stop semantics ───────────────────────────────────────────

def test_stop_is_idempotent_and_silences_ticks():
    sched = _scheduler()
    results = []
    sched.start(FakeSource(), results.append)
    sched.stop()
    sched.stop()

    assert sched.state == SchedulerState.STOPPED
    assert sched.tick() is None
    assert results == []


def test_stop_before_start_is_noop():
    sched = _scheduler()
    sched.stop()
    assert sched.state == SchedulerState.READY


def test_stop_from_inside_callback():
    clock = FakeClock()
    sched = _scheduler(clock=clock)
    results = []

    def on_result(result):
        results.append(result)
        sched.stop()

    sched.start(FakeSource(), on_result)
    sched.tick()
    clock.advance(60.0)
    assert sched.tick() is None
    assert len(results) == 1
    assert sched.state == SchedulerState.STOPPED


def test_restart_replaces_previous_callback():
    clock = FakeClock()
    sched = _scheduler(clock=clock)
    first, second = [], []
    sched.start(FakeSource(), first.append)
    sched.start(FakeSource(), second.append)
    sched.tick()
    sched.stop()

    assert first == []
    assert len(second) == 1


# ─── Lifecycle ────────────────────────────────────────────────

def test_start_before_initialize_raises():
    sched = _scheduler(FakeDetector(loaded=False))
    assert sched.state == SchedulerState.UNINITIALIZED
    with pytest.raises(InitializationError):
        sched.start(FakeSource(), lambda r: None)


def test_initialize_loads_detector():
    detector = FakeDetector(loaded=False)
    sched = _scheduler(detector)
    sched.initialize()
    assert detector.is_loaded
    assert sched.state == SchedulerState.READY


def test_initialize_failure_surfaces_once():
    detector = FakeDetector(loaded=False, load_error=InitializationError("model missing"))
    sched = _scheduler(detector)
    with pytest.raises(InitializationError):
        sched.initialize()
    assert sched.state == SchedulerState.UNINITIALIZED


def test_dispose_releases_detector_and_requires_initialize():
    detector = FakeDetector()
    sched = _scheduler(detector)
    sched.start(FakeSource(), lambda r: None)
    sched.dispose()

    assert detector.released == 1
    assert sched.state == SchedulerState.UNINITIALIZED
    with pytest.raises(InitializationError):
        sched.start(FakeSource(), lambda r: None)


def test_context_manager_disposes():
    detector = FakeDetector()
    with _scheduler(detector) as sched:
        sched.start(FakeSource(), lambda r: None)
    assert detector.released == 1


# ─── Threaded loop ────────────────────────────────────────────

def test_background_loop_never_overlaps_and_stops_cleanly():
    detector = FakeDetector(delay_s=0.03)
    sched = DetectionScheduler(
        detector, scorer=QualityScorer(QualityParams()), interval_ms=10,
    )
    results = []
    lock = threading.Lock()

    def on_result(result):
        with lock:
            results.append(result)

    sched.start(FakeSource(), on_result)
    time.sleep(0.4)
    sched.stop()

    with lock:
        delivered = len(results)
    assert delivered >= 2
    assert detector.max_in_flight == 1

    time.sleep(0.1)
    with lock:
        assert len(results) == delivered


def test_callback_exception_does_not_kill_loop():
    detector = FakeDetector()
    sched = DetectionScheduler(
        detector, scorer=QualityScorer(QualityParams()), interval_ms=10,
    )
    calls = []

    def on_result(result):
        calls.append(result)
        raise ValueError("consumer bug")

    sched.start(FakeSource(), on_result)
    time.sleep(0.2)
    sched.stop()
    assert len(calls) >= 2
