"""
Zeshto Vision — Detection Scheduler
===================================
Throttled, cancellable polling loop:

    FrameSource.read_frame() -> FaceDetector.detect() -> QualityScorer
        -> QualityResult -> on_result(result)

States:
    UNINITIALIZED -> INITIALIZING -> READY -> DETECTING <-> STOPPED

Guarantees:
  - At most one cycle in flight; an early or overlapping tick is
    DROPPED (throttle guard), never queued.
  - A tick without a decoded frame is skipped silently (no callback).
  - Detector exceptions never escape the loop; they become a
    face_detected=False result with ``error`` set.
  - Callbacks are serialized and never fire after stop() returns.
  - stop() is idempotent and safe to call from inside the callback.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, Protocol

from zeshto_config import CONFIG
from zeshto_errors import DetectionTransientError, InitializationError
from zeshto_face_detector import FaceDetector
from zeshto_quality import QualityScorer
from zeshto_types import Frame, QualityResult

_log = logging.getLogger("ZeshtoScheduler")

ResultCallback = Callable[[QualityResult], None]


class FrameSource(Protocol):
    def read_frame(self) -> Optional[Frame]:
        """Current decoded frame, or None if the source is not ready yet."""
        ...

    def release(self) -> None:
        ...


class SchedulerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DETECTING = "detecting"
    STOPPED = "stopped"


class DetectionScheduler:
    """Fixed-interval face detection loop for one camera session."""

    JOIN_TIMEOUT_S = 2.0

    def __init__(
        self,
        detector: FaceDetector,
        scorer: Optional[QualityScorer] = None,
        interval_ms: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._detector = detector
        self._scorer = scorer or QualityScorer()
        self.interval_ms = float(
            CONFIG["detection"]["interval_ms"] if interval_ms is None else interval_ms
        )
        self._throttle_s = self.interval_ms / 1000.0
        self._clock = clock

        self._state = SchedulerState.READY if detector.is_loaded else SchedulerState.UNINITIALIZED
        self._frame_source: Optional[FrameSource] = None
        self._callback: Optional[ResultCallback] = None

        # RLock: stop() may be called from inside the callback
        self._deliver_lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._generation = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._last_detection_time: Optional[float] = None
        self.last_error: Optional[DetectionTransientError] = None

        self.ticks_delivered = 0
        self.ticks_skipped = 0     # frame not ready
        self.ticks_dropped = 0     # throttled / overlapping

    # ── Lifecycle ─────────────────────────────────────────────

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_detecting(self) -> bool:
        return self._state == SchedulerState.DETECTING

    def initialize(self) -> None:
        """Load the detector model. Raises InitializationError once on failure."""
        if self._detector.is_loaded and self._state != SchedulerState.UNINITIALIZED:
            return
        self._state = SchedulerState.INITIALIZING
        try:
            self._detector.load()
        except InitializationError:
            self._state = SchedulerState.UNINITIALIZED
            raise
        self._state = SchedulerState.READY
        _log.info("DetectionScheduler initialized — interval=%.0f ms", self.interval_ms)

    def start(self, frame_source: FrameSource, on_result: ResultCallback) -> None:
        """Begin polling. Any running loop is stopped first."""
        self.stop()
        if self._state == SchedulerState.UNINITIALIZED or not self._detector.is_loaded:
            raise InitializationError("DetectionScheduler.start() before initialize()")

        with self._deliver_lock:
            self._generation += 1
            generation = self._generation
            self._frame_source = frame_source
            self._callback = on_result
            self._last_detection_time = None
            self._stop_event = threading.Event()
            self._state = SchedulerState.DETECTING

        self._thread = threading.Thread(
            target=self._run,
            args=(generation, self._stop_event),
            name="ZeshtoDetectionLoop",
            daemon=True,
        )
        self._thread.start()
        _log.info("Face detection started")

    def stop(self) -> None:
        """Cancel the loop and drop source/callback references. Idempotent."""
        with self._deliver_lock:
            if self._state != SchedulerState.DETECTING:
                return
            self._generation += 1
            self._stop_event.set()
            self._frame_source = None
            self._callback = None
            self._state = SchedulerState.STOPPED
            thread, self._thread = self._thread, None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.JOIN_TIMEOUT_S)
        _log.info(
            "Face detection stopped — delivered=%d skipped=%d dropped=%d",
            self.ticks_delivered, self.ticks_skipped, self.ticks_dropped,
        )

    def dispose(self) -> None:
        """stop() and free detector resources; start() then needs initialize()."""
        self.stop()
        self._detector.release()
        self._state = SchedulerState.UNINITIALIZED
        _log.info("DetectionScheduler disposed")

    def __enter__(self) -> "DetectionScheduler":
        return self

    def __exit__(self, *args) -> None:
        self.dispose()

    # ── Tick ──────────────────────────────────────────────────

    def tick(self) -> Optional[QualityResult]:
        """Run one detection cycle now.

        Returns the delivered result, or None if the tick was skipped
        or dropped.
        """
        return self._tick(self._generation)

    def _run(self, generation: int, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._throttle_s):
            try:
                self._tick(generation)
            except Exception:
                # Callback raised; the loop must survive
                _log.exception("Detection result callback failed")

    def _tick(self, generation: int) -> Optional[QualityResult]:
        if self._state != SchedulerState.DETECTING or generation != self._generation:
            return None

        if not self._cycle_lock.acquire(blocking=False):
            self.ticks_dropped += 1
            return None
        try:
            source = self._frame_source
            if source is None:
                return None

            frame = source.read_frame()
            if frame is None:
                self.ticks_skipped += 1
                return None

            now = self._clock()
            if (
                self._last_detection_time is not None
                and now - self._last_detection_time < self._throttle_s
            ):
                self.ticks_dropped += 1
                return None
            self._last_detection_time = now

            result = self._detect(frame)
            return self._deliver(generation, result)
        finally:
            self._cycle_lock.release()

    def _detect(self, frame: Frame) -> QualityResult:
        try:
            detection = self._detector.detect(frame)
            if not detection.present:
                return QualityResult.no_face(timestamp=frame.timestamp)
            return QualityResult(
                face_detected=True,
                confidence=detection.raw_confidence or 0.0,
                quality=self._scorer.score(detection, frame),
                face_count=detection.face_count,
                bounding_box=detection.bounding_box,
                timestamp=frame.timestamp,
            )
        except Exception as e:
            err = DetectionTransientError(str(e) or type(e).__name__)
            self.last_error = err
            _log.warning("Face detection error: %s", err)
            return QualityResult.no_face(error=str(err), timestamp=frame.timestamp)

    def _deliver(self, generation: int, result: QualityResult) -> Optional[QualityResult]:
        with self._deliver_lock:
            callback = self._callback
            if generation != self._generation or callback is None:
                return None
            self.ticks_delivered += 1
            callback(result)
        return result
