"""
Zeshto Vision — Analysis Session
================================
One camera session: owns the frame source, face detector, scheduler,
readiness gate, skin-feature extractor and (optionally) an audit log.

Flow:
  start()   -> detector loads, camera acquired, polling begins
  tick      -> QualityResult -> ReadinessGate -> latest state stored
  analyze() -> readiness check -> fresh frame -> crop -> SkinMetrics
               -> JPEG capture -> AnalysisPayload
  dispose() -> loop stopped, model freed, camera released (always)

analyze_image() is the still-photo path: one detection, then
extraction, no polling loop.

The session lock guards latest-result state only. It is never held
while calling into the scheduler, so stop() from any thread cannot
deadlock against a callback in flight.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import cv2
import numpy as np
import psutil

from zeshto_camera import CameraFrameSource, StillImageSource
from zeshto_config import CONFIG
from zeshto_errors import DeviceUnavailableError, ExtractionError, NotReadyError
from zeshto_face_detector import FaceDetector
from zeshto_logger import AuditLogger
from zeshto_quality import QualityParams, QualityScorer
from zeshto_readiness import ReadinessGate, ReadinessReason, just_became_ready
from zeshto_scheduler import DetectionScheduler, FrameSource
from zeshto_skin_features import SkinFeatureExtractor, SkinFeatureParams
from zeshto_types import AnalysisPayload, QualityResult, ReadinessDecision

_log = logging.getLogger("ZeshtoSession")

UpdateCallback = Callable[[QualityResult, ReadinessDecision], None]
ReadyCallback = Callable[[ReadinessDecision], None]


def encode_jpeg(pixels: np.ndarray, quality: int = 80) -> bytes:
    """Encode a BGR frame as JPEG bytes."""
    ok, buf = cv2.imencode(".jpg", pixels, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ExtractionError("JPEG encoding failed")
    return buf.tobytes()


class AnalysisSession:
    """Camera session with readiness tracking and an analyze action.

    Args:
        source: FrameSource; a CameraFrameSource from config if omitted.
        detector: FaceDetector; built from config if omitted.
        audit: Optional AuditLogger; closed on dispose().
        on_update: Called on every tick with (result, decision).
        on_ready: Called once when readiness rises, until analyze()
                  succeeds or reset() is called.
    """

    def __init__(
        self,
        source: Optional[FrameSource] = None,
        detector: Optional[FaceDetector] = None,
        scorer: Optional[QualityScorer] = None,
        gate: Optional[ReadinessGate] = None,
        extractor: Optional[SkinFeatureExtractor] = None,
        audit: Optional[AuditLogger] = None,
        interval_ms: Optional[float] = None,
        config: Optional[dict] = None,
        on_update: Optional[UpdateCallback] = None,
        on_ready: Optional[ReadyCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CONFIG
        section = self.config["session"]
        self.jpeg_quality = int(section["jpeg_quality"])
        self.require_ready = bool(section["require_ready"])

        self.source = source if source is not None else CameraFrameSource(config=self.config)
        self.detector = detector or FaceDetector(
            backend=self.config["detection"]["backend"], config=self.config
        )
        self.scorer = scorer or QualityScorer(QualityParams.from_config(self.config))
        readiness = self.config["readiness"]
        self.gate = gate or ReadinessGate(
            readiness["confidence_threshold"], readiness["quality_threshold"]
        )
        self.extractor = extractor or SkinFeatureExtractor(
            SkinFeatureParams.from_config(self.config)
        )
        self.scheduler = DetectionScheduler(
            self.detector,
            scorer=self.scorer,
            interval_ms=(
                self.config["detection"]["interval_ms"] if interval_ms is None else interval_ms
            ),
            clock=clock,
        )
        self.audit = audit
        self.on_update = on_update
        self.on_ready = on_ready

        self._lock = threading.Lock()
        self._latest: Optional[QualityResult] = None
        self._decision = ReadinessDecision(
            ready=False,
            reason=ReadinessReason.NO_FACE.value,
            message=ReadinessReason.NO_FACE.message,
        )
        self._last_payload: Optional[AnalysisPayload] = None
        self._memory_baseline = psutil.Process().memory_info().rss
        self._disposed = False

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self) -> None:
        """(Re)start detection. Any previous loop is stopped first.

        Raises:
            InitializationError: face model failed to load.
            DeviceUnavailableError: camera could not be acquired.
        """
        # A restarted session owns the camera again; the next dispose() must release it
        self._disposed = False
        self.scheduler.stop()
        self.scheduler.initialize()
        try:
            self._acquire_source()
        except DeviceUnavailableError as e:
            self._audit_error("camera_unavailable", e)
            raise
        self.scheduler.start(self.source, self._on_result)
        self._audit({"event": "detection_started", "interval_ms": self.scheduler.interval_ms})

    def stop(self) -> None:
        self.scheduler.stop()

    def reacquire_camera(self) -> None:
        """Release and re-open the camera with the lock-clearing cycle."""
        was_running = self.scheduler.is_detecting
        self.scheduler.stop()
        reacquire = getattr(self.source, "reacquire", None)
        try:
            if reacquire is not None:
                reacquire()
            else:
                self._acquire_source()
        except DeviceUnavailableError as e:
            self._audit_error("camera_unavailable", e)
            raise
        if was_running:
            self.scheduler.start(self.source, self._on_result)

    def dispose(self) -> None:
        """Stop the loop, free the model, release the camera. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        try:
            self.scheduler.dispose()
        finally:
            release = getattr(self.source, "release", None)
            try:
                if release is not None:
                    release()
            finally:
                if self.audit is not None:
                    self.audit.close()
        _log.info("AnalysisSession disposed")

    def __enter__(self) -> "AnalysisSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.dispose()

    def _acquire_source(self) -> None:
        acquire = getattr(self.source, "acquire", None)
        if acquire is not None:
            acquire()

    # ── Tick handling ─────────────────────────────────────────

    def _on_result(self, result: QualityResult) -> None:
        decision = self.gate.evaluate(result)
        with self._lock:
            previous = self._decision
            self._latest = result
            self._decision = decision
            notify_ready = (
                just_became_ready(previous.ready, decision.ready)
                and self._last_payload is None
            )

        if previous.ready != decision.ready:
            self._audit({
                "event": "readiness_changed",
                "ready": decision.ready,
                "reason": decision.reason,
                "confidence": result.confidence,
                "quality": result.quality,
            })
        if result.error:
            self._audit({"event": "detection_error", "error": result.error}, level="WARN")

        if self.on_update is not None:
            self.on_update(result, decision)
        if notify_ready and self.on_ready is not None:
            self.on_ready(decision)

    # ── Accessors ─────────────────────────────────────────────

    @property
    def latest_result(self) -> Optional[QualityResult]:
        with self._lock:
            return self._latest

    @property
    def readiness(self) -> ReadinessDecision:
        with self._lock:
            return self._decision

    @property
    def last_payload(self) -> Optional[AnalysisPayload]:
        with self._lock:
            return self._last_payload

    def reset(self) -> None:
        """Forget the last analysis so the next ready edge notifies again."""
        with self._lock:
            self._last_payload = None
            self._latest = None
            self._decision = ReadinessDecision(
                ready=False,
                reason=ReadinessReason.NO_FACE.value,
                message=ReadinessReason.NO_FACE.message,
            )

    def get_status(self) -> dict:
        current_mem = psutil.Process().memory_info().rss
        with self._lock:
            latest = self._latest
            decision = self._decision
            analyzed = self._last_payload is not None
        status = {
            "scheduler_state": self.scheduler.state.value,
            "detector_backend": self.detector.backend_name,
            "ticks_delivered": self.scheduler.ticks_delivered,
            "ticks_skipped": self.scheduler.ticks_skipped,
            "ticks_dropped": self.scheduler.ticks_dropped,
            "last_result": latest.to_dict() if latest else None,
            "ready": decision.ready,
            "reason": decision.reason,
            "message": decision.message,
            "analyzed": analyzed,
            "memory_mb": current_mem / 1e6,
            "memory_growth_mb": (current_mem - self._memory_baseline) / 1e6,
        }
        health = getattr(self.source, "get_health_status", None)
        if health is not None:
            status["camera"] = health()
        return status

    # ── Analyze ───────────────────────────────────────────────

    def analyze(self) -> AnalysisPayload:
        """Capture the current frame and compute skin metrics.

        Raises:
            NotReadyError: readiness gate closed (``reason`` says why).
            ExtractionError: no frame, empty crop or encoding failure.
        """
        with self._lock:
            latest = self._latest
            decision = self._decision

        if latest is None or not latest.face_detected:
            raise NotReadyError(ReadinessReason.NO_FACE.message, ReadinessReason.NO_FACE.value)
        if self.require_ready and not decision.ready:
            raise NotReadyError(decision.message or "Not ready", decision.reason)

        frame = self.source.read_frame()
        if frame is None:
            raise ExtractionError("No camera frame available for analysis")

        try:
            metrics = self.extractor.extract_from_frame(frame, latest.bounding_box)
            image = encode_jpeg(frame.pixels, self.jpeg_quality)
        except ExtractionError as e:
            self._audit_error("analysis_failed", e)
            raise

        payload = AnalysisPayload(
            metrics=metrics,
            image_jpeg=image,
            bounding_box=latest.bounding_box,
            confidence=latest.confidence,
            quality=latest.quality,
            timestamp=frame.timestamp,
        )
        with self._lock:
            self._last_payload = payload
        self._audit({"event": "analysis_complete", "payload": payload.to_dict(include_image=False)})
        _log.info("Analysis complete — health=%.1f", metrics.overall_health)
        return payload

    def analyze_image(self, image) -> AnalysisPayload:
        """Still-photo path: detect once, then extract.

        Only face presence is required; position and confidence
        thresholds are reported in ``extras`` rather than enforced.

        Raises:
            NotReadyError: no face in the image.
            ExtractionError: unreadable image or detector failure.
        """
        source = StillImageSource(image)
        frame = source.read_frame()

        if not self.detector.is_loaded:
            self.scheduler.initialize()
        try:
            detection = self.detector.detect(frame)
        except Exception as e:
            err = ExtractionError(f"Face detection failed: {str(e) or type(e).__name__}")
            self._audit_error("image_detection_failed", err)
            raise err from e
        if not detection.present or detection.bounding_box is None:
            raise NotReadyError(ReadinessReason.NO_FACE.message, ReadinessReason.NO_FACE.value)

        result = QualityResult(
            face_detected=True,
            confidence=detection.raw_confidence or 0.0,
            quality=self.scorer.score(detection, frame),
            face_count=detection.face_count,
            bounding_box=detection.bounding_box,
            timestamp=frame.timestamp,
        )
        decision = self.gate.evaluate(result)

        metrics = self.extractor.extract_from_frame(frame, result.bounding_box)
        payload = AnalysisPayload(
            metrics=metrics,
            image_jpeg=encode_jpeg(frame.pixels, self.jpeg_quality),
            bounding_box=result.bounding_box,
            confidence=result.confidence,
            quality=result.quality,
            timestamp=frame.timestamp,
            extras={
                "source": "image",
                "ready": decision.ready,
                "reason": decision.reason,
                "confidenceMeasured": detection.confidence_measured,
            },
        )
        with self._lock:
            self._last_payload = payload
        self._audit({"event": "image_analysis_complete", "payload": payload.to_dict(include_image=False)})
        return payload

    # ── Audit helpers ─────────────────────────────────────────

    def _audit(self, data: dict, level: str = "AUDIT") -> None:
        if self.audit is not None:
            self.audit.log(data, level=level)

    def _audit_error(self, event: str, exc: BaseException) -> None:
        _log.error("%s: %s", event, exc)
        if self.audit is not None:
            self.audit.log(
                {"event": event, "error": str(exc), "type": type(exc).__name__},
                level="ERROR",
            )
