"""
Zeshto Vision — Face Detector Adaptor
=====================================
Owns ALL face-detection model interaction. The scheduler and session
only ever see a Detection.

Backends:
  - 'mediapipe': MediaPipe Tasks FaceDetector (BlazeFace short-range,
                 ~1 MB .tflite, CPU, VIDEO running mode). Default.
  - 'dnn_ssd':   OpenCV DNN Caffe SSD (res10_300x300). Heavier but
                 more tolerant of extreme angles.

Selection rule: the FIRST face returned by the backend is used. Both
backends return faces in descending score order; no re-sorting is done
here. A face without a per-face score gets fallback_confidence and is
marked confidence_measured=False. That value is a known precision
limit, not a measured confidence.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from zeshto_config import CONFIG, resolve_path
from zeshto_errors import InitializationError
from zeshto_types import BoundingBox, Detection, Frame

_log = logging.getLogger("ZeshtoFaceDetector")


@dataclass(frozen=True)
class RawFace:
    """One face as reported by a backend, before fallback rules."""
    box: Optional[BoundingBox] = None
    score: Optional[float] = None


# ═══════════════════════════════════════════════════════════════
# Backends
# ═══════════════════════════════════════════════════════════════

class MediaPipeBackend:
    """MediaPipe Tasks FaceDetector in VIDEO mode."""

    name = "mediapipe"

    def __init__(self, model_path: str, min_detection_confidence: float = 0.5) -> None:
        self.model_path = model_path
        self.min_detection_confidence = min_detection_confidence
        self._detector = None
        self._last_timestamp_ms: int = -1

    def load(self) -> None:
        full_path = resolve_path(self.model_path)
        if not os.path.exists(full_path):
            raise FileNotFoundError(f"MediaPipe face model not found: {full_path}")

        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision

        base_options = python.BaseOptions(
            model_asset_path=full_path,
            delegate=python.BaseOptions.Delegate.CPU,
        )
        options = vision.FaceDetectorOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.VIDEO,
            min_detection_confidence=self.min_detection_confidence,
        )
        self._detector = vision.FaceDetector.create_from_options(options)
        _log.info(
            "MediaPipe FaceDetector loaded: %.1f MB",
            os.path.getsize(full_path) / 1024 / 1024,
        )

    def infer(self, frame: Frame) -> list[RawFace]:
        import mediapipe as mp

        rgb = cv2.cvtColor(frame.pixels, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

        # VIDEO mode rejects non-increasing timestamps
        timestamp_ms = int(frame.timestamp * 1000)
        if timestamp_ms <= self._last_timestamp_ms:
            timestamp_ms = self._last_timestamp_ms + 1
        self._last_timestamp_ms = timestamp_ms

        result = self._detector.detect_for_video(mp_image, timestamp_ms)
        if not result or not result.detections:
            return []

        faces: list[RawFace] = []
        for det in result.detections:
            bb = det.bounding_box
            box = None
            if bb is not None:
                box = BoundingBox(
                    float(bb.origin_x), float(bb.origin_y),
                    float(bb.width), float(bb.height),
                )
            score = float(det.categories[0].score) if det.categories else None
            faces.append(RawFace(box=box, score=score))
        return faces

    def close(self) -> None:
        if self._detector is not None:
            self._detector.close()
            self._detector = None


class DnnSsdBackend:
    """OpenCV DNN SSD face detector (Caffe res10_300x300)."""

    name = "dnn_ssd"

    def __init__(
        self,
        proto_path: str,
        model_path: str,
        min_detection_confidence: float = 0.5,
    ) -> None:
        self.proto_path = proto_path
        self.model_path = model_path
        self.min_detection_confidence = min_detection_confidence
        self._net = None

    def load(self) -> None:
        proto = resolve_path(self.proto_path)
        model = resolve_path(self.model_path)
        if not os.path.exists(proto) or not os.path.exists(model):
            raise FileNotFoundError(f"DNN SSD model files not found: {proto}, {model}")
        self._net = cv2.dnn.readNetFromCaffe(proto, model)
        _log.info("OpenCV DNN SSD face detector loaded")

    def infer(self, frame: Frame) -> list[RawFace]:
        h, w = frame.height, frame.width
        blob = cv2.dnn.blobFromImage(frame.pixels, 1.0, (300, 300), (104.0, 177.0, 123.0))
        self._net.setInput(blob)
        raw = self._net.forward()

        faces: list[RawFace] = []
        for i in range(raw.shape[2]):
            conf = float(raw[0, 0, i, 2])
            if conf < self.min_detection_confidence:
                continue
            x1 = max(0.0, float(raw[0, 0, i, 3]) * w)
            y1 = max(0.0, float(raw[0, 0, i, 4]) * h)
            x2 = min(float(w), float(raw[0, 0, i, 5]) * w)
            y2 = min(float(h), float(raw[0, 0, i, 6]) * h)
            faces.append(RawFace(box=BoundingBox(x1, y1, x2 - x1, y2 - y1), score=conf))

        # SSD emits in descending score order already
        return faces

    def close(self) -> None:
        self._net = None


def create_backend(backend: str, config: Optional[dict] = None):
    section = (config or CONFIG)["detection"]
    min_conf = float(section["min_detection_confidence"])
    if backend == "mediapipe":
        return MediaPipeBackend(section["model_path"], min_conf)
    if backend == "dnn_ssd":
        return DnnSsdBackend(section["dnn_proto_path"], section["dnn_model_path"], min_conf)
    raise ValueError(
        f"Unknown detector backend: {backend!r}. Supported: 'mediapipe', 'dnn_ssd'"
    )


# ═══════════════════════════════════════════════════════════════
# FaceDetector
# ═══════════════════════════════════════════════════════════════

class FaceDetector:
    """Single-best-face adaptor over a detection backend.

    Args:
        backend: 'mediapipe', 'dnn_ssd', or a backend object exposing
                 load(), infer(frame) -> list[RawFace], close().
        fallback_confidence: Confidence assigned when the backend gives
                 no per-face score.
    """

    def __init__(
        self,
        backend="mediapipe",
        fallback_confidence: Optional[float] = None,
        config: Optional[dict] = None,
    ) -> None:
        section = (config or CONFIG)["detection"]
        if isinstance(backend, str):
            backend = create_backend(backend, config)
        self._backend = backend
        self.fallback_confidence = float(
            section["fallback_confidence"] if fallback_confidence is None else fallback_confidence
        )
        self._loaded = False

    @property
    def backend_name(self) -> str:
        return getattr(self._backend, "name", type(self._backend).__name__)

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        """Load the model. Raises InitializationError on any failure."""
        if self._loaded:
            return
        try:
            self._backend.load()
        except Exception as e:
            _log.error("Face detector '%s' failed to load: %s", self.backend_name, e)
            raise InitializationError(
                f"Face detector '{self.backend_name}' failed to load: {e}"
            ) from e
        self._loaded = True
        _log.info("FaceDetector ready — backend=%s", self.backend_name)

    def detect(self, frame: Frame) -> Detection:
        """Detect the best face in ``frame``.

        Backend inference errors propagate; the scheduler converts them
        into a per-tick error result.
        """
        if not self._loaded:
            raise InitializationError("Face detector used before load()")

        faces = self._backend.infer(frame)
        if not faces:
            return Detection.absent()

        face = faces[0]
        measured = face.score is not None
        confidence = float(face.score) if measured else self.fallback_confidence
        confidence = float(np.clip(confidence, 0.0, 1.0))

        return Detection(
            present=True,
            bounding_box=face.box,
            raw_confidence=confidence,
            confidence_measured=measured,
            face_count=len(faces),
        )

    def release(self) -> None:
        """Release model resources; idempotent."""
        if self._loaded:
            self._backend.close()
            self._loaded = False
            _log.info("FaceDetector released — backend=%s", self.backend_name)

    def __enter__(self) -> "FaceDetector":
        self.load()
        return self

    def __exit__(self, *args) -> None:
        self.release()
