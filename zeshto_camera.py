"""
Zeshto Vision — Camera Frame Source
===================================
Owns ALL camera interaction. No other file should touch
cv2.VideoCapture directly.

Features:
  - Ordered acquisition strategies, each with a bounded first-frame
    timeout (replaces ad-hoc retry/sleep loops)
  - Failure classification: denied / not_found / busy /
    constraints_unsupported
  - Defensive re-acquire: open + immediately release before the real
    acquisition, to clear OS-level device locks left by flaky drivers
  - Frame validation (shape, dtype, channels, brightness); a frame that
    fails is "not ready", never an error
  - Strictly increasing monotonic timestamps
  - Health monitoring (FPS, drop rate, last-frame age)
"""

from __future__ import annotations

import logging
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import cv2
import numpy as np

from zeshto_config import CONFIG
from zeshto_errors import DeviceUnavailableError, ExtractionError, classify_device_error
from zeshto_types import Frame

_log = logging.getLogger("ZeshtoCamera")


@dataclass(frozen=True)
class AcquisitionStrategy:
    """One way of opening the camera; tried in list order."""
    name: str
    backend: str = "auto"           # auto | any | dshow | msmf | v4l2 | avfoundation
    width: Optional[int] = None
    height: Optional[int] = None
    strict: bool = False            # reject if the driver ignores width/height

    @classmethod
    def from_dict(cls, data: dict) -> "AcquisitionStrategy":
        return cls(
            name=str(data.get("name", "strategy")),
            backend=str(data.get("backend", "auto")),
            width=data.get("width"),
            height=data.get("height"),
            strict=bool(data.get("strict", False)),
        )


def resolve_backend(name: str) -> int:
    """Map a strategy backend name to an OpenCV capture API constant."""
    name = name.lower()
    if name == "auto":
        if sys.platform.startswith("win"):
            return cv2.CAP_DSHOW
        if sys.platform == "darwin":
            return getattr(cv2, "CAP_AVFOUNDATION", cv2.CAP_ANY)
        return getattr(cv2, "CAP_V4L2", cv2.CAP_ANY)
    table = {
        "any": cv2.CAP_ANY,
        "dshow": cv2.CAP_DSHOW,
        "msmf": cv2.CAP_MSMF,
        "v4l2": getattr(cv2, "CAP_V4L2", cv2.CAP_ANY),
        "avfoundation": getattr(cv2, "CAP_AVFOUNDATION", cv2.CAP_ANY),
    }
    if name not in table:
        raise ValueError(f"Unknown camera backend: {name!r}")
    return table[name]


class _MonotonicStamp:
    """Strictly increasing timestamps from a monotonic clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last = float("-inf")

    def next(self) -> float:
        ts = self._clock()
        if ts <= self._last:
            ts = self._last + 1e-6
        self._last = ts
        return ts


class CameraFrameSource:
    """Validated, exclusively-owned webcam capture.

    Not opened on construction; call acquire() (or use as a context
    manager). read_frame() returns None until a valid frame is decoded.
    """

    # ── Validation constants ──────────────────────────────────
    MIN_HEIGHT: int = 120
    MIN_WIDTH: int = 160
    EXPECTED_CHANNELS: int = 3
    EXPECTED_DTYPE = np.uint8
    MIN_MEAN_BRIGHTNESS: float = 5.0    # lens cap / warm-up black frames
    MAX_MEAN_BRIGHTNESS: float = 250.0  # sensor saturation
    FPS_WINDOW: int = 30

    def __init__(
        self,
        camera_id: Optional[int] = None,
        strategies: Optional[Sequence[AcquisitionStrategy]] = None,
        first_frame_timeout_s: Optional[float] = None,
        release_settle_s: Optional[float] = None,
        config: Optional[dict] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        section = (config or CONFIG)["camera"]
        self._camera_id = section["camera_id"] if camera_id is None else camera_id
        self._strategies = list(strategies) if strategies is not None else [
            AcquisitionStrategy.from_dict(s) for s in section["strategies"]
        ]
        if not self._strategies:
            raise ValueError("At least one acquisition strategy is required")
        self._first_frame_timeout_s = float(
            section["first_frame_timeout_s"] if first_frame_timeout_s is None else first_frame_timeout_s
        )
        self._release_settle_s = float(
            section["release_settle_s"] if release_settle_s is None else release_settle_s
        )
        self._sleep = sleep

        self._lock = threading.Lock()
        self._cap: Optional[cv2.VideoCapture] = None
        self._active_strategy: Optional[AcquisitionStrategy] = None
        self._resolution: tuple[int, int] = (0, 0)
        self._stamp = _MonotonicStamp()

        self._frames_total: int = 0
        self._frames_dropped: int = 0
        self._last_valid_timestamp: float = 0.0
        self._frame_times: deque[float] = deque(maxlen=self.FPS_WINDOW)

    # ── Acquisition ───────────────────────────────────────────

    @property
    def is_opened(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    @property
    def active_strategy(self) -> Optional[AcquisitionStrategy]:
        return self._active_strategy

    def acquire(self) -> None:
        """Open the camera using the first strategy that delivers a frame.

        Raises:
            DeviceUnavailableError: every strategy failed; ``reason``
                comes from the last failure.
        """
        if self.is_opened:
            return

        last_error: Optional[DeviceUnavailableError] = None
        for strategy in self._strategies:
            try:
                cap = self._open_with(strategy)
            except DeviceUnavailableError as e:
                _log.info("Camera strategy '%s' failed: %s", strategy.name, e)
                last_error = e
                continue
            with self._lock:
                self._cap = cap
                self._active_strategy = strategy
                self._resolution = (
                    int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                    int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
                )
            _log.info(
                "Camera acquired — id=%s strategy=%s resolution=%s",
                self._camera_id, strategy.name, self._resolution,
            )
            return

        raise last_error or DeviceUnavailableError(
            "Failed to access camera with any configuration",
            DeviceUnavailableError.UNKNOWN,
        )

    def reacquire(self) -> None:
        """Release, clear stale device locks, then acquire again.

        The throwaway open/release cycle is a workaround for camera
        drivers that keep the device locked after an abnormal release.
        """
        self.release()
        try:
            probe = cv2.VideoCapture(self._camera_id, cv2.CAP_ANY)
            probe.release()
            _log.info("Camera lock-clearing cycle completed")
        except cv2.error as e:
            _log.info("Lock-clearing cycle could not open camera: %s", e)
        self._sleep(self._release_settle_s)
        self.acquire()

    def _open_with(self, strategy: AcquisitionStrategy) -> cv2.VideoCapture:
        try:
            cap = cv2.VideoCapture(self._camera_id, resolve_backend(strategy.backend))
        except cv2.error as e:
            raise DeviceUnavailableError(str(e), classify_device_error(str(e))) from e

        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailableError(
                f"Camera {self._camera_id} could not be opened ({strategy.name})",
                DeviceUnavailableError.NOT_FOUND,
            )

        # 1-frame buffer keeps frames fresh
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        if strategy.width and strategy.height:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, strategy.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, strategy.height)
            if strategy.strict:
                actual = (int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                          int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)))
                if actual != (strategy.width, strategy.height):
                    cap.release()
                    raise DeviceUnavailableError(
                        f"Camera cannot provide {strategy.width}x{strategy.height} (got {actual[0]}x{actual[1]})",
                        DeviceUnavailableError.CONSTRAINTS_UNSUPPORTED,
                    )

        deadline = time.monotonic() + self._first_frame_timeout_s
        while True:
            ret, frame = cap.read()
            if ret and frame is not None:
                return cap
            if time.monotonic() >= deadline:
                break
            self._sleep(0.05)

        cap.release()
        raise DeviceUnavailableError(
            f"Camera {self._camera_id} opened but delivered no frames within "
            f"{self._first_frame_timeout_s:.1f}s ({strategy.name})",
            DeviceUnavailableError.BUSY,
        )

    # ── Frames ────────────────────────────────────────────────

    def read_frame(self) -> Optional[Frame]:
        """Read one frame; None when not opened or the frame is invalid."""
        with self._lock:
            if self._cap is None:
                return None
            self._frames_total += 1
            ret, pixels = self._cap.read()
            if not self._validate_frame(ret, pixels):
                self._frames_dropped += 1
                return None
            ts = self._stamp.next()

        self._last_valid_timestamp = ts
        self._frame_times.append(ts)
        return Frame(pixels=pixels, timestamp=ts)

    def _validate_frame(self, ret: bool, frame: Optional[np.ndarray]) -> bool:
        if not ret or frame is None:
            return False
        if frame.ndim != 3 or frame.shape[2] != self.EXPECTED_CHANNELS:
            _log.debug("Validation FAIL: shape=%s", frame.shape)
            return False
        if frame.dtype != self.EXPECTED_DTYPE:
            _log.debug("Validation FAIL: dtype=%s (expected uint8)", frame.dtype)
            return False
        h, w = frame.shape[:2]
        if h < self.MIN_HEIGHT or w < self.MIN_WIDTH:
            _log.debug("Validation FAIL: resolution %dx%d below minimum", w, h)
            return False
        mean_brightness = float(frame.mean())
        if mean_brightness <= self.MIN_MEAN_BRIGHTNESS or mean_brightness >= self.MAX_MEAN_BRIGHTNESS:
            _log.debug("Validation FAIL: mean brightness %.2f", mean_brightness)
            return False
        return True

    # ── Health ────────────────────────────────────────────────

    def get_health_status(self) -> dict:
        now = time.monotonic()
        last_age_ms = (
            (now - self._last_valid_timestamp) * 1000.0
            if self._last_valid_timestamp > 0
            else float("inf")
        )
        return {
            "connected": self.is_opened,
            "fps_actual": self._calculate_fps(),
            "frames_total": self._frames_total,
            "frames_dropped": self._frames_dropped,
            "drop_rate_pct": (
                self._frames_dropped / self._frames_total * 100.0
                if self._frames_total > 0 else 0.0
            ),
            "last_valid_frame_age_ms": round(last_age_ms, 2),
            "resolution": self._resolution,
            "strategy": self._active_strategy.name if self._active_strategy else None,
        }

    def _calculate_fps(self) -> float:
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / elapsed

    # ── Release ───────────────────────────────────────────────

    def release(self) -> None:
        """Stop capture and free the device; idempotent."""
        with self._lock:
            cap, self._cap = self._cap, None
            self._active_strategy = None
        if cap is None:
            return
        cap.release()
        _log.info(
            "Camera released — total=%d dropped=%d avg_fps=%.1f",
            self._frames_total, self._frames_dropped, self._calculate_fps(),
        )

    def __enter__(self) -> "CameraFrameSource":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class StillImageSource:
    """FrameSource over a single photo (upload path).

    Every read returns the same pixels with a fresh timestamp so that
    video-mode detectors accept repeated reads.
    """

    def __init__(self, image) -> None:
        if isinstance(image, np.ndarray):
            pixels = image
        else:
            pixels = cv2.imread(str(image), cv2.IMREAD_COLOR)
            if pixels is None:
                raise ExtractionError(f"Could not decode image: {image}")
        if pixels.ndim == 2:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_GRAY2BGR)
        elif pixels.ndim == 3 and pixels.shape[2] == 4:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_BGRA2BGR)
        if pixels.ndim != 3 or pixels.shape[2] != 3 or pixels.size == 0:
            raise ExtractionError(f"Unsupported image shape: {pixels.shape}")
        self._pixels = np.ascontiguousarray(pixels, dtype=np.uint8)
        self._stamp = _MonotonicStamp()

    def read_frame(self) -> Optional[Frame]:
        return Frame(pixels=self._pixels, timestamp=self._stamp.next())

    def release(self) -> None:
        pass
