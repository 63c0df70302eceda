"""
Zeshto Vision — Live Overlay
============================
Draws the face box, confidence/quality bars and the readiness message
onto a copy of the frame for the launcher window.
"""

import logging
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from zeshto_types import QualityResult, ReadinessDecision

_log = logging.getLogger("ZeshtoHUD")


class ZeshtoHUD:
    """Readiness overlay for the live camera view.

    Color and a shape icon both encode state, so the overlay stays
    readable for color-blind users.
    """

    COLORS = {
        "READY":     {"bg": (0, 180, 0),     "shape": "checkmark"},  # Green
        "ADJUST":    {"bg": (0, 165, 255),   "shape": "question"},   # Orange
        "NO_FACE":   {"bg": (100, 100, 100), "shape": "circle"},     # Dim gray
        "ERROR":     {"bg": (0, 0, 220),     "shape": "x_mark"},     # Red
    }

    BAR_WIDTH = 160
    BAR_HEIGHT = 12

    def __init__(self, confidence_threshold: float = 0.7, quality_threshold: float = 0.6):
        self.confidence_threshold = confidence_threshold
        self.quality_threshold = quality_threshold
        _log.info("ZeshtoHUD initialized")

    @staticmethod
    def state_for(result: Optional[QualityResult], decision: ReadinessDecision) -> str:
        if result is not None and result.error:
            return "ERROR"
        if decision.ready:
            return "READY"
        if result is None or not result.face_detected:
            return "NO_FACE"
        return "ADJUST"

    def render(
        self,
        frame: np.ndarray,
        result: Optional[QualityResult],
        decision: ReadinessDecision,
        status: Optional[dict] = None,
    ) -> Tuple[Optional[np.ndarray], float]:
        """Draw the overlay.

        Returns:
            (annotated_frame, hud_render_time_seconds)
        """
        t_start = time.monotonic()
        if frame is None:
            return None, 0.0

        viz = frame.copy()
        state = self.state_for(result, decision)
        props = self.COLORS[state]

        if result is not None and result.bounding_box is not None:
            self._draw_face_box(viz, result, props["bg"], props["shape"])

        if result is not None:
            self._draw_bar(viz, "CONF", result.confidence, self.confidence_threshold, (10, 20))
            self._draw_bar(viz, "QUAL", result.quality, self.quality_threshold, (10, 45))

        self._draw_status_bar(viz, decision.message or "", props["bg"], status or {})
        return viz, time.monotonic() - t_start

    def _draw_face_box(self, frame: np.ndarray, result: QualityResult, color, shape: str) -> None:
        box = result.bounding_box.clip(frame.shape[1], frame.shape[0])
        if box.is_empty:
            return
        x, y = int(box.x), int(box.y)
        w, h = int(box.width), int(box.height)
        cv2.rectangle(frame, (x, y), (x + w, y + h), color, 2)
        self._draw_shape(frame, shape, (x + w - 25, y + 5), color)

        label = f"{result.confidence * 100:.0f}% | Q {result.quality * 100:.0f}%"
        if result.face_count > 1:
            label += f" | {result.face_count} faces"
        (tw, th), _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 1)
        label_y = max(y - 10, 20)
        cv2.rectangle(frame, (x, label_y - th - 5), (x + tw + 10, label_y + 5), (0, 0, 0), -1)
        cv2.putText(frame, label, (x + 5, label_y),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)

    def _draw_bar(self, frame: np.ndarray, label: str, value: float, threshold: float,
                  origin: Tuple[int, int]) -> None:
        x, y = origin
        bx = x + 50
        cv2.putText(frame, label, (x, y + self.BAR_HEIGHT - 1),
            cv2.FONT_HERSHEY_SIMPLEX, 0.45, (255, 255, 255), 1)
        cv2.rectangle(frame, (bx, y), (bx + self.BAR_WIDTH, y + self.BAR_HEIGHT), (60, 60, 60), -1)
        fill = int(self.BAR_WIDTH * min(1.0, max(0.0, value)))
        color = (0, 200, 0) if value >= threshold else (0, 165, 255)
        if fill > 0:
            cv2.rectangle(frame, (bx, y), (bx + fill, y + self.BAR_HEIGHT), color, -1)
        # threshold tick
        tx = bx + int(self.BAR_WIDTH * threshold)
        cv2.line(frame, (tx, y - 2), (tx, y + self.BAR_HEIGHT + 2), (255, 255, 255), 1)

    def _draw_shape(self, frame: np.ndarray, shape: str, pos: Tuple[int, int], color) -> None:
        x, y = pos
        size = 20
        if shape == "checkmark":
            pts = np.array([[x, y + 10], [x + 7, y + 17], [x + 20, y]], dtype=np.int32)
            cv2.polylines(frame, [pts], False, color, 3)
            cv2.polylines(frame, [pts], False, (255, 255, 255), 1)
        elif shape == "x_mark":
            cv2.line(frame, (x, y), (x + size, y + size), color, 3)
            cv2.line(frame, (x + size, y), (x, y + size), color, 3)
        elif shape == "question":
            cv2.putText(frame, "?", (x, y + size), cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2)
        elif shape == "circle":
            cv2.circle(frame, (x + 10, y + 10), 10, color, 2)

    def _draw_status_bar(self, frame: np.ndarray, message: str, color, status: dict) -> None:
        h, w = frame.shape[:2]
        bar_h = 40
        overlay = frame.copy()
        cv2.rectangle(overlay, (0, h - bar_h), (w, h), (0, 0, 0), -1)
        alpha = 0.6
        cv2.addWeighted(overlay, alpha, frame, 1 - alpha, 0, frame)

        cv2.putText(frame, message, (10, h - 12),
            cv2.FONT_HERSHEY_SIMPLEX, 0.55, color, 1)

        cam = status.get("camera")
        if cam:
            cam_text = f"CAM: {cam.get('fps_actual', 0):.1f} FPS"
            text_w = cv2.getTextSize(cam_text, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 1)[0][0]
            cv2.putText(frame, cam_text, (w - text_w - 10, h - 12),
                cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1)
