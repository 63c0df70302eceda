"""
Zeshto Vision — Skin Feature Extraction
=======================================
Derives SkinMetrics from ONE cropped face region. Runs once per explicit
analyze action, never on the polling loop.

Pipeline (input: RGB float32 in [0, 1]):
  1. Texture       grayscale -> Sobel X/Y -> edge magnitude, gray variance
  2. Color         per-channel mean/std, brightness, coarse tone bucket
  3. Acne          R - mean(G, B) > threshold  -> spot-pixel ratio
  4. Wrinkles      Laplacian |response| mean
  5. Pigmentation  mean per-channel variance

Convolutions use zero padding with 'same' output size, so a uniform
patch still shows a response along its border.

Each sub-analysis keeps its intermediate buffers local and drops them
before returning; only scalar summaries leave a sub-analysis.

Aggregates:
  oiliness = brightness*0.6 + (100 - texture_variance)*0.4
  dryness  = (100 - brightness)*0.6 + texture_variance*0.4
  health   = 100 - (acne*0.3 + pigmentation*0.2 + wrinkle*0.2
                    + |oiliness - 50|*0.15 + |dryness - 30|*0.15)

The health score penalizes DEVIATION from an assumed ideal oiliness
(50) and dryness (30) rather than high values. Midpoints and weights
are tunable config, not calibrated constants.

Labels for downstream recommendations:
  skin type  oily / combination / normal / dry from the oiliness score
  concerns   acne, wrinkles, rough_texture, uneven_skin_tone, each
             flagged when its metric crosses a configured threshold
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Optional

import cv2
import numpy as np

from zeshto_config import CONFIG
from zeshto_errors import ExtractionError
from zeshto_types import BoundingBox, Frame, SkinMetrics

_log = logging.getLogger("ZeshtoSkinFeatures")

# tf.image.rgb_to_grayscale / ITU-R 601 luma weights
_GRAY_WEIGHTS = np.array([0.2989, 0.5870, 0.1140], dtype=np.float32)

_SOBEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float32)
_SOBEL_Y = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float32)
_LAPLACIAN = np.array([[0, -1, 0], [-1, 4, -1], [0, -1, 0]], dtype=np.float32)


# ═══════════════════════════════════════════════════════════════
# Parameters & sub-analysis results
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SkinFeatureParams:
    acne_redness_threshold: float = 0.1
    acne_scale: float = 1000.0
    wrinkle_scale: float = 500.0
    pigmentation_scale: float = 1000.0
    smoothness_edge_scale: float = 200.0
    oiliness_midpoint: float = 50.0
    dryness_midpoint: float = 30.0
    health_weights: dict = field(default_factory=lambda: {
        "acne": 0.3,
        "pigmentation": 0.2,
        "wrinkle": 0.2,
        "oiliness_deviation": 0.15,
        "dryness_deviation": 0.15,
    })
    skin_type_thresholds: dict = field(default_factory=lambda: {
        "oily": 70.0,
        "combination": 50.0,
        "dry": 30.0,
    })
    concern_thresholds: dict = field(default_factory=lambda: {
        "acne": 30.0,
        "wrinkles": 10.0,
        "rough_texture": 60.0,
        "uneven_skin_tone": 30.0,
    })

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "SkinFeatureParams":
        s = (config or CONFIG)["skin_features"]
        return cls(
            acne_redness_threshold=float(s["acne_redness_threshold"]),
            acne_scale=float(s["acne_scale"]),
            wrinkle_scale=float(s["wrinkle_scale"]),
            pigmentation_scale=float(s["pigmentation_scale"]),
            smoothness_edge_scale=float(s["smoothness_edge_scale"]),
            oiliness_midpoint=float(s["oiliness_midpoint"]),
            dryness_midpoint=float(s["dryness_midpoint"]),
            health_weights=dict(s["health_weights"]),
            skin_type_thresholds=dict(s["skin_type_thresholds"]),
            concern_thresholds=dict(s["concern_thresholds"]),
        )


@dataclass(frozen=True)
class TextureFeatures:
    edge_intensity: float
    variance: float
    smoothness: float


@dataclass(frozen=True)
class ColorFeatures:
    dominant_tone: str
    redness: float
    color_variance: float
    brightness: float


@dataclass(frozen=True)
class AcneFeatures:
    severity: float
    spot_count: int


@dataclass(frozen=True)
class WrinkleFeatures:
    severity: float


@dataclass(frozen=True)
class PigmentationFeatures:
    unevenness: float
    uniformity: float


# ═══════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════

def crop_face_region(pixels: np.ndarray, box: Optional[BoundingBox]) -> np.ndarray:
    """Crop ``box`` out of a frame, clipped to the frame bounds.

    Raises:
        ExtractionError: no box, or the clipped region is empty.
    """
    if box is None:
        raise ExtractionError("No face bounding box to crop")
    h, w = pixels.shape[:2]
    clipped = box.clip(w, h)
    x1, y1 = int(round(clipped.x)), int(round(clipped.y))
    x2 = int(round(clipped.x + clipped.width))
    y2 = int(round(clipped.y + clipped.height))
    if x2 <= x1 or y2 <= y1:
        raise ExtractionError(
            f"Face region is empty after clipping (box={box.to_dict()}, frame={w}x{h})"
        )
    return pixels[y1:y2, x1:x2].copy()


def to_unit_rgb(region_bgr: np.ndarray) -> np.ndarray:
    """BGR uint8 (H, W, 3) -> RGB float32 in [0, 1]."""
    if region_bgr is None or region_bgr.size == 0:
        raise ExtractionError("Face region is empty")
    if region_bgr.ndim != 3 or region_bgr.shape[2] != 3:
        raise ExtractionError(f"Face region must be (H, W, 3), got {region_bgr.shape}")
    rgb = cv2.cvtColor(np.ascontiguousarray(region_bgr, dtype=np.uint8), cv2.COLOR_BGR2RGB)
    return rgb.astype(np.float32) / 255.0


def _grayscale(rgb: np.ndarray) -> np.ndarray:
    return rgb @ _GRAY_WEIGHTS


def _convolve_same(image: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    # filter2D correlates; matches conv2d in NN frameworks
    return cv2.filter2D(
        image, cv2.CV_32F, kernel, borderType=cv2.BORDER_CONSTANT
    )


def classify_skin_tone(r: float, g: float, b: float) -> str:
    """Deliberately coarse 4-bucket tone heuristic on [0, 1] channel means."""
    if r > 0.8 and g > 0.7 and b > 0.6:
        return "fair"
    if r > 0.6 and g > 0.5 and b > 0.4:
        return "medium"
    if r > 0.4 and g > 0.3 and b > 0.2:
        return "olive"
    return "dark"


def classify_skin_type(metrics: SkinMetrics, params: Optional[SkinFeatureParams] = None) -> str:
    """oily / combination / normal / dry from the oiliness score."""
    t = (params or SkinFeatureParams()).skin_type_thresholds
    if metrics.oiliness > t["oily"]:
        return "oily"
    if metrics.oiliness < t["dry"]:
        return "dry"
    if metrics.oiliness > t["combination"]:
        return "combination"
    return "normal"


def primary_concerns(metrics: SkinMetrics, params: Optional[SkinFeatureParams] = None) -> tuple:
    """Concern labels in fixed order. Empty tuple when nothing crosses its threshold."""
    t = (params or SkinFeatureParams()).concern_thresholds
    concerns = []
    if metrics.acne_level > t["acne"]:
        concerns.append("acne")
    if metrics.wrinkle_level > t["wrinkles"]:
        concerns.append("wrinkles")
    # texture_score is a smoothness score: low is rough
    if metrics.texture_score < t["rough_texture"]:
        concerns.append("rough_texture")
    if metrics.pigmentation_level > t["uneven_skin_tone"]:
        concerns.append("uneven_skin_tone")
    return tuple(concerns)


def _clip100(value: float) -> float:
    return float(min(100.0, max(0.0, value)))


# ═══════════════════════════════════════════════════════════════
# Extractor
# ═══════════════════════════════════════════════════════════════

class SkinFeatureExtractor:
    """Rule-based skin metrics from a face crop."""

    def __init__(self, params: Optional[SkinFeatureParams] = None) -> None:
        self.params = params or SkinFeatureParams.from_config()

    def extract_from_frame(self, frame: Frame, box: Optional[BoundingBox]) -> SkinMetrics:
        return self.extract(crop_face_region(frame.pixels, box))

    def extract(self, region_bgr: np.ndarray) -> SkinMetrics:
        """Compute SkinMetrics for a BGR uint8 face crop.

        Raises:
            ExtractionError: empty or malformed region.
        """
        rgb = to_unit_rgb(region_bgr)

        texture = self.analyze_texture(rgb)
        color = self.analyze_color(rgb)
        acne = self.detect_acne(rgb)
        wrinkles = self.detect_wrinkles(rgb)
        pigmentation = self.analyze_pigmentation(rgb)
        del rgb

        oiliness = self.calculate_oiliness(color, texture)
        dryness = self.calculate_dryness(color, texture)
        health = self.calculate_overall_health(
            oiliness, dryness, acne.severity, pigmentation.unevenness, wrinkles.severity
        )

        metrics = SkinMetrics(
            oiliness=oiliness,
            dryness=dryness,
            acne_level=acne.severity,
            pigmentation_level=pigmentation.unevenness,
            wrinkle_level=wrinkles.severity,
            texture_score=texture.smoothness,
            overall_health=health,
            skin_tone=color.dominant_tone,
        )
        metrics = replace(
            metrics,
            skin_type=classify_skin_type(metrics, self.params),
            concerns=primary_concerns(metrics, self.params),
        )
        _log.debug("Skin metrics: %s", metrics.to_dict())
        return metrics

    # ── Sub-analyses ──────────────────────────────────────────

    def analyze_texture(self, rgb: np.ndarray) -> TextureFeatures:
        gray = _grayscale(rgb)
        edges_x = _convolve_same(gray, _SOBEL_X)
        edges_y = _convolve_same(gray, _SOBEL_Y)
        magnitude = np.sqrt(edges_x * edges_x + edges_y * edges_y)
        mean_edge = float(magnitude.mean())
        variance = float(gray.var())
        del gray, edges_x, edges_y, magnitude

        return TextureFeatures(
            edge_intensity=mean_edge * 100.0,
            variance=variance * 100.0,
            smoothness=max(0.0, 100.0 - mean_edge * self.params.smoothness_edge_scale),
        )

    def analyze_color(self, rgb: np.ndarray) -> ColorFeatures:
        means = rgb.reshape(-1, 3).mean(axis=0)
        stds = rgb.reshape(-1, 3).std(axis=0)
        r, g, b = (float(v) for v in means)

        return ColorFeatures(
            dominant_tone=classify_skin_tone(r, g, b),
            redness=r * 100.0,
            color_variance=float(stds.mean()) * 100.0,
            brightness=(r + g + b) / 3.0 * 100.0,
        )

    def detect_acne(self, rgb: np.ndarray) -> AcneFeatures:
        redness = rgb[..., 0] - (rgb[..., 1] + rgb[..., 2]) / 2.0
        spot_count = int(np.count_nonzero(redness > self.params.acne_redness_threshold))
        total_pixels = redness.size
        del redness

        return AcneFeatures(
            severity=min(100.0, spot_count / total_pixels * self.params.acne_scale),
            spot_count=spot_count,
        )

    def detect_wrinkles(self, rgb: np.ndarray) -> WrinkleFeatures:
        gray = _grayscale(rgb)
        response = _convolve_same(gray, _LAPLACIAN)
        intensity = float(np.abs(response).mean())
        del gray, response

        return WrinkleFeatures(severity=min(100.0, intensity * self.params.wrinkle_scale))

    def analyze_pigmentation(self, rgb: np.ndarray) -> PigmentationFeatures:
        avg_variance = float(rgb.reshape(-1, 3).var(axis=0).mean())
        scaled = avg_variance * self.params.pigmentation_scale

        return PigmentationFeatures(
            unevenness=min(100.0, scaled),
            uniformity=max(0.0, 100.0 - scaled),
        )

    # ── Aggregates ────────────────────────────────────────────

    @staticmethod
    def calculate_oiliness(color: ColorFeatures, texture: TextureFeatures) -> float:
        return _clip100(color.brightness * 0.6 + (100.0 - texture.variance) * 0.4)

    @staticmethod
    def calculate_dryness(color: ColorFeatures, texture: TextureFeatures) -> float:
        return _clip100((100.0 - color.brightness) * 0.6 + texture.variance * 0.4)

    def calculate_overall_health(
        self,
        oiliness: float,
        dryness: float,
        acne: float,
        pigmentation: float,
        wrinkle: float,
    ) -> float:
        w = self.params.health_weights
        penalty = (
            acne * w["acne"]
            + pigmentation * w["pigmentation"]
            + wrinkle * w["wrinkle"]
            + abs(oiliness - self.params.oiliness_midpoint) * w["oiliness_deviation"]
            + abs(dryness - self.params.dryness_midpoint) * w["dryness_deviation"]
        )
        return _clip100(100.0 - penalty)
