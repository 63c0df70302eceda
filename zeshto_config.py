"""
Zeshto Vision — Configuration
=============================
Built-in defaults, deep-merged with config.yaml (if present) and then
with per-call overrides.

Every tunable threshold and weight used by quality scoring, readiness
gating and skin-feature extraction lives here. The numeric values are
a starting policy with no calibration dataset behind them.
"""

from __future__ import annotations

import copy
import os
from typing import Optional

import yaml


_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, "config.yaml")


DEFAULT_CONFIG: dict = {
    "camera": {
        "camera_id": 0,
        "first_frame_timeout_s": 3.0,
        "release_settle_s": 0.5,
        "strategies": [
            {"name": "preferred", "backend": "auto", "width": 640, "height": 480},
            {"name": "any_resolution", "backend": "auto"},
            {"name": "fallback_vga", "backend": "any", "width": 640, "height": 480},
        ],
    },
    "detection": {
        "backend": "mediapipe",
        "model_path": "models/blaze_face_short_range.tflite",
        "dnn_proto_path": "models/deploy.prototxt",
        "dnn_model_path": "models/res10_300x300_ssd_iter_140000.caffemodel",
        "min_detection_confidence": 0.5,
        "fallback_confidence": 0.9,
        "interval_ms": 200,
    },
    "quality": {
        "optimal_ratio": [0.10, 0.40],
        "acceptable_ratio": [0.05, 0.60],
        "optimal_score": 0.5,
        "acceptable_score": 0.3,
        "poor_score": 0.1,
        "center_weight": 0.5,
        "default_quality": 0.5,
    },
    "readiness": {
        "confidence_threshold": 0.7,
        "quality_threshold": 0.6,
    },
    "skin_features": {
        "acne_redness_threshold": 0.1,
        "acne_scale": 1000.0,
        "wrinkle_scale": 500.0,
        "pigmentation_scale": 1000.0,
        "smoothness_edge_scale": 200.0,
        "oiliness_midpoint": 50.0,
        "dryness_midpoint": 30.0,
        "health_weights": {
            "acne": 0.3,
            "pigmentation": 0.2,
            "wrinkle": 0.2,
            "oiliness_deviation": 0.15,
            "dryness_deviation": 0.15,
        },
        "skin_type_thresholds": {
            "oily": 70.0,
            "combination": 50.0,
            "dry": 30.0,
        },
        "concern_thresholds": {
            "acne": 30.0,
            "wrinkles": 10.0,
            "rough_texture": 60.0,
            "uneven_skin_tone": 30.0,
        },
    },
    "session": {
        "jpeg_quality": 80,
        "require_ready": True,
    },
    "logging": {
        "level": "INFO",
        "audit_dir": "logs",
    },
}


def deep_merge(base: dict, override: Optional[dict]) -> dict:
    """Return a new dict: ``override`` merged recursively over ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Optional[str] = None, overrides: Optional[dict] = None) -> dict:
    """Load configuration: defaults <- config.yaml <- overrides.

    An explicit ``path`` that does not exist raises FileNotFoundError;
    the default config.yaml is optional.
    """
    target = path or _config_path
    file_config: dict = {}
    if path is not None or os.path.exists(target):
        with open(target, "r", encoding="utf-8") as f:
            file_config = yaml.safe_load(f) or {}
    return deep_merge(deep_merge(DEFAULT_CONFIG, file_config), overrides)


def resolve_path(path: str) -> str:
    """Resolve a config-relative path against the project root."""
    if os.path.isabs(path):
        return path
    return os.path.join(_SCRIPT_DIR, path)


CONFIG = load_config()
