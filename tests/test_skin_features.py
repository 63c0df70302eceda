"""
Zeshto Vision — Skin Feature Extraction Tests
=============================================
Synthetic patches with hand-computed expected metrics. No camera, no
model files.
"""

from __future__ import annotations

import math
import sys
from pathlib import Path

import numpy as np
import pytest

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from zeshto_errors import ExtractionError
from zeshto_skin_features import (
    SkinFeatureExtractor,
    SkinFeatureParams,
    classify_skin_tone,
    classify_skin_type,
    crop_face_region,
    primary_concerns,
)
from zeshto_types import BoundingBox, Frame, SkinMetrics


@pytest.fixture
def extractor():
    return SkinFeatureExtractor(SkinFeatureParams())


def _patch(value, size: int = 100) -> np.ndarray:
    return np.full((size, size, 3), value, dtype=np.uint8)


# ─── Reference patches ────────────────────────────────────────

def test_all_black_patch_metrics(extractor):
    m = extractor.extract(_patch(0))

    assert m.oiliness == pytest.approx(40.0)
    assert m.dryness == pytest.approx(60.0)
    assert m.acne_level == pytest.approx(0.0)
    assert m.pigmentation_level == pytest.approx(0.0)
    assert m.wrinkle_level == pytest.approx(0.0)
    assert m.texture_score == pytest.approx(100.0)
    # 100 - (|40-50|*0.15 + |60-30|*0.15)
    assert m.overall_health == pytest.approx(94.0)
    assert m.skin_tone == "dark"
    assert m.skin_type == "normal"
    assert m.concerns == ()


def test_red_patch_on_gray_counts_acne_pixels(extractor):
    region = _patch(128)
    region[10:20, 10:20] = (0, 0, 255)  # BGR pure red, 1% of pixels
    m = extractor.extract(region)
    assert m.acne_level == pytest.approx(10.0)


def test_all_white_patch_is_finite_and_bounded(extractor):
    m = extractor.extract(_patch(255))
    for key, value in m.to_dict().items():
        if isinstance(value, (str, list)):
            continue
        assert not math.isnan(value), key
        assert 0.0 <= value <= 100.0, key
    assert m.skin_tone == "fair"
    assert m.oiliness == pytest.approx(100.0)
    assert m.dryness == pytest.approx(0.0)
    assert m.skin_type == "oily"


def test_uniform_patch_shows_border_response(extractor):
    """Zero-padded convolution: a flat patch still has edges at its border."""
    m = extractor.extract(_patch(128))
    assert m.wrinkle_level > 0.0
    assert m.texture_score < 100.0
    assert m.pigmentation_level == pytest.approx(0.0)


def test_noisy_patch_has_more_texture_than_flat(extractor):
    rng = np.random.RandomState(3)
    noisy = rng.randint(60, 200, size=(100, 100, 3), dtype=np.uint8)
    flat = extractor.extract(_patch(128))
    rough = extractor.extract(noisy)
    assert rough.texture_score < flat.texture_score
    assert rough.pigmentation_level > flat.pigmentation_level


def test_extraction_is_deterministic(extractor):
    rng = np.random.RandomState(11)
    region = rng.randint(0, 256, size=(64, 48, 3), dtype=np.uint8)
    assert extractor.extract(region) == extractor.extract(region.copy())


def test_single_pixel_region_is_valid(extractor):
    m = extractor.extract(_patch(200, size=1))
    assert 0.0 <= m.overall_health <= 100.0


# ─── Failure modes ────────────────────────────────────────────

def test_empty_region_raises(extractor):
    with pytest.raises(ExtractionError):
        extractor.extract(np.zeros((0, 0, 3), dtype=np.uint8))


def test_non_color_region_raises(extractor):
    with pytest.raises(ExtractionError):
        extractor.extract(np.zeros((10, 10), dtype=np.uint8))


# ─── Cropping ─────────────────────────────────────────────────

def test_crop_clips_box_to_frame():
    pixels = np.zeros((100, 200, 3), dtype=np.uint8)
    crop = crop_face_region(pixels, BoundingBox(150, 50, 100, 100))
    assert crop.shape == (50, 50, 3)


def test_crop_outside_frame_raises():
    pixels = np.zeros((100, 100, 3), dtype=np.uint8)
    with pytest.raises(ExtractionError):
        crop_face_region(pixels, BoundingBox(200, 200, 50, 50))


def test_crop_without_box_raises():
    with pytest.raises(ExtractionError):
        crop_face_region(np.zeros((10, 10, 3), dtype=np.uint8), None)


def test_extract_from_frame_uses_box(extractor):
    pixels = np.full((120, 160, 3), 255, dtype=np.uint8)
    pixels[20:60, 40:80] = 0
    frame = Frame(pixels=pixels, timestamp=1.0)
    m = extractor.extract_from_frame(frame, BoundingBox(40, 20, 40, 40))
    assert m.skin_tone == "dark"


# ─── Tone + params ────────────────────────────────────────────

@pytest.mark.parametrize("rgb,tone", [
    ((0.9, 0.8, 0.7), "fair"),
    ((0.7, 0.6, 0.5), "medium"),
    ((0.5, 0.4, 0.3), "olive"),
    ((0.3, 0.2, 0.1), "dark"),
])
def test_classify_skin_tone(rgb, tone):
    assert classify_skin_tone(*rgb) == tone


def test_health_weights_are_configurable():
    params = SkinFeatureParams(health_weights={
        "acne": 0.0, "pigmentation": 0.0, "wrinkle": 0.0,
        "oiliness_deviation": 0.0, "dryness_deviation": 0.0,
    })
    m = SkinFeatureExtractor(params).extract(_patch(0))
    assert m.overall_health == pytest.approx(100.0)


# ─── Skin type + concerns ─────────────────────────────────────

def _metrics(oiliness=50.0, acne=0.0, pigmentation=0.0, wrinkle=0.0, texture=100.0):
    return SkinMetrics(
        oiliness=oiliness, dryness=30.0, acne_level=acne,
        pigmentation_level=pigmentation, wrinkle_level=wrinkle,
        texture_score=texture, overall_health=90.0,
    )


@pytest.mark.parametrize("oiliness,skin_type", [
    (85.0, "oily"),
    (70.0, "combination"),
    (60.0, "combination"),
    (50.0, "normal"),
    (30.0, "normal"),
    (10.0, "dry"),
])
def test_classify_skin_type(oiliness, skin_type):
    assert classify_skin_type(_metrics(oiliness=oiliness)) == skin_type


def test_primary_concerns_in_fixed_order():
    m = _metrics(acne=45.0, pigmentation=50.0, wrinkle=20.0, texture=40.0)
    assert primary_concerns(m) == ("acne", "wrinkles", "rough_texture", "uneven_skin_tone")
    assert primary_concerns(_metrics()) == ()


def test_concern_thresholds_are_configurable():
    params = SkinFeatureParams(concern_thresholds={
        "acne": 50.0, "wrinkles": 10.0, "rough_texture": 30.0, "uneven_skin_tone": 30.0,
    })
    m = _metrics(acne=45.0, texture=40.0)
    assert primary_concerns(m, params) == ()
    assert primary_concerns(m) == ("acne", "rough_texture")


def test_skin_type_thresholds_are_configurable():
    params = SkinFeatureParams(skin_type_thresholds={"oily": 90.0, "combination": 80.0, "dry": 45.0})
    assert classify_skin_type(_metrics(oiliness=85.0), params) == "combination"
    assert classify_skin_type(_metrics(oiliness=40.0), params) == "dry"


def test_extract_labels_serialize():
    data = SkinFeatureExtractor(SkinFeatureParams()).extract(_patch(0)).to_dict()
    assert data["skinType"] == "normal"
    assert data["primaryConcerns"] == []


def test_params_from_config_reads_label_thresholds():
    from zeshto_config import load_config
    config = load_config(overrides={"skin_features": {"concern_thresholds": {"acne": 5.0}}})
    params = SkinFeatureParams.from_config(config)
    assert params.concern_thresholds["acne"] == 5.0
    assert params.concern_thresholds["wrinkles"] == 10.0
    assert params.skin_type_thresholds["oily"] == 70.0
