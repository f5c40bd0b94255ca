import math

import numpy as np
import pytest

from conftest import make_landmarks
from facealign.errors import DegenerateLandmarks, InvalidConfig
from facealign.geometry import compute_eye_metrics
from facealign.transforms import (
    build_alignment_transform,
    chain,
    compose_transforms,
    invert_transform,
    rotation_matrix,
    scale_matrix,
    transform_points,
    translation_matrix,
)
from facealign.types import AlignmentConfig, EyeMetrics


def _map_eyes(left, right, config):
    metrics = compute_eye_metrics(make_landmarks(left, right))
    t = build_alignment_transform(metrics, config)
    return t, t.apply(np.array([metrics.left_eye_center, metrics.right_eye_center]))


def test_concrete_scenario():
    config = AlignmentConfig(canvas_size=500, target_eye_distance=140, target_eye_y=200, scale_factor=1.0)
    t, (l, r) = _map_eyes((100, 200), (200, 200), config)
    assert t.scale == pytest.approx(1.4)
    assert l == pytest.approx((180.0, 200.0), abs=1e-9)
    assert r == pytest.approx((320.0, 200.0), abs=1e-9)


@pytest.mark.parametrize(
    "left,right,distance,scale_factor",
    [
        ((100, 200), (200, 200), 140, 1.0),
        ((310.5, 122.25), (402.0, 171.75), 140, 0.75),
        ((80, 400), (60, 300), 200, 1.3),
        ((1000, 900), (1500, 650), 90, 1.0),
    ],
)
def test_output_eye_distance_and_level_line(left, right, distance, scale_factor):
    config = AlignmentConfig(target_eye_distance=distance, scale_factor=scale_factor)
    _, (l, r) = _map_eyes(left, right, config)
    assert math.hypot(r[0] - l[0], r[1] - l[1]) == pytest.approx(distance * scale_factor, abs=1e-3)
    assert abs(r[1] - l[1]) < 1e-3
    assert (l[0] + r[0]) / 2 == pytest.approx(250.0, abs=1e-6)
    assert l[1] == pytest.approx(200.0, abs=1e-3)


def test_ten_degree_tilt_is_leveled():
    theta = math.radians(10.0)
    left = (100.0, 200.0)
    right = (100.0 + 80.0 * math.cos(theta), 200.0 + 80.0 * math.sin(theta))
    t, (l, r) = _map_eyes(left, right, AlignmentConfig())
    assert t.rotation == pytest.approx(-theta, abs=1e-6)
    assert abs(r[1] - l[1]) < 1e-3
    assert r[0] > l[0]


def test_composition_order_matches_product():
    cx, cy, theta, s = 150.0, 210.0, 0.3, 1.7
    expected = translation_matrix(250, 200) @ scale_matrix(s) @ rotation_matrix(theta) @ translation_matrix(-cx, -cy)
    got = chain(translation_matrix(-cx, -cy), rotation_matrix(theta), scale_matrix(s), translation_matrix(250, 200))
    np.testing.assert_allclose(got, expected)


def test_translation_does_not_commute_with_rotation():
    a = compose_transforms(translation_matrix(10, 0), rotation_matrix(0.5))
    b = compose_transforms(rotation_matrix(0.5), translation_matrix(10, 0))
    assert not np.allclose(a, b)


def test_rotation_and_scale_commute():
    np.testing.assert_allclose(rotation_matrix(0.7) @ scale_matrix(2.5), scale_matrix(2.5) @ rotation_matrix(0.7))


def test_inverse_round_trip():
    metrics = compute_eye_metrics(make_landmarks((40, 90), (130, 60)))
    t = build_alignment_transform(metrics, AlignmentConfig())
    pts = np.array([[0.0, 0.0], [12.5, 99.0], [400.0, 30.0]])
    np.testing.assert_allclose(t.inverse().apply(t.apply(pts)), pts, atol=1e-9)
    np.testing.assert_allclose(invert_transform(t.matrix) @ t.matrix, np.eye(3), atol=1e-12)


def test_transform_points_shape_checks():
    with pytest.raises(ValueError):
        transform_points(np.zeros((3, 2)), np.eye(2))
    assert transform_points(np.zeros((5, 2)), translation_matrix(1, 2)).shape == (5, 2)


@pytest.mark.parametrize("distance", [0.0, float("nan"), float("inf")])
def test_degenerate_eye_distance_rejected(distance):
    metrics = EyeMetrics((0.0, 0.0), (0.0, 0.0), distance, 0.0, (0.0, 0.0))
    with pytest.raises(DegenerateLandmarks):
        build_alignment_transform(metrics, AlignmentConfig())


def test_config_defaults():
    config = AlignmentConfig()
    assert config.canvas_size == 500
    assert config.target_eye_distance == 140
    assert config.resolved_eye_y == pytest.approx(200.0)
    assert config.scale_factor == 1.0
    assert AlignmentConfig(canvas_size=600).resolved_eye_y == pytest.approx(240.0)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"canvas_size": 0},
        {"canvas_size": -10},
        {"canvas_size": 500.5},
        {"target_eye_distance": 0},
        {"target_eye_distance": float("nan")},
        {"scale_factor": -1.0},
        {"scale_factor": float("inf")},
        {"target_eye_y": 0},
    ],
)
def test_invalid_config_fails_fast(kwargs):
    with pytest.raises(InvalidConfig):
        AlignmentConfig(**kwargs)


def test_unknown_config_keys_rejected():
    with pytest.raises(InvalidConfig):
        AlignmentConfig.from_dict({"canvas": 400})
