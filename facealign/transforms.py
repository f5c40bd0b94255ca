"""
Similarity transforms as 3x3 homogeneous matrices.

Notation: T_{B<-A} maps points from frame A into frame B and is applied by
left multiplication, p_B = T_{B<-A} @ p_A. Composition therefore reads right
to left; `chain(a, b, c)` returns c @ b @ a, i.e. a is applied first.

The alignment transform maps source-image pixels onto the output canvas:

    M = T_target @ S @ R @ T_center_to_origin

and is handed to the resampler as one matrix, never as a sequence of draws.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import DegenerateLandmarks
from .types import AlignmentConfig, EyeMetrics


def translation_matrix(tx: float, ty: float) -> np.ndarray:
    m = np.eye(3, dtype=np.float64)
    m[0, 2] = tx
    m[1, 2] = ty
    return m


def rotation_matrix(theta: float) -> np.ndarray:
    """Rotation by theta radians about the origin (Y-down image coordinates)."""
    c, s = math.cos(theta), math.sin(theta)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]], dtype=np.float64)


def scale_matrix(s: float) -> np.ndarray:
    return np.diag([s, s, 1.0]).astype(np.float64)


def _check_matrix(name: str, m: np.ndarray) -> None:
    if m.shape != (3, 3):
        raise ValueError(f"{name} must have shape (3, 3), got {m.shape}")


def compose_transforms(first: np.ndarray, second: np.ndarray) -> np.ndarray:
    """Return T_{C<-A} = T_{C<-B} @ T_{B<-A}: apply `first`, then `second`."""
    _check_matrix("first", first)
    _check_matrix("second", second)
    return second @ first


def chain(*steps: np.ndarray) -> np.ndarray:
    """Compose transforms given in application order."""
    out = np.eye(3, dtype=np.float64)
    for step in steps:
        out = compose_transforms(out, step)
    return out


def invert_transform(m: np.ndarray) -> np.ndarray:
    _check_matrix("transform", m)
    return np.linalg.inv(m)


def transform_points(points: np.ndarray, m: np.ndarray) -> np.ndarray:
    """Apply a 3x3 transform to an (N, 2) array of points."""
    _check_matrix("transform", m)
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    homo = np.concatenate([pts, np.ones((len(pts), 1))], axis=1)
    out = homo @ m.T
    return out[:, :2]


@dataclass(frozen=True, eq=False)
class SimilarityTransform:
    """
    Rotation + uniform scale + translation.

    Attributes:
        rotation: Applied rotation in radians.
        scale: Uniform scale.
        matrix: Composed 3x3 matrix mapping source pixels to canvas pixels.
    """

    rotation: float
    scale: float
    matrix: np.ndarray

    @property
    def translation(self) -> Tuple[float, float]:
        return float(self.matrix[0, 2]), float(self.matrix[1, 2])

    @property
    def affine(self) -> np.ndarray:
        """2x3 form accepted by cv2.warpAffine."""
        return self.matrix[:2, :].copy()

    def apply(self, points: np.ndarray) -> np.ndarray:
        return transform_points(points, self.matrix)

    def inverse(self) -> "SimilarityTransform":
        return SimilarityTransform(-self.rotation, 1.0 / self.scale, invert_transform(self.matrix))


def build_alignment_transform(metrics: EyeMetrics, config: AlignmentConfig) -> SimilarityTransform:
    """
    Build the transform that puts the eye midpoint at (canvas_size / 2,
    target_eye_y), levels the eye line and spaces the eyes
    target_eye_distance * scale_factor apart.

    Raises:
        DegenerateLandmarks: The eye distance is zero or non-finite, or the
            resulting scale is not a finite positive number.
    """
    if not math.isfinite(metrics.eye_distance) or metrics.eye_distance <= 0:
        raise DegenerateLandmarks(f"Cannot scale from eye distance {metrics.eye_distance!r}")
    scale = (config.target_eye_distance / metrics.eye_distance) * config.scale_factor
    if not math.isfinite(scale) or scale <= 0:
        raise DegenerateLandmarks(f"Alignment scale is not finite and positive: {scale!r}")
    theta = -metrics.angle

    cx, cy = metrics.center_point
    matrix = chain(
        translation_matrix(-cx, -cy),
        rotation_matrix(theta),
        scale_matrix(scale),
        translation_matrix(config.canvas_size / 2.0, config.resolved_eye_y),
    )
    return SimilarityTransform(rotation=theta, scale=scale, matrix=matrix)
