"""Resample a source image onto the aligned output canvas, plus debug overlays."""

from __future__ import annotations

import logging
from typing import Optional, Tuple, Union

import cv2
import numpy as np

from .frames import AlignedFrame
from .geometry import compute_eye_metrics
from .transforms import SimilarityTransform, build_alignment_transform
from .types import AlignmentConfig, EyeMetrics, LandmarkSet

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int]

WHITE: Color = (255, 255, 255)
GREEN: Color = (0, 255, 0)
RED: Color = (255, 0, 0)


def to_rgb(image: np.ndarray, background: Color = WHITE) -> np.ndarray:
    """Return an HxWx3 uint8 view of `image`; alpha is composited on `background`."""
    img = np.asarray(image)
    if img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    if img.ndim != 3 or img.shape[2] not in (1, 3, 4):
        raise ValueError(f"Unsupported image shape {img.shape}")
    if img.shape[2] == 1:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    if img.shape[2] == 4:
        alpha = img[:, :, 3:4].astype(np.float32) / 255.0
        bg = np.asarray(background, dtype=np.float32).reshape(1, 1, 3)
        rgb = img[:, :, :3].astype(np.float32) * alpha + bg * (1.0 - alpha)
        return np.round(rgb).astype(np.uint8)
    return img


def render(
    source: np.ndarray,
    transform: Union[SimilarityTransform, np.ndarray],
    canvas_size: int,
    background: Color = WHITE,
) -> np.ndarray:
    """
    Paint `source` onto a new canvas_size x canvas_size canvas through `transform`.

    The canvas is filled with `background` first, so areas the source does not
    cover after the transform stay opaque. Resampling is one bilinear
    warpAffine pass with the composed matrix. The source is left untouched.
    """
    matrix = transform.affine if isinstance(transform, SimilarityTransform) else np.asarray(transform)[:2, :]
    src = to_rgb(source, background)
    canvas = np.empty((canvas_size, canvas_size, 3), dtype=np.uint8)
    canvas[:] = background
    cv2.warpAffine(
        src,
        matrix.astype(np.float64),
        (canvas_size, canvas_size),
        dst=canvas,
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=background,
    )
    return canvas


def map_eye_metrics(metrics: EyeMetrics, transform: SimilarityTransform) -> EyeMetrics:
    """Express source-space eye metrics in canvas coordinates."""
    pts = transform.apply(np.array([metrics.left_eye_center, metrics.right_eye_center, metrics.center_point]))
    (lx, ly), (rx, ry), (cx, cy) = pts.tolist()
    return EyeMetrics(
        left_eye_center=(lx, ly),
        right_eye_center=(rx, ry),
        eye_distance=metrics.eye_distance * transform.scale,
        angle=float(np.arctan2(ry - ly, rx - lx)),
        center_point=(cx, cy),
    )


def _px(point: Tuple[float, float]) -> Tuple[int, int]:
    return int(round(point[0])), int(round(point[1]))


def draw_eye_metrics(surface: np.ndarray, metrics: EyeMetrics, color: Color = GREEN) -> np.ndarray:
    """
    Draw the eye line, eye-center markers, a red midpoint marker and angle /
    distance labels. Returns an annotated copy; `surface` is not modified.
    """
    out = to_rgb(surface).copy()
    left = _px(metrics.left_eye_center)
    right = _px(metrics.right_eye_center)
    center = _px(metrics.center_point)

    cv2.line(out, left, right, color, 2, cv2.LINE_AA)
    cv2.circle(out, left, 5, color, -1, cv2.LINE_AA)
    cv2.circle(out, right, 5, color, -1, cv2.LINE_AA)
    cv2.circle(out, center, 7, RED, -1, cv2.LINE_AA)

    font = cv2.FONT_HERSHEY_SIMPLEX
    cv2.putText(out, f"Angle: {metrics.angle_degrees:.1f} deg", (center[0] + 20, center[1] - 20), font, 0.5, color, 1, cv2.LINE_AA)
    cv2.putText(out, f"Distance: {metrics.eye_distance:.1f}px", (center[0] + 20, center[1]), font, 0.5, color, 1, cv2.LINE_AA)
    return out


def align_face(
    image: np.ndarray,
    landmarks: LandmarkSet,
    config: Optional[AlignmentConfig] = None,
    overlay: bool = False,
) -> AlignedFrame:
    """
    Normalize the face described by `landmarks` onto a square canvas.

    Raises:
        DegenerateLandmarks: The landmarks cannot define an eye line.
    """
    config = config or AlignmentConfig()
    metrics = compute_eye_metrics(landmarks)
    transform = build_alignment_transform(metrics, config)
    raster = render(image, transform, config.canvas_size)
    if overlay:
        raster = draw_eye_metrics(raster, map_eye_metrics(metrics, transform))
    logger.debug(
        "Aligned face: angle=%.2f deg distance=%.1fpx scale=%.4f",
        metrics.angle_degrees, metrics.eye_distance, transform.scale,
    )
    return AlignedFrame(raster=raster, angle=metrics.angle, success=True, config=config, transform=transform)
