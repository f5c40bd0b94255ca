"""Eye centers, eye distance and eye-line angle from grouped facial landmarks."""

from __future__ import annotations

import math
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from .errors import DegenerateLandmarks
from .indices_dlib68 import EYE_GROUPS
from .types import EyeMetrics, LandmarkSet


def make_group_centers(
    landmarks: LandmarkSet, names: Optional[Iterable[str]] = None
) -> Dict[str, Tuple[float, float]]:
    """Compute group centroids (unweighted mean of member points)."""
    centers = {}
    for name in names if names is not None else landmarks.groups:
        pts = landmarks.group(name)
        if len(pts) == 0:
            continue
        centers[name] = (float(pts[:, 0].mean()), float(pts[:, 1].mean()))
    return centers


def compute_eye_metrics(landmarks: LandmarkSet) -> EyeMetrics:
    """
    Derive eye geometry from a landmark set.

    Eye centers are the arithmetic mean of each eye group, not a bounding-box
    center. The angle is atan2(dy, dx) from the left to the right eye center in
    Y-down image coordinates, so a right eye sitting higher than the left gives
    a negative angle.

    Raises:
        DegenerateLandmarks: An eye group is empty, holds non-finite points, or
            both eye centers coincide.
    """
    centers = make_group_centers(landmarks, EYE_GROUPS)
    for name in EYE_GROUPS:
        if name not in centers:
            raise DegenerateLandmarks(f"Landmark group {name!r} is empty")
    left = centers["eye_L"]
    right = centers["eye_R"]
    if not np.isfinite(left + right).all():
        raise DegenerateLandmarks(f"Non-finite eye centers: left={left} right={right}")

    dx = right[0] - left[0]
    dy = right[1] - left[1]
    eye_distance = math.hypot(dx, dy)
    if eye_distance == 0.0:
        raise DegenerateLandmarks(f"Eye centers coincide at {left}")

    return EyeMetrics(
        left_eye_center=left,
        right_eye_center=right,
        eye_distance=eye_distance,
        angle=math.atan2(dy, dx),
        center_point=((left[0] + right[0]) / 2.0, (left[1] + right[1]) / 2.0),
    )
