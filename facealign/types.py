"""
Core value types shared by the geometry, transform and render stages.

All of them are frozen dataclasses. Arrays held by a LandmarkSet are copied
and flagged read-only on construction so a detection result cannot be edited
after it has been cached.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from .errors import InvalidConfig
from .indices_dlib68 import LANDMARK_COUNT as DLIB_LANDMARK_COUNT, get_groups as dlib_groups
from .indices_mediapipe import LANDMARK_COUNT as MP_LANDMARK_COUNT, get_groups as mp_groups

Point = Tuple[float, float]

SCHEMES: Dict[str, Tuple[int, Dict[str, List[int]]]] = {
    "dlib68": (DLIB_LANDMARK_COUNT, dlib_groups()),
    "mediapipe": (MP_LANDMARK_COUNT, mp_groups()),
}

DEFAULT_CANVAS_SIZE = 500
DEFAULT_TARGET_EYE_DISTANCE = 140.0
DEFAULT_EYE_Y_RATIO = 0.4
DEFAULT_SCALE_FACTOR = 1.0


@dataclass(frozen=True, eq=False)
class LandmarkSet:
    """
    Labeled 2-D landmark points in source-image pixel space.

    Attributes:
        points: Array of shape (N, 2) holding (x, y) pixel coordinates.
        groups: Mapping of anatomical group name to point indices. Must contain
                "eye_L" and "eye_R".
        scheme: Name of the landmark scheme the points follow.
    """

    points: np.ndarray
    groups: Mapping[str, List[int]] = field(default_factory=dlib_groups)
    scheme: str = "dlib68"

    def __post_init__(self) -> None:
        pts = np.array(self.points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] != 2:
            raise ValueError(f"points must have shape (N, 2), got {pts.shape}")
        expected = SCHEMES.get(self.scheme, (None, None))[0]
        if expected is not None and len(pts) != expected:
            raise ValueError(f"{self.scheme} landmarks need {expected} points, got {len(pts)}")
        pts.setflags(write=False)
        object.__setattr__(self, "points", pts)
        object.__setattr__(self, "groups", {k: list(v) for k, v in self.groups.items()})

    @classmethod
    def from_points(cls, points: Any, scheme: str = "dlib68") -> "LandmarkSet":
        """Build a landmark set using the group table of a known scheme."""
        if scheme not in SCHEMES:
            raise ValueError(f"Unknown landmark scheme: {scheme}")
        return cls(points=np.asarray(points, dtype=np.float64), groups=SCHEMES[scheme][1], scheme=scheme)

    def group(self, name: str) -> np.ndarray:
        """Return the points of one group; indices outside the set are dropped."""
        idxs = [i for i in self.groups.get(name, []) if 0 <= i < len(self.points)]
        return self.points[idxs]

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class EyeMetrics:
    """Eye geometry derived from a LandmarkSet. `angle` is in radians."""

    left_eye_center: Point
    right_eye_center: Point
    eye_distance: float
    angle: float
    center_point: Point

    @property
    def angle_degrees(self) -> float:
        return math.degrees(self.angle)


@dataclass(frozen=True)
class AlignmentConfig:
    """
    Output frame geometry.

    Attributes:
        canvas_size: Side length of the square output canvas, pixels.
        target_eye_distance: Eye separation in the output, pixels.
        target_eye_y: Height of the eye line from the top of the output.
                      None means 0.4 * canvas_size.
        scale_factor: Zoom multiplier applied on top of target_eye_distance.
    """

    canvas_size: int = DEFAULT_CANVAS_SIZE
    target_eye_distance: float = DEFAULT_TARGET_EYE_DISTANCE
    target_eye_y: Optional[float] = None
    scale_factor: float = DEFAULT_SCALE_FACTOR

    def __post_init__(self) -> None:
        if isinstance(self.canvas_size, bool) or not isinstance(self.canvas_size, (int, np.integer)):
            raise InvalidConfig(f"canvas_size must be an integer, got {self.canvas_size!r}")
        _check_positive("canvas_size", self.canvas_size)
        _check_positive("target_eye_distance", self.target_eye_distance)
        _check_positive("scale_factor", self.scale_factor)
        if self.target_eye_y is not None:
            _check_positive("target_eye_y", self.target_eye_y)

    @property
    def resolved_eye_y(self) -> float:
        if self.target_eye_y is None:
            return DEFAULT_EYE_Y_RATIO * self.canvas_size
        return float(self.target_eye_y)

    @property
    def effective_eye_distance(self) -> float:
        """Eye separation the output frame ends up with."""
        return self.target_eye_distance * self.scale_factor

    def resolved(self) -> "AlignmentConfig":
        """Return a copy with target_eye_y filled in, for comparisons."""
        return dataclasses.replace(self, target_eye_y=self.resolved_eye_y)

    def replace(self, **changes: Any) -> "AlignmentConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlignmentConfig":
        valid = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - valid
        if unknown:
            raise InvalidConfig(f"Unknown alignment keys: {sorted(unknown)}. Valid keys are: {sorted(valid)}")
        return cls(**dict(data))


def _check_positive(name: str, value: Any) -> None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidConfig(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number) or number <= 0:
        raise InvalidConfig(f"{name} must be finite and > 0, got {value!r}")
