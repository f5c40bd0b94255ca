"""
Group mapping for the standard 68-point dlib landmark model.
"""

from __future__ import annotations

from typing import Dict, List

LANDMARK_COUNT = 68

DLIB_GROUPS: Dict[str, List[int]] = {
    "jaw": list(range(0, 17)),
    "eyebrow_L": list(range(17, 22)),
    "eyebrow_R": list(range(22, 27)),
    "nose": list(range(27, 36)),
    "eye_L": list(range(36, 42)),  # mean over 36..41
    "eye_R": list(range(42, 48)),  # mean over 42..47
    "mouth": list(range(48, 68)),
}

EYE_GROUPS = ("eye_L", "eye_R")


def get_groups() -> Dict[str, List[int]]:
    """Return mapping of group name to landmark indices."""
    return DLIB_GROUPS
