"""
MediaPipe FaceMesh eye groups used when the mesh backend supplies landmarks.

The rim points below (corners plus upper and lower lid) average to a stable
eye center; iris points are left out so refined and unrefined meshes agree.
"""

from __future__ import annotations

from typing import Dict, List

LANDMARK_COUNT = 468

MEDIAPIPE_GROUPS: Dict[str, List[int]] = {
    "eye_L": [33, 133, 159, 145],
    "eye_R": [362, 263, 386, 374],
    "nose": [1],
    "mouth_L": [78],
    "mouth_R": [308],
    "chin": [152],
}


def get_groups() -> Dict[str, List[int]]:
    """Return mapping of group name to landmark indices."""
    return MEDIAPIPE_GROUPS
