"""Pytest configuration and fixtures."""

import sys
import threading
from pathlib import Path

import cv2
import numpy as np
import pytest

# Ensure the local package is importable when running tests without installation
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from facealign.indices_dlib68 import DLIB_GROUPS  # noqa: E402
from facealign.types import LandmarkSet  # noqa: E402


def make_landmarks(left=(100.0, 200.0), right=(200.0, 200.0), radius=6.0):
    """68 points whose eye groups average exactly to `left` and `right`."""
    pts = np.zeros((68, 2), dtype=np.float64)
    mid = ((left[0] + right[0]) / 2.0, (left[1] + right[1]) / 2.0)
    pts[:] = (mid[0], mid[1] + 60.0)
    # opposite pairs keep the mean at the center
    offsets = np.array([[-radius, 0.0], [radius, 0.0], [0.0, -radius / 2], [0.0, radius / 2], [-radius / 2, -radius / 3], [radius / 2, radius / 3]])
    for name, center in (("eye_L", left), ("eye_R", right)):
        idxs = DLIB_GROUPS[name]
        pts[idxs] = np.asarray(center) + offsets
    return LandmarkSet.from_points(pts)


def make_face_image(size=(400, 400), left=(100, 200), right=(200, 200), tag=0, dots=True):
    """
    White image with dark disks at the eye centers; pixel (0, 0) carries `tag`.

    The disk shade also depends on `tag` so aligned frames of different tags differ.
    """
    h, w = size
    img = np.full((h, w, 3), 255, dtype=np.uint8)
    shade = 20 + (tag * 9) % 120
    if dots:
        cv2.circle(img, (int(left[0]), int(left[1])), 6, (shade, shade, shade), -1)
        cv2.circle(img, (int(right[0]), int(right[1])), 6, (shade, shade, shade), -1)
    img[0, 0] = (tag, tag, tag)
    return img


class FakeDetector:
    """
    Detector keyed on the tag pixel at (0, 0).

    `results` maps tag -> LandmarkSet, None (no face) or an Exception to raise.
    A list value is consumed one item per call, the last item repeating.
    """

    def __init__(self, results):
        self.results = dict(results)
        self.calls = 0
        self._lock = threading.Lock()

    def detect(self, image):
        with self._lock:
            self.calls += 1
            tag = int(np.asarray(image)[0, 0, 0])
            result = self.results.get(tag)
            if isinstance(result, list):
                result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def landmarks():
    return make_landmarks()


@pytest.fixture
def face_image():
    return make_face_image()


def dark_centroid(raster, center, half=30):
    """Darkness-weighted (x, y) centroid inside a square window around `center`."""
    cx, cy = int(round(center[0])), int(round(center[1]))
    x0, y0 = max(0, cx - half), max(0, cy - half)
    window = raster[y0:cy + half + 1, x0:cx + half + 1].astype(np.float64).mean(axis=2)
    weight = 255.0 - window
    ys, xs = np.nonzero(weight > 1.0)
    w = weight[ys, xs]
    return float((xs * w).sum() / w.sum()) + x0, float((ys * w).sum() / w.sum()) + y0
