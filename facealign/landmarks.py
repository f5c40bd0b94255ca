"""
Landmark detection backends for dlib-68 and MediaPipe FaceMesh.

`load_detector()` returns a ready handle; a handle only exists once its
backend and model file are loaded, so callers never check a "loaded" flag.
Each call to `detect()` returns the landmarks of the most confident face, or
None when no face is found.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional, Protocol

import numpy as np

from .errors import DetectorUnavailable
from .render import to_rgb
from .types import LandmarkSet

try:
    import mediapipe as mp
except Exception:  # pragma: no cover - optional dependency
    mp = None

try:
    import dlib  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    dlib = None

logger = logging.getLogger(__name__)

DEFAULT_PREDICTOR = "shape_predictor_68_face_landmarks.dat"


class Detector(Protocol):
    """Anything that turns an RGB image into at most one landmark set."""

    def detect(self, image: np.ndarray) -> Optional[LandmarkSet]: ...


class LandmarkDetector:
    """
    Single-face landmark detector handle.

    Landmarks are pixel coordinates in the RGB input image. Backend objects are
    not thread-safe, so calls on one handle are serialized.
    """

    def __init__(self, mode: str, backend: object, predictor: object = None, upsample: int = 1) -> None:
        self.mode = mode
        self._backend = backend
        self._predictor = predictor
        self._upsample = upsample
        self._lock = threading.Lock()

    def __call__(self, image: np.ndarray) -> Optional[LandmarkSet]:
        return self.detect(image)

    def detect(self, image: np.ndarray) -> Optional[LandmarkSet]:
        rgb = to_rgb(image)
        with self._lock:
            if self.mode == "dlib":
                return self._detect_dlib(rgb)
            return self._detect_mediapipe(rgb)

    def _detect_dlib(self, image_rgb: np.ndarray) -> Optional[LandmarkSet]:
        gray = np.ascontiguousarray(image_rgb.mean(axis=2).astype(np.uint8))
        rects, scores, _ = self._backend.run(gray, self._upsample, 0.0)
        if len(rects) == 0:
            return None
        best = int(np.argmax(scores))
        shape = self._predictor(gray, rects[best])
        points = np.array([[p.x, p.y] for p in shape.parts()], dtype=np.float64)
        return LandmarkSet.from_points(points, scheme="dlib68")

    def _detect_mediapipe(self, image_rgb: np.ndarray) -> Optional[LandmarkSet]:
        result = self._backend.process(np.ascontiguousarray(image_rgb))
        if not result.multi_face_landmarks:
            return None
        h, w = image_rgb.shape[:2]
        points = [[lm.x * w, lm.y * h] for lm in result.multi_face_landmarks[0].landmark]
        return LandmarkSet.from_points(np.asarray(points[:468], dtype=np.float64), scheme="mediapipe")


def load_detector(mode: str = "dlib", predictor_path: Optional[str] = None, upsample: int = 1) -> LandmarkDetector:
    """
    Initialize a detector backend.

    Args:
        mode: "dlib" (68 points) or "mediapipe" (468 points).
        predictor_path: dlib shape predictor file; defaults to the
            DLIB_LANDMARK_MODEL environment variable, then
            shape_predictor_68_face_landmarks.dat in the working directory.
        upsample: dlib HOG upsampling passes.

    Raises:
        DetectorUnavailable: The backend library or model file is missing.
    """
    mode = mode.lower()
    if mode == "dlib":
        if dlib is None:
            raise DetectorUnavailable("dlib is required. Install with: pip install dlib")
        path = predictor_path or os.environ.get("DLIB_LANDMARK_MODEL", DEFAULT_PREDICTOR)
        if not os.path.exists(path):
            raise DetectorUnavailable(f"dlib shape predictor not found: {path}")
        detector = LandmarkDetector(
            "dlib", dlib.get_frontal_face_detector(), dlib.shape_predictor(path), upsample=upsample
        )
        logger.info("Loaded dlib HOG detector with predictor %s", path)
        return detector
    if mode == "mediapipe":
        if mp is None:
            raise DetectorUnavailable("mediapipe is required. Install with: pip install mediapipe")
        mesh = mp.solutions.face_mesh.FaceMesh(static_image_mode=True, refine_landmarks=False, max_num_faces=1)
        logger.info("Loaded MediaPipe FaceMesh detector")
        return LandmarkDetector("mediapipe", mesh)
    raise DetectorUnavailable(f"Unknown detector mode: {mode}")
