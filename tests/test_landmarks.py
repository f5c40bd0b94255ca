from types import SimpleNamespace

import numpy as np
import pytest

from facealign.errors import DetectorUnavailable
from facealign.landmarks import LandmarkDetector, load_detector


class _StubMesh:
    def __init__(self, faces):
        self.faces = faces

    def process(self, image):
        return SimpleNamespace(multi_face_landmarks=self.faces)


class _StubHog:
    def __init__(self, rects, scores):
        self.rects = rects
        self.scores = scores

    def run(self, gray, upsample, threshold):
        assert gray.ndim == 2
        return self.rects, self.scores, [0] * len(self.rects)


def _stub_predictor(gray, rect):
    return SimpleNamespace(parts=lambda: [SimpleNamespace(x=rect + i, y=2 * i) for i in range(68)])


def test_mediapipe_points_scaled_to_pixels():
    # FaceMesh with iris refinement returns 478 points; only the first 468 are kept
    marks = [SimpleNamespace(x=0.5, y=0.25)] * 478
    det = LandmarkDetector("mediapipe", _StubMesh([SimpleNamespace(landmark=marks)]))
    lms = det.detect(np.zeros((200, 100, 3), dtype=np.uint8))
    assert lms.scheme == "mediapipe"
    assert len(lms) == 468
    assert tuple(lms.points[0]) == (50.0, 50.0)


def test_mediapipe_no_face():
    det = LandmarkDetector("mediapipe", _StubMesh([]))
    assert det(np.zeros((50, 50, 3), dtype=np.uint8)) is None


def test_dlib_picks_most_confident_face():
    det = LandmarkDetector("dlib", _StubHog([100, 300], [0.2, 0.9]), _stub_predictor)
    lms = det.detect(np.zeros((50, 50, 3), dtype=np.uint8))
    assert lms.scheme == "dlib68"
    assert tuple(lms.points[0]) == (300.0, 0.0)
    assert tuple(lms.points[67]) == (367.0, 134.0)


def test_dlib_no_face():
    det = LandmarkDetector("dlib", _StubHog([], []), _stub_predictor)
    assert det.detect(np.zeros((50, 50), dtype=np.uint8)) is None


def test_unknown_mode_unavailable():
    with pytest.raises(DetectorUnavailable):
        load_detector("haar")


def test_missing_predictor_unavailable(tmp_path, monkeypatch):
    monkeypatch.setattr("facealign.landmarks.dlib", object())
    with pytest.raises(DetectorUnavailable):
        load_detector("dlib", predictor_path=str(tmp_path / "missing.dat"))
