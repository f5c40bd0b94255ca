import argparse
import os

import pytest
import yaml
from PIL import Image, ImageSequence

from conftest import FakeDetector, make_face_image, make_landmarks
from facealign import cli
from facealign.config import (
    DEFAULT_CONFIG,
    ExportSettings,
    alignment_config,
    export_settings,
    load_config,
    merge_config,
)
from facealign.errors import DetectorUnavailable, InvalidConfig
from facealign.types import AlignmentConfig


def _write_yaml(path, data):
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f)
    return str(path)


def test_missing_config_gives_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "nope.yaml"))
    assert cfg == DEFAULT_CONFIG
    assert cfg is not DEFAULT_CONFIG
    assert alignment_config(cfg) == AlignmentConfig()
    assert export_settings(cfg) == ExportSettings()


def test_yaml_overrides_defaults(tmp_path):
    path = _write_yaml(tmp_path / "c.yaml", {"alignment": {"target_eye_distance": 180}, "export": {"format": "video"}})
    cfg = load_config(path)
    assert alignment_config(cfg).target_eye_distance == 180
    assert alignment_config(cfg).canvas_size == 500
    assert export_settings(cfg).format == "video"
    assert DEFAULT_CONFIG["alignment"]["target_eye_distance"] == 140.0


@pytest.mark.parametrize(
    "data",
    [
        {"alignment": {"eye_distance": 100}},
        {"colors": 3},
        {"export": "gif"},
        ["not", "a", "mapping"],
    ],
)
def test_bad_yaml_rejected(tmp_path, data):
    path = _write_yaml(tmp_path / "c.yaml", data)
    with pytest.raises(InvalidConfig):
        load_config(path)


def test_cli_values_override_yaml():
    args = argparse.Namespace(eye_distance=90.0, canvas_size=None, aspect="9:16", workers=2, debug_overlay=None)
    cfg = merge_config(load_config(None), args)
    assert cfg["alignment"]["target_eye_distance"] == 90.0
    assert cfg["alignment"]["canvas_size"] == 500
    assert cfg["export"]["aspect_ratio"] == "9:16"
    assert cfg["workers"] == 2
    assert cfg["debug_overlay"] is False


@pytest.mark.parametrize(
    "kwargs",
    [{"format": "webp"}, {"aspect_ratio": "3:2"}, {"resolution": 0}, {"fps": -1}, {"frame_duration_ms": 12.5}],
)
def test_invalid_export_settings(kwargs):
    with pytest.raises(InvalidConfig):
        ExportSettings(**kwargs)


def _write_inputs(folder, tags):
    os.makedirs(folder, exist_ok=True)
    for i, tag in enumerate(tags):
        Image.fromarray(make_face_image(tag=tag)).save(os.path.join(folder, f"{i:02d}.png"))
    return str(folder)


def test_cli_exports_gif(tmp_path, monkeypatch, capsys):
    inputs = _write_inputs(tmp_path / "in", [1, 2, 3])
    detector = FakeDetector({1: make_landmarks(), 2: None, 3: make_landmarks()})
    monkeypatch.setattr(cli, "load_detector", lambda *a, **k: detector)
    out_dir = tmp_path / "out"

    code = cli.main([inputs, "--config", str(tmp_path / "none.yaml"), "--out_dir", str(out_dir),
                     "--aspect", "9:16", "--resolution", "200", "--prefix", "demo", "--workers", "1"])
    assert code == 0
    files = os.listdir(out_dir)
    assert len(files) == 1 and files[0].startswith("demo-") and files[0].endswith(".gif")
    with Image.open(out_dir / files[0]) as img:
        assert img.n_frames == 2
        assert sum(f.info["duration"] for f in ImageSequence.Iterator(img)) == 1000
        assert img.size == (112, 200)
    out = capsys.readouterr().out
    assert "01.png: No face detected" in out
    assert "Aligned 2/3 images" in out


def test_cli_invalid_config_exits_2(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "load_detector", lambda *a, **k: FakeDetector({}))
    inputs = _write_inputs(tmp_path / "in", [1])
    assert cli.main([inputs, "--config", str(tmp_path / "none.yaml"), "--eye_distance", "-5"]) == 2


def test_cli_exit_1_without_faces(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "load_detector", lambda *a, **k: FakeDetector({1: None}))
    inputs = _write_inputs(tmp_path / "in", [1])
    code = cli.main([inputs, "--config", str(tmp_path / "none.yaml"), "--out_dir", str(tmp_path / "out")])
    assert code == 1
    assert not (tmp_path / "out").exists()


def test_cli_exit_1_when_detector_missing(tmp_path, monkeypatch):
    def _unavailable(*args, **kwargs):
        raise DetectorUnavailable("dlib is not installed")

    monkeypatch.setattr(cli, "load_detector", _unavailable)
    inputs = _write_inputs(tmp_path / "in", [1])
    assert cli.main([inputs, "--config", str(tmp_path / "none.yaml")]) == 1


def test_cli_unreadable_input_becomes_failed_frame(tmp_path, monkeypatch, capsys):
    inputs = _write_inputs(tmp_path / "in", [1, 2, 3])
    with open(os.path.join(inputs, "01.png"), "wb") as f:
        f.write(b"not an image")
    detector = FakeDetector({1: make_landmarks(), 3: make_landmarks()})
    monkeypatch.setattr(cli, "load_detector", lambda *a, **k: detector)

    code = cli.main([inputs, "--config", str(tmp_path / "none.yaml"), "--out_dir", str(tmp_path / "out")])
    assert code == 0
    assert detector.calls == 2
    out = capsys.readouterr().out
    assert "01.png: Error processing image" in out
    assert "Aligned 2/3 images" in out
