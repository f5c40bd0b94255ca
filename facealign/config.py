"""YAML configuration with command-line overrides."""

from __future__ import annotations

import argparse
import copy
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from .errors import InvalidConfig
from .export import ASPECT_RATIOS, DEFAULT_FPS, DEFAULT_PREFIX, DEFAULT_RESOLUTION
from .frames import DEFAULT_FRAME_DURATION_MS
from .reconcile import DEFAULT_WORKERS
from .types import AlignmentConfig

DEFAULT_CONFIG: Dict[str, Any] = {
    "alignment": {
        "canvas_size": 500,
        "target_eye_distance": 140.0,
        "target_eye_y": None,
        "scale_factor": 1.0,
    },
    "export": {
        "format": "gif",
        "aspect_ratio": "1:1",
        "resolution": DEFAULT_RESOLUTION,
        "fps": DEFAULT_FPS,
        "frame_duration_ms": DEFAULT_FRAME_DURATION_MS,
        "prefix": DEFAULT_PREFIX,
        "out_dir": ".",
    },
    "detector": {
        "extractor": "dlib",
        "predictor_path": None,
    },
    "workers": DEFAULT_WORKERS,
    "debug_overlay": False,
}

# argparse dest -> (section, key); section None means top level
CLI_KEYS = {
    "canvas_size": ("alignment", "canvas_size"),
    "eye_distance": ("alignment", "target_eye_distance"),
    "eye_y": ("alignment", "target_eye_y"),
    "scale_factor": ("alignment", "scale_factor"),
    "format": ("export", "format"),
    "aspect": ("export", "aspect_ratio"),
    "resolution": ("export", "resolution"),
    "fps": ("export", "fps"),
    "duration": ("export", "frame_duration_ms"),
    "prefix": ("export", "prefix"),
    "out_dir": ("export", "out_dir"),
    "extractor": ("detector", "extractor"),
    "predictor": ("detector", "predictor_path"),
    "workers": (None, "workers"),
    "debug_overlay": (None, "debug_overlay"),
}


@dataclass(frozen=True)
class ExportSettings:
    format: str = "gif"
    aspect_ratio: str = "1:1"
    resolution: int = DEFAULT_RESOLUTION
    fps: int = DEFAULT_FPS
    frame_duration_ms: int = DEFAULT_FRAME_DURATION_MS
    prefix: str = DEFAULT_PREFIX
    out_dir: str = "."

    def __post_init__(self) -> None:
        if self.format not in ("gif", "video"):
            raise InvalidConfig(f"export format must be 'gif' or 'video', got {self.format!r}")
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise InvalidConfig(f"aspect_ratio must be one of {sorted(ASPECT_RATIOS)}, got {self.aspect_ratio!r}")
        for name in ("resolution", "fps", "frame_duration_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidConfig(f"{name} must be a positive integer, got {value!r}")


def _merge(base: Dict[str, Any], override: Dict[str, Any], path: str = "") -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if key not in base:
            raise InvalidConfig(f"Unknown config key: {path}{key}")
        if isinstance(base[key], dict):
            if not isinstance(value, dict):
                raise InvalidConfig(f"Config section {path}{key} must be a mapping")
            out[key] = _merge(base[key], value, f"{path}{key}.")
        else:
            out[key] = value
    return out


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """Read a YAML config on top of the defaults; a missing path gives the defaults."""
    if not path or not os.path.exists(path):
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise InvalidConfig(f"{path} must contain a mapping")
    return _merge(DEFAULT_CONFIG, data)


def merge_config(cfg: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Overlay command-line values that were given (not None) onto `cfg`."""
    cfg = copy.deepcopy(cfg)
    for dest, (section, key) in CLI_KEYS.items():
        val = getattr(args, dest, None)
        if val is None:
            continue
        if section is None:
            cfg[key] = val
        else:
            cfg[section][key] = val
    return cfg


def alignment_config(cfg: Dict[str, Any]) -> AlignmentConfig:
    return AlignmentConfig.from_dict(cfg["alignment"])


def export_settings(cfg: Dict[str, Any]) -> ExportSettings:
    return ExportSettings(**cfg["export"])
