"""
Face normalization for animations: level the eye line, fix the eye distance,
place every face at the same spot on a square canvas, export GIF or video.
"""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "config",
    "errors",
    "export",
    "frames",
    "geometry",
    "indices_dlib68",
    "indices_mediapipe",
    "landmarks",
    "reconcile",
    "render",
    "transforms",
    "types",
    "utils",
]
