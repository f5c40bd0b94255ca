"""Utility helpers for loading inputs and writing artifacts."""

from __future__ import annotations

import logging
import os
from typing import List, Sequence

import numpy as np
from PIL import Image, ImageOps

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".webp", ".gif", ".tif", ".tiff")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_image(path: str) -> np.ndarray:
    """Load an image as an HxWx3 uint8 RGB array, honoring EXIF orientation."""
    with Image.open(path) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode in ("RGBA", "LA", "P"):
            rgba = img.convert("RGBA")
            background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
            img = Image.alpha_composite(background, rgba)
        return np.array(img.convert("RGB"))


def expand_inputs(paths: Sequence[str]) -> List[str]:
    """Expand directories into their image files (sorted); files pass through in order."""
    out: List[str] = []
    for path in paths:
        if os.path.isdir(path):
            names = sorted(n for n in os.listdir(path) if n.lower().endswith(IMAGE_EXTENSIONS))
            out.extend(os.path.join(path, n) for n in names)
        else:
            out.append(path)
    return out


def save_bytes(data: bytes, path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
