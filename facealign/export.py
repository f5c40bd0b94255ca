"""
Fit aligned frames to an output aspect ratio and encode them as GIF or video.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from .errors import EncoderFailure
from .frames import FrameSequence
from .render import WHITE, Color, to_rgb
from .utils import save_bytes

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int], None]
FrameList = Sequence[Tuple[np.ndarray, int]]

DEFAULT_PREFIX = "aligned-faces"
DEFAULT_RESOLUTION = 500
DEFAULT_FPS = 30

# width and height as fractions of the base resolution
ASPECT_RATIOS: Dict[str, Tuple[float, float]] = {
    "1:1": (1.0, 1.0),
    "9:16": (9 / 16, 1.0),
    "16:9": (1.0, 9 / 16),
    "4:5": (4 / 5, 1.0),
}


def canvas_dimensions(ratio: str = "1:1", base_size: int = DEFAULT_RESOLUTION) -> Tuple[int, int]:
    """Return (width, height) for an aspect preset; the longer side is base_size."""
    if ratio not in ASPECT_RATIOS:
        raise ValueError(f"Unknown aspect ratio {ratio!r}; choose from {sorted(ASPECT_RATIOS)}")
    if base_size <= 0:
        raise ValueError(f"base_size must be > 0, got {base_size}")
    fw, fh = ASPECT_RATIOS[ratio]
    return int(round(base_size * fw)), int(round(base_size * fh))


def fit_to_aspect(frame: np.ndarray, width: int, height: int, background: Color = WHITE) -> np.ndarray:
    """
    Place `frame` centered on a width x height canvas, preserving its aspect.

    The frame is scaled to fit inside the target and the remaining band along
    the longer dimension is filled with `background` (letterbox / pillarbox).
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Target size must be positive, got {width}x{height}")
    src = to_rgb(frame)
    sh, sw = src.shape[:2]
    scale = min(width / sw, height / sh)
    new_w = max(1, min(width, int(round(sw * scale))))
    new_h = max(1, min(height, int(round(sh * scale))))
    if (new_w, new_h) != (sw, sh):
        interp = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
        src = cv2.resize(src, (new_w, new_h), interpolation=interp)

    out = np.empty((height, width, 3), dtype=np.uint8)
    out[:] = background
    left = (width - new_w) // 2
    top = (height - new_h) // 2
    out[top:top + new_h, left:left + new_w] = src
    return out


def export_filename(prefix: str = DEFAULT_PREFIX, ext: str = "gif", now_ms: Optional[int] = None) -> str:
    """`{prefix}-{unixTimeMillis}.{ext}`"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}-{now_ms}.{ext.lstrip('.')}"


@dataclass(frozen=True)
class EncodedAnimation:
    data: bytes
    extension: str
    mime_type: str


@dataclass(frozen=True)
class ExportResult:
    path: str
    frame_count: int
    width: int
    height: int
    size_bytes: int


class AnimationEncoder(ABC):
    """Encodes ordered (raster, duration_ms) pairs into a byte stream."""

    @abstractmethod
    def encode(
        self, frames: FrameList, width: int, height: int, progress: Optional[ProgressFn] = None
    ) -> EncodedAnimation:
        """Encode `frames`; `progress` receives integers in [0, 100], ending with 100."""


def _check_frames(frames: FrameList, width: int, height: int) -> None:
    if not frames:
        raise EncoderFailure("No frames to encode")
    for raster, duration in frames:
        if raster.shape[:2] != (height, width):
            raise EncoderFailure(f"Frame size {raster.shape[1]}x{raster.shape[0]} does not match {width}x{height}")
        if duration <= 0:
            raise EncoderFailure(f"Frame duration must be > 0, got {duration}")


class GifEncoder(AnimationEncoder):
    """Looping GIF through Pillow, one palette per frame."""

    def __init__(self, loop: int = 0) -> None:
        self.loop = loop

    def encode(self, frames, width, height, progress=None):
        _check_frames(frames, width, height)
        images: List[Image.Image] = []
        for i, (raster, _) in enumerate(frames):
            images.append(Image.fromarray(to_rgb(raster)).convert("P", palette=Image.Palette.ADAPTIVE, colors=256))
            if progress is not None:
                progress(int(90 * (i + 1) / len(frames)))
        buf = io.BytesIO()
        images[0].save(
            buf,
            format="GIF",
            save_all=True,
            append_images=images[1:],
            duration=[int(d) for _, d in frames],
            loop=self.loop,
            disposal=2,
        )
        if progress is not None:
            progress(100)
        return EncodedAnimation(buf.getvalue(), "gif", "image/gif")


class VideoEncoder(AnimationEncoder):
    """
    Constant frame-rate video through OpenCV's VideoWriter.

    Each aligned frame is held for round(duration_ms * fps / 1000) video frames
    (at least one). Containers are tried in order until a writer opens.
    """

    CODECS: Sequence[Tuple[str, str, str]] = (
        ("mp4", "mp4v", "video/mp4"),
        ("webm", "VP80", "video/webm"),
        ("avi", "MJPG", "video/x-msvideo"),
    )

    def __init__(self, fps: int = DEFAULT_FPS, codecs: Optional[Sequence[Tuple[str, str, str]]] = None) -> None:
        if fps <= 0:
            raise ValueError(f"fps must be > 0, got {fps}")
        self.fps = fps
        self.codecs = tuple(codecs) if codecs is not None else self.CODECS

    def hold_count(self, duration_ms: int) -> int:
        return max(1, int(round(duration_ms * self.fps / 1000.0)))

    def encode(self, frames, width, height, progress=None):
        _check_frames(frames, width, height)
        with tempfile.TemporaryDirectory() as tmp:
            for ext, fourcc, mime in self.codecs:
                path = os.path.join(tmp, f"out.{ext}")
                writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*fourcc), float(self.fps), (width, height))
                if not writer.isOpened():
                    logger.debug("VideoWriter could not open %s/%s", ext, fourcc)
                    writer.release()
                    continue
                logger.info("Recording %d frames at %dx%d @ %d fps as %s", len(frames), width, height, self.fps, ext)
                try:
                    for i, (raster, duration) in enumerate(frames):
                        bgr = cv2.cvtColor(to_rgb(raster), cv2.COLOR_RGB2BGR)
                        for _ in range(self.hold_count(duration)):
                            writer.write(bgr)
                        if progress is not None:
                            progress(int(99 * (i + 1) / len(frames)))
                finally:
                    writer.release()
                with open(path, "rb") as f:
                    data = f.read()
                if progress is not None:
                    progress(100)
                return EncodedAnimation(data, ext, mime)
        raise EncoderFailure("No video codec available; tried " + ", ".join(c[1] for c in self.codecs))


def export_sequence(
    sequence: FrameSequence,
    encoder: AnimationEncoder,
    aspect_ratio: str = "1:1",
    resolution: int = DEFAULT_RESOLUTION,
    out_dir: str = ".",
    prefix: str = DEFAULT_PREFIX,
    progress: Optional[ProgressFn] = None,
) -> ExportResult:
    """
    Encode the successful frames of `sequence` and write the artifact.

    Failed entries are skipped. Raises EncoderFailure when nothing can be
    exported or the encoder errors or returns no bytes.
    """
    frames = sequence.export_frames()
    if not frames:
        raise EncoderFailure("No valid aligned faces to export")
    width, height = canvas_dimensions(aspect_ratio, resolution)
    fitted = [(fit_to_aspect(raster, width, height), duration) for raster, duration in frames]

    try:
        encoded = encoder.encode(fitted, width, height, progress)
    except EncoderFailure:
        raise
    except Exception as exc:
        raise EncoderFailure(f"Encoding failed: {exc}") from exc
    if not encoded.data:
        raise EncoderFailure("Encoder produced no output")

    path = os.path.join(out_dir, export_filename(prefix, encoded.extension))
    save_bytes(encoded.data, path)
    logger.info("Wrote %s (%d frames, %.2f MB)", path, len(fitted), len(encoded.data) / 1024 / 1024)
    return ExportResult(path, len(fitted), width, height, len(encoded.data))
