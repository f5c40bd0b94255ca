"""
Aligned frames and the ordered sequence they are exported from.

Nothing here is edited in place: re-aligning an image produces a new
AlignedFrame with a higher version, and every sequence operation returns a new
FrameSequence. Rasters are flagged read-only so a renderer holding an old
frame keeps seeing the pixels it started with.
"""

from __future__ import annotations

import dataclasses
import itertools
import threading
import uuid
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .transforms import SimilarityTransform
from .types import AlignmentConfig, LandmarkSet

DEFAULT_FRAME_DURATION_MS = 500

REASON_NO_FACE = "No face detected"
REASON_ERROR = "Error processing image"

_version_lock = threading.Lock()
_versions = itertools.count(1)


def next_version() -> int:
    """Return a process-wide, strictly increasing frame version."""
    with _version_lock:
        return next(_versions)


def freeze(array: np.ndarray) -> np.ndarray:
    """Return a read-only array; copies when the input is still writable."""
    if array.flags.writeable:
        array = array.copy()
        array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class AlignedFrame:
    """
    Result of aligning one image.

    Attributes:
        raster: canvas_size x canvas_size x 3 uint8 RGB array, None on failure.
        angle: Measured eye-line angle of the source, radians.
        success: Whether detection and alignment succeeded.
        version: Generation number; consumers diff on this, not on identity.
        config: Configuration the frame was rendered with.
        transform: Source-to-canvas transform used for the raster.
        error: Human readable failure reason.
    """

    raster: Optional[np.ndarray]
    angle: float = 0.0
    success: bool = True
    version: int = dataclasses.field(default_factory=next_version)
    config: Optional[AlignmentConfig] = None
    transform: Optional[SimilarityTransform] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.raster is not None:
            object.__setattr__(self, "raster", freeze(self.raster))

    @classmethod
    def failed(cls, reason: str = REASON_NO_FACE) -> "AlignedFrame":
        return cls(raster=None, success=False, error=reason)

    @property
    def angle_degrees(self) -> float:
        return float(np.degrees(self.angle))


@dataclass(frozen=True, eq=False)
class FrameEntry:
    """One uploaded image with its cached landmarks and current frame.

    `source` is None for an input that could not be read.
    """

    frame_id: str
    source: Optional[np.ndarray]
    frame: AlignedFrame
    landmarks: Optional[LandmarkSet] = None
    duration_ms: int = DEFAULT_FRAME_DURATION_MS
    name: str = ""

    def __post_init__(self) -> None:
        if self.source is not None:
            object.__setattr__(self, "source", freeze(self.source))

    @classmethod
    def create(
        cls,
        source: Optional[np.ndarray],
        frame: AlignedFrame,
        landmarks: Optional[LandmarkSet] = None,
        duration_ms: int = DEFAULT_FRAME_DURATION_MS,
        name: str = "",
    ) -> "FrameEntry":
        frame_id = f"{name or 'frame'}-{uuid.uuid4().hex[:12]}"
        return cls(frame_id, source, frame, landmarks, duration_ms, name)

    @property
    def ok(self) -> bool:
        return self.frame.success and self.frame.raster is not None

    def with_frame(self, frame: AlignedFrame, landmarks: Optional[LandmarkSet] = None) -> "FrameEntry":
        return dataclasses.replace(self, frame=frame, landmarks=landmarks if landmarks is not None else self.landmarks)


def is_stale(processed: Optional[AlignmentConfig], current: AlignmentConfig) -> bool:
    """True when frames rendered with `processed` no longer match `current`."""
    if processed is None:
        return True
    return processed.resolved() != current.resolved()


@dataclass(frozen=True, eq=False)
class FrameSequence:
    """Ordered, immutable collection of frame entries (insertion order)."""

    entries: Tuple[FrameEntry, ...] = ()
    processed_config: Optional[AlignmentConfig] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", tuple(self.entries))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[FrameEntry]:
        return iter(self.entries)

    def __getitem__(self, idx: int) -> FrameEntry:
        return self.entries[idx]

    @property
    def valid_entries(self) -> List[FrameEntry]:
        return [e for e in self.entries if e.ok]

    @property
    def failed_entries(self) -> List[FrameEntry]:
        return [e for e in self.entries if not e.ok]

    def export_frames(self) -> List[Tuple[np.ndarray, int]]:
        """(raster, duration_ms) pairs of the successful frames, in order."""
        return [(e.frame.raster, e.duration_ms) for e in self.valid_entries]

    def stale_for(self, config: AlignmentConfig) -> bool:
        return bool(self.entries) and is_stale(self.processed_config, config)

    def append(self, entries: Iterable[FrameEntry]) -> "FrameSequence":
        return dataclasses.replace(self, entries=self.entries + tuple(entries))

    def remove(self, frame_id: str) -> "FrameSequence":
        return dataclasses.replace(self, entries=tuple(e for e in self.entries if e.frame_id != frame_id))

    def clear(self) -> "FrameSequence":
        return FrameSequence()

    def reorder(self, frame_ids: Sequence[str]) -> "FrameSequence":
        """Reorder to `frame_ids`, which must name every entry exactly once."""
        by_id = {e.frame_id: e for e in self.entries}
        if sorted(frame_ids) != sorted(by_id):
            raise ValueError("reorder needs every frame id exactly once")
        return dataclasses.replace(self, entries=tuple(by_id[i] for i in frame_ids))

    def with_durations(self, duration_ms: int) -> "FrameSequence":
        if duration_ms <= 0:
            raise ValueError(f"duration_ms must be > 0, got {duration_ms}")
        return dataclasses.replace(
            self, entries=tuple(dataclasses.replace(e, duration_ms=duration_ms) for e in self.entries)
        )
