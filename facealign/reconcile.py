"""
Batch alignment and re-alignment of a frame sequence.

Detection is the only slow step, so landmarks are cached on each entry and a
configuration change re-runs only geometry and resampling. Per-image failures
become failed entries and never stop the rest of the batch.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .errors import DegenerateLandmarks, DetectionFailure
from .frames import (
    DEFAULT_FRAME_DURATION_MS,
    REASON_NO_FACE,
    REASON_ERROR,
    AlignedFrame,
    FrameEntry,
    FrameSequence,
    is_stale,
)
from .landmarks import Detector
from .render import align_face
from .types import AlignmentConfig, LandmarkSet

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4


def _label(entry_name: str, index: Optional[int]) -> str:
    if entry_name:
        return entry_name
    return f"image {index + 1}" if index is not None else "image"


def detect_and_align(
    image: np.ndarray,
    detector: Detector,
    config: AlignmentConfig,
    overlay: bool = False,
    label: str = "image",
) -> Tuple[AlignedFrame, Optional[LandmarkSet]]:
    """
    Run the detector on one image and align the face it finds.

    Never raises for a per-image problem: a missing face, degenerate landmarks
    or any other error yields a failed frame with a reason. Returns the frame
    and the landmarks to cache (None when detection failed).
    """
    landmarks = None
    try:
        landmarks = detector.detect(image)
        if landmarks is None:
            raise DetectionFailure()
        return align_face(image, landmarks, config, overlay=overlay), landmarks
    except DetectionFailure as exc:
        logger.info("%s: %s", label, exc)
        return AlignedFrame.failed(str(exc)), None
    except DegenerateLandmarks as exc:
        logger.warning("%s: degenerate landmarks (%s)", label, exc)
        return AlignedFrame.failed(REASON_NO_FACE), landmarks
    except Exception:
        logger.exception("%s: error processing image", label)
        return AlignedFrame.failed(REASON_ERROR), landmarks


def _redetect(entry: FrameEntry, detector: Detector, config: AlignmentConfig, overlay: bool, label: str) -> FrameEntry:
    frame, landmarks = detect_and_align(entry.source, detector, config, overlay, label)
    return dataclasses.replace(entry, frame=frame, landmarks=landmarks)


def realign_entry(entry: FrameEntry, config: AlignmentConfig, overlay: bool = False) -> FrameEntry:
    """Re-render a successful entry from its cached landmarks."""
    if entry.landmarks is None:
        raise ValueError(f"{entry.frame_id} has no cached landmarks")
    return entry.with_frame(align_face(entry.source, entry.landmarks, config, overlay=overlay))


def _map_ordered(fn: Callable, items: Sequence, workers: int, progress: bool, desc: str) -> List:
    """Run `fn` over `items` concurrently, returning results in input order."""
    if not items:
        return []
    if workers <= 1:
        return [fn(i, item) for i, item in enumerate(tqdm(items, desc=desc, disable=not progress, leave=False))]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = pool.map(fn, range(len(items)), items)
        return list(tqdm(results, total=len(items), desc=desc, disable=not progress, leave=False))


def process_batch(
    images: Sequence[Optional[np.ndarray]],
    detector: Detector,
    config: Optional[AlignmentConfig] = None,
    names: Optional[Sequence[str]] = None,
    duration_ms: int = DEFAULT_FRAME_DURATION_MS,
    workers: int = DEFAULT_WORKERS,
    progress: bool = True,
    overlay: bool = False,
) -> FrameSequence:
    """
    Detect and align a batch of images into a new FrameSequence.

    Entries keep the order of `images`. Images without a usable face, and None
    placeholders for unreadable inputs, become failed entries carrying a human
    readable reason.
    """
    config = config or AlignmentConfig()
    if names is not None and len(names) != len(images):
        raise ValueError(f"Got {len(names)} names for {len(images)} images")
    names = list(names) if names is not None else [""] * len(images)

    def _one(i: int, image: Optional[np.ndarray]) -> FrameEntry:
        label = _label(names[i], i)
        if image is None:
            logger.warning("%s: unreadable image", label)
            return FrameEntry.create(None, AlignedFrame.failed(REASON_ERROR), None, duration_ms, names[i])
        frame, landmarks = detect_and_align(image, detector, config, overlay, label)
        return FrameEntry.create(image, frame, landmarks, duration_ms, names[i])

    entries = _map_ordered(_one, list(images), workers, progress, "Align")
    failed = sum(1 for e in entries if not e.ok)
    logger.info("Aligned %d/%d images (%d failed)", len(entries) - failed, len(entries), failed)
    return FrameSequence(entries=tuple(entries), processed_config=config)


def reprocess(
    sequence: FrameSequence,
    config: AlignmentConfig,
    detector: Optional[Detector] = None,
    redetect: bool = False,
    force_detect: bool = False,
    workers: int = DEFAULT_WORKERS,
    progress: bool = False,
    overlay: bool = False,
) -> FrameSequence:
    """
    Re-align every entry of `sequence` with `config`.

    Successful entries reuse their cached landmarks. Failed entries pass
    through untouched unless `redetect` is set and a detector is given; they
    then become aligned only if detection succeeds this time. `force_detect`
    re-runs detection for every entry.
    """
    if (redetect or force_detect) and detector is None:
        raise ValueError("redetect/force_detect need a detector")

    def _one(i: int, entry: FrameEntry) -> FrameEntry:
        label = _label(entry.name, i)
        if entry.source is None:
            return entry
        if force_detect:
            return _redetect(entry, detector, config, overlay, label)
        if entry.ok and entry.landmarks is not None:
            try:
                return realign_entry(entry, config, overlay)
            except Exception:
                logger.exception("%s: re-alignment failed", label)
                return entry.with_frame(AlignedFrame.failed(REASON_ERROR))
        if redetect:
            updated = _redetect(entry, detector, config, overlay, label)
            return updated if updated.ok else entry
        logger.debug("Skipping %s (%s)", label, entry.frame.error)
        return entry

    entries = _map_ordered(_one, list(sequence.entries), workers, progress, "Reprocess")
    return FrameSequence(entries=tuple(entries), processed_config=config)


class Reconciler:
    """
    Owns the current FrameSequence and applies configuration changes to it.

    Every reconciliation works on a snapshot taken when it was requested and is
    tagged with an increasing request id. A result is committed only if no
    newer request was made while it ran, so the latest requested configuration
    always wins. Entries added or removed while a reconciliation ran are kept
    or dropped when its result is merged in.
    """

    def __init__(
        self,
        detector: Optional[Detector] = None,
        config: Optional[AlignmentConfig] = None,
        workers: int = DEFAULT_WORKERS,
        executor: Optional[Executor] = None,
        overlay: bool = False,
    ) -> None:
        self.detector = detector
        self.workers = workers
        self.overlay = overlay
        self._executor = executor
        self._lock = threading.Lock()
        self._sequence = FrameSequence()
        self._config = config or AlignmentConfig()
        self._latest_request = 0

    @property
    def sequence(self) -> FrameSequence:
        with self._lock:
            return self._sequence

    @property
    def config(self) -> AlignmentConfig:
        with self._lock:
            return self._config

    @property
    def stale(self) -> bool:
        with self._lock:
            return self._sequence.stale_for(self._config)

    @property
    def latest_request(self) -> int:
        with self._lock:
            return self._latest_request

    def add_images(
        self,
        images: Sequence[np.ndarray],
        names: Optional[Sequence[str]] = None,
        duration_ms: int = DEFAULT_FRAME_DURATION_MS,
        progress: bool = True,
    ) -> FrameSequence:
        """Detect and align new images, appending them after existing entries."""
        if self.detector is None:
            raise ValueError("Reconciler has no detector")
        config = self.config
        batch = process_batch(
            images, self.detector, config, names, duration_ms, self.workers, progress, self.overlay
        )
        while True:
            with self._lock:
                current = self._config
                if not is_stale(config, current):
                    # a pending reconcile keeps the older processed_config until it commits
                    processed = self._sequence.processed_config if self._sequence.entries else config
                    self._sequence = FrameSequence(self._sequence.entries + batch.entries, processed)
                    return self._sequence
            logger.debug("Configuration changed during upload, re-aligning %d new entries", len(batch))
            batch = reprocess(batch, current, workers=self.workers, overlay=self.overlay)
            config = current

    def _begin(self, config: AlignmentConfig):
        with self._lock:
            self._latest_request += 1
            self._config = config
            return self._latest_request, self._sequence

    def _commit(self, request_id: int, result: FrameSequence) -> Optional[FrameSequence]:
        with self._lock:
            if request_id != self._latest_request:
                logger.debug(
                    "Discarding reconcile #%d, newer request #%d exists", request_id, self._latest_request
                )
                return None
            # current order and durations win; frames come from the result
            by_id = {e.frame_id: e for e in result.entries}
            merged = tuple(
                dataclasses.replace(by_id[e.frame_id], duration_ms=e.duration_ms) if e.frame_id in by_id else e
                for e in self._sequence.entries
            )
            self._sequence = FrameSequence(entries=merged, processed_config=result.processed_config)
            return self._sequence

    def _run(
        self,
        request_id: int,
        snapshot: FrameSequence,
        config: AlignmentConfig,
        redetect: bool,
        force_detect: bool,
    ) -> Optional[FrameSequence]:
        result = reprocess(
            snapshot,
            config,
            detector=self.detector,
            redetect=redetect,
            force_detect=force_detect,
            workers=self.workers,
            overlay=self.overlay,
        )
        return self._commit(request_id, result)

    def reconcile(
        self, config: AlignmentConfig, redetect: bool = False, force_detect: bool = False
    ) -> Optional[FrameSequence]:
        """Re-align synchronously. Returns the new sequence, or None if superseded."""
        request_id, snapshot = self._begin(config)
        return self._run(request_id, snapshot, config, redetect, force_detect)

    def submit(
        self, config: AlignmentConfig, redetect: bool = False, force_detect: bool = False
    ) -> "Future[Optional[FrameSequence]]":
        """Queue a reconciliation on the executor; the request id is taken now."""
        if self._executor is None:
            raise ValueError("Reconciler was created without an executor")
        request_id, snapshot = self._begin(config)
        return self._executor.submit(self._run, request_id, snapshot, config, redetect, force_detect)

    def remove(self, frame_id: str) -> FrameSequence:
        with self._lock:
            self._sequence = self._sequence.remove(frame_id)
            return self._sequence

    def reorder(self, frame_ids: Sequence[str]) -> FrameSequence:
        with self._lock:
            self._sequence = self._sequence.reorder(frame_ids)
            return self._sequence

    def set_durations(self, duration_ms: int) -> FrameSequence:
        with self._lock:
            self._sequence = self._sequence.with_durations(duration_ms)
            return self._sequence

    def clear(self) -> FrameSequence:
        with self._lock:
            self._sequence = FrameSequence()
            return self._sequence
