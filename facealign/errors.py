"""Exception types raised by the alignment pipeline."""

from __future__ import annotations


class FaceAlignError(Exception):
    """Base class for every error raised by facealign."""


class DetectionFailure(FaceAlignError):
    """The detector returned no face for an image."""

    def __init__(self, message: str = "No face detected") -> None:
        super().__init__(message)


class DegenerateLandmarks(FaceAlignError):
    """Landmarks cannot define an eye line (empty eye group, coincident eyes, NaN)."""


class InvalidConfig(FaceAlignError, ValueError):
    """A configuration value is non-positive, non-finite or unknown."""


class EncoderFailure(FaceAlignError):
    """The animation encoder failed or produced no output."""


class DetectorUnavailable(FaceAlignError):
    """A detector backend library or its model file could not be loaded."""
