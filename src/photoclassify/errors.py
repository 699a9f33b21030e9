"""Exception types raised by the PhotoClassify core."""

from __future__ import annotations


class PhotoClassifyError(Exception):
    """Base class for all PhotoClassify errors."""


class InvalidImageError(PhotoClassifyError):
    """The image could not be decoded, or has zero area."""


class ComputeError(PhotoClassifyError):
    """A pixel reduction could not be performed (e.g. unsupported pixel format)."""


class InferenceError(PhotoClassifyError):
    """The classification model failed to produce results."""
