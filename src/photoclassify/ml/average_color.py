"""Average-color extraction.

Reduces an RGBA image to a single pixel by averaging every channel, alpha
included. Channel means are rounded half up on the byte scale using exact
integer arithmetic, so ``(0 + 255) / 2`` becomes 128.

The resulting :class:`Color` keeps the byte values; normalized fractions are
available through :attr:`Color.components` and are always ``byte / 255``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from photoclassify.errors import ComputeError, InvalidImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

_CHANNELS = 4


@dataclass(frozen=True)
class Color:
    """An RGBA color with byte channels in [0, 255]."""

    red: int
    green: int
    blue: int
    alpha: int

    @property
    def rgba(self) -> tuple[int, int, int, int]:
        """Channel bytes as a tuple."""
        return (self.red, self.green, self.blue, self.alpha)

    @property
    def components(self) -> tuple[float, float, float, float]:
        """Channels normalized to [0.0, 1.0]."""
        return (self.red / 255, self.green / 255, self.blue / 255, self.alpha / 255)

    @property
    def hex(self) -> str:
        return f"#{self.red:02X}{self.green:02X}{self.blue:02X}"


def area_average(pixels: NDArray[np.uint8]) -> Color:
    """Return the per-channel mean color of an image.

    Args:
        pixels: HxWx4 RGBA uint8 array. Never modified.

    Returns:
        The average color, each channel rounded half up.

    Raises:
        InvalidImageError: If the input is not an array or has zero area.
        ComputeError: If the pixel format is not 8-bit RGBA.
    """
    if not isinstance(pixels, np.ndarray):
        raise InvalidImageError(f"Expected a pixel array, got {type(pixels).__name__}")
    if pixels.ndim != 3 or pixels.shape[2] != _CHANNELS:
        raise ComputeError(f"Unsupported pixel layout {pixels.shape}; expected HxWx{_CHANNELS}")
    if pixels.dtype != np.uint8:
        raise ComputeError(f"Unsupported pixel type {pixels.dtype}; expected uint8")

    height, width = pixels.shape[:2]
    count = height * width
    if count == 0:
        raise InvalidImageError(f"Image has zero area ({width}x{height})")

    totals = pixels.sum(axis=(0, 1), dtype=np.uint64)
    red, green, blue, alpha = ((2 * int(total) + count) // (2 * count) for total in totals)
    return Color(red=red, green=green, blue=blue, alpha=alpha)
