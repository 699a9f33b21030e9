"""Image preprocessing pipeline.

Handles decoding uploaded bytes, EXIF orientation, size validation and
conversion to the tensors the classification models expect.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, UnidentifiedImageError

from photoclassify.errors import InvalidImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

EXIF_ORIENTATION_TAG = 0x0112

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


class Orientation(IntEnum):
    """EXIF orientation values: how the stored pixels map to an upright image."""

    UP = 1
    UP_MIRRORED = 2
    DOWN = 3
    DOWN_MIRRORED = 4
    LEFT_MIRRORED = 5
    RIGHT = 6
    RIGHT_MIRRORED = 7
    LEFT = 8


_TRANSPOSE_FOR: dict[Orientation, Image.Transpose] = {
    Orientation.UP_MIRRORED: Image.Transpose.FLIP_LEFT_RIGHT,
    Orientation.DOWN: Image.Transpose.ROTATE_180,
    Orientation.DOWN_MIRRORED: Image.Transpose.FLIP_TOP_BOTTOM,
    Orientation.LEFT_MIRRORED: Image.Transpose.TRANSPOSE,
    Orientation.RIGHT: Image.Transpose.ROTATE_270,
    Orientation.RIGHT_MIRRORED: Image.Transpose.TRANSVERSE,
    Orientation.LEFT: Image.Transpose.ROTATE_90,
}


@dataclass(frozen=True)
class DecodedImage:
    """RGBA pixels as stored in the file, plus the orientation hint to make them upright."""

    pixels: NDArray[np.uint8]
    orientation: Orientation

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


def decode_image(image_bytes: bytes, max_pixels: int) -> DecodedImage:
    """Decode raw image bytes into an RGBA uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Upper bound on width * height.

    Returns:
        The decoded pixels (HxWx4) and their EXIF orientation.

    Raises:
        InvalidImageError: If the data is empty, cannot be decoded, has zero
            area or exceeds ``max_pixels``.
    """
    if not image_bytes:
        raise InvalidImageError("Image data is empty")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height == 0:
                raise InvalidImageError(f"Image has zero area ({width}x{height})")
            if width * height > max_pixels:
                raise InvalidImageError(f"Image is too large ({width}x{height} exceeds {max_pixels} pixels)")
            orientation = _read_orientation(img)
            pixels = np.array(img.convert("RGBA"), dtype=np.uint8)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise InvalidImageError(f"Unable to decode image: {exc}") from exc

    return DecodedImage(pixels=pixels, orientation=orientation)


def _read_orientation(img: Image.Image) -> Orientation:
    value = img.getexif().get(EXIF_ORIENTATION_TAG, Orientation.UP)
    try:
        return Orientation(value)
    except ValueError:
        return Orientation.UP


def apply_orientation(pixels: NDArray[np.uint8], orientation: Orientation) -> NDArray[np.uint8]:
    """Return an upright copy of ``pixels``. The input array is left untouched."""
    method = _TRANSPOSE_FOR.get(orientation)
    if method is None:
        return pixels.copy()
    return np.array(Image.fromarray(pixels).transpose(method), dtype=np.uint8)


def preprocess_for_classification(pixels: NDArray[np.uint8], input_size: int) -> NDArray[np.float32]:
    """Prepare an upright image for an ImageNet-style classifier.

    The image is center-cropped to a square, resized to ``input_size``,
    scaled to [0, 1] and normalized with the ImageNet mean/std.

    Args:
        pixels: HxWx3 or HxWx4 uint8 array (alpha is dropped).
        input_size: Square model input resolution.

    Returns:
        Float32 tensor of shape (1, 3, input_size, input_size).
    """
    img = Image.fromarray(pixels).convert("RGB")
    width, height = img.size
    side = min(width, height)
    left = (width - side) // 2
    top = (height - side) // 2
    img = img.crop((left, top, left + side, top + side))
    img = img.resize((input_size, input_size), Image.Resampling.BILINEAR)

    arr = np.asarray(img, dtype=np.float32) / 255.0
    arr = (arr - IMAGENET_MEAN) / IMAGENET_STD
    return np.ascontiguousarray(arr.transpose(2, 0, 1)[np.newaxis], dtype=np.float32)
