"""Image preprocessing: resize, channel extraction and normalization.

Every model input goes through the same path. The model descriptor selects
the element encoding and normalization policy; nothing here is duplicated
per model variant.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from liteclassify.ml.errors import UnsupportedEncodingError
from liteclassify.ml.tensor_buffer import ElementEncoding, TensorBuffer

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from liteclassify.ml.engine import ModelDescriptor

CHANNELS = 3

_SIGNED_SCALE = np.float32(127.5)
_UNSIGNED_SCALE = np.float32(255.0)


class NormalizationPolicy(StrEnum):
    IDENTITY_0_255 = "identity_0_255"
    SIGNED_NEG1_1 = "signed_neg1_1"
    UNSIGNED_0_1 = "unsigned_0_1"

    @classmethod
    def default_for(cls, encoding: ElementEncoding) -> NormalizationPolicy:
        """Quantized models take raw bytes, float models take [-1, 1]."""
        if encoding is ElementEncoding.UINT8:
            return cls.IDENTITY_0_255
        return cls.SIGNED_NEG1_1


def preprocess(
    image: Image.Image | NDArray[np.uint8],
    target_width: int,
    target_height: int,
    encoding: ElementEncoding | str,
    normalization: NormalizationPolicy | str,
) -> TensorBuffer:
    """Convert an image into a (1, H, W, 3) input buffer.

    Args:
        image: PIL image in any mode, or an HxWx3 / HxWx4 uint8 array.
        target_width: Model input width in pixels.
        target_height: Model input height in pixels.
        encoding: Element encoding of the returned buffer.
        normalization: How channel values 0..255 are mapped.

    Returns:
        A new TensorBuffer laid out as [height][width][channel], RGB order.

    Raises:
        UnsupportedEncodingError: If the encoding is unknown or cannot hold
            the normalized values.
        ValueError: If the target size or the image array is invalid.
    """
    encoding = ElementEncoding.parse(encoding)
    try:
        normalization = NormalizationPolicy(normalization)
    except ValueError:
        raise UnsupportedEncodingError(f"Unsupported normalization policy: {normalization!r}") from None
    if encoding is ElementEncoding.UINT8 and normalization is not NormalizationPolicy.IDENTITY_0_255:
        raise UnsupportedEncodingError(f"{normalization.value} produces floats and cannot be stored as uint8")
    if target_width <= 0 or target_height <= 0:
        raise ValueError(f"Target size must be positive, got {target_width}x{target_height}")

    resized = _to_rgb(image).resize((target_width, target_height), Image.Resampling.BILINEAR)
    pixels = np.asarray(resized, dtype=np.uint8)

    buffer = TensorBuffer((1, target_height, target_width, CHANNELS), encoding)
    if encoding is ElementEncoding.UINT8:
        buffer.write_bytes(pixels)
    else:
        buffer.write_floats(_normalize(pixels, normalization))
    return buffer


class Preprocessor:
    """Preprocessing bound to one model's input configuration."""

    def __init__(self, descriptor: ModelDescriptor) -> None:
        self._width = descriptor.width
        self._height = descriptor.height
        self._encoding = descriptor.input_encoding
        self._normalization = descriptor.normalization

    @property
    def normalization(self) -> NormalizationPolicy:
        return self._normalization

    def __call__(self, image: Image.Image | NDArray[np.uint8]) -> TensorBuffer:
        return preprocess(image, self._width, self._height, self._encoding, self._normalization)


def _to_rgb(image: Image.Image | NDArray[np.uint8]) -> Image.Image:
    if isinstance(image, Image.Image):
        # convert() always returns a new image, so the caller's image is untouched
        return image if image.mode == "RGB" else image.convert("RGB")

    array = np.asarray(image)
    if array.dtype != np.uint8 or array.ndim != 3 or array.shape[2] not in (3, 4):
        raise ValueError(f"Expected an HxWx3 or HxWx4 uint8 array, got {array.dtype} {array.shape}")
    return Image.fromarray(np.ascontiguousarray(array[:, :, :CHANNELS]))


def _normalize(pixels: NDArray[np.uint8], normalization: NormalizationPolicy) -> NDArray[np.float32]:
    values = pixels.astype(np.float32)
    if normalization is NormalizationPolicy.SIGNED_NEG1_1:
        return values / _SIGNED_SCALE - np.float32(1.0)
    if normalization is NormalizationPolicy.UNSIGNED_0_1:
        return values / _UNSIGNED_SCALE
    return values
