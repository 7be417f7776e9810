"""Fixed-shape numeric buffers used for model input and output."""

from __future__ import annotations

from enum import StrEnum
from math import prod
from typing import TYPE_CHECKING

import numpy as np

from liteclassify.ml.errors import UninitializedError, UnsupportedEncodingError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray


class ElementEncoding(StrEnum):
    UINT8 = "uint8"
    FLOAT32 = "float32"

    @property
    def dtype(self) -> type[np.generic]:
        return np.uint8 if self is ElementEncoding.UINT8 else np.float32

    @classmethod
    def parse(cls, value: object) -> ElementEncoding:
        """Coerce a string or enum member, raising UnsupportedEncodingError otherwise."""
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedEncodingError(f"Unsupported element encoding: {value!r}") from None

    @classmethod
    def from_onnx_type(cls, onnx_type: str) -> ElementEncoding:
        """Map an onnxruntime type string such as 'tensor(uint8)'."""
        mapping = {"tensor(uint8)": cls.UINT8, "tensor(float)": cls.FLOAT32}
        try:
            return mapping[onnx_type]
        except KeyError:
            raise UnsupportedEncodingError(f"Unsupported tensor type: {onnx_type}") from None

    @classmethod
    def from_dtype(cls, dtype: np.dtype) -> ElementEncoding:
        if dtype == np.uint8:
            return cls.UINT8
        if dtype == np.float32:
            return cls.FLOAT32
        raise UnsupportedEncodingError(f"Unsupported tensor dtype: {dtype}")


class TensorBuffer:
    """A contiguous buffer with a fixed shape and element encoding.

    Elements are written and read as a flat sequence in row-major order.
    The buffer never changes size after creation.
    """

    def __init__(self, shape: Sequence[int], encoding: ElementEncoding) -> None:
        if not shape or any(dim <= 0 for dim in shape):
            raise ValueError(f"Invalid tensor shape: {tuple(shape)}")
        self._shape = tuple(int(dim) for dim in shape)
        self._encoding = ElementEncoding.parse(encoding)
        self._data: NDArray[np.generic] | None = np.zeros(prod(self._shape), dtype=self._encoding.dtype)

    @classmethod
    def from_array(cls, array: NDArray[np.generic]) -> TensorBuffer:
        """Wrap a copy of a uint8 or float32 array, keeping its shape."""
        buffer = cls(array.shape, ElementEncoding.from_dtype(array.dtype))
        buffer._storage()[:] = np.ravel(array)
        return buffer

    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    @property
    def encoding(self) -> ElementEncoding:
        return self._encoding

    @property
    def size(self) -> int:
        """Number of elements."""
        return prod(self._shape)

    @property
    def released(self) -> bool:
        return self._data is None

    def write_bytes(self, values: ArrayLike) -> None:
        """Write uint8 values; the buffer must be UINT8 encoded."""
        self._require(ElementEncoding.UINT8)
        array = np.asarray(values)
        if array.dtype != np.uint8:
            if not np.issubdtype(array.dtype, np.integer):
                if not np.issubdtype(array.dtype, np.floating) or not np.all(np.isfinite(array)):
                    raise ValueError("Byte values must be finite integers")
                if np.any(array != np.floor(array)):
                    raise ValueError("Byte values must be whole numbers")
            if np.any((array < 0) | (array > 255)):
                raise ValueError("Byte values must be in the range 0..255")
            array = array.astype(np.uint8)
        self._write(array)

    def write_floats(self, values: ArrayLike) -> None:
        """Write float values; the buffer must be FLOAT32 encoded."""
        self._require(ElementEncoding.FLOAT32)
        self._write(np.asarray(values, dtype=np.float32))

    def read_bytes(self) -> NDArray[np.uint8]:
        """Return a flat copy of the uint8 contents."""
        self._require(ElementEncoding.UINT8)
        return self._storage().copy()

    def read_floats(self) -> NDArray[np.float32]:
        """Return a flat copy of the float32 contents."""
        self._require(ElementEncoding.FLOAT32)
        return self._storage().copy()

    def as_array(self) -> NDArray[np.generic]:
        """Return a view of the contents shaped to the buffer's shape."""
        return self._storage().reshape(self._shape)

    def release(self) -> None:
        """Drop the backing storage. Safe to call more than once."""
        self._data = None

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"TensorBuffer(shape={self._shape}, encoding={self._encoding.value}, {state})"

    # -- Internal -----------------------------------------------------------

    def _storage(self) -> NDArray[np.generic]:
        if self._data is None:
            raise UninitializedError("TensorBuffer has been released")
        return self._data

    def _require(self, encoding: ElementEncoding) -> None:
        if self._encoding is not encoding:
            raise UnsupportedEncodingError(
                f"Cannot access {self._encoding.value} buffer as {encoding.value}"
            )

    def _write(self, array: NDArray[np.generic]) -> None:
        storage = self._storage()
        flat = np.ravel(array)
        if flat.size != storage.size:
            raise ValueError(f"Expected {storage.size} elements, got {flat.size}")
        storage[:] = flat
