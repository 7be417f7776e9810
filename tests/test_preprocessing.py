"""Tests for image preprocessing."""

from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from liteclassify.ml.engine import ModelDescriptor
from liteclassify.ml.errors import UnsupportedEncodingError
from liteclassify.ml.preprocessing import NormalizationPolicy, Preprocessor, preprocess
from liteclassify.ml.tensor_buffer import ElementEncoding


def _solid(color: tuple[int, ...], size: tuple[int, int] = (10, 6), mode: str = "RGB") -> Image.Image:
    return Image.new(mode, size, color)


class TestPreprocess:
    def test_uint8_identity_keeps_channel_values(self) -> None:
        buffer = preprocess(_solid((10, 20, 30)), 4, 3, ElementEncoding.UINT8, NormalizationPolicy.IDENTITY_0_255)
        assert buffer.shape == (1, 3, 4, 3)
        assert buffer.encoding is ElementEncoding.UINT8
        assert buffer.read_bytes().tolist() == [10, 20, 30] * 12

    def test_signed_normalization_endpoints(self) -> None:
        white = preprocess(_solid((255, 255, 255)), 2, 2, "float32", "signed_neg1_1").read_floats()
        black = preprocess(_solid((0, 0, 0)), 2, 2, "float32", "signed_neg1_1").read_floats()
        np.testing.assert_allclose(white, 1.0, atol=1e-6)
        np.testing.assert_allclose(black, -1.0, atol=1e-6)

    def test_unsigned_normalization(self) -> None:
        values = preprocess(_solid((255, 0, 51)), 2, 2, "float32", "unsigned_0_1").read_floats()
        np.testing.assert_allclose(values[:3], [1.0, 0.0, 0.2], atol=1e-6)

    def test_float_identity_keeps_raw_range(self) -> None:
        values = preprocess(_solid((255, 128, 0)), 1, 1, "float32", "identity_0_255").read_floats()
        assert values.tolist() == [255.0, 128.0, 0.0]

    def test_layout_is_row_major_rgb(self) -> None:
        pixels = np.zeros((2, 2, 3), dtype=np.uint8)
        pixels[0, 1] = (1, 2, 3)
        pixels[1, 0] = (4, 5, 6)
        data = preprocess(pixels, 2, 2, "uint8", "identity_0_255").read_bytes()
        assert data.tolist() == [0, 0, 0, 1, 2, 3, 4, 5, 6, 0, 0, 0]

    def test_alpha_is_discarded(self) -> None:
        rgba = np.full((3, 3, 4), 200, dtype=np.uint8)
        rgba[..., 3] = 7
        buffer = preprocess(rgba, 3, 3, "uint8", "identity_0_255")
        assert buffer.size == 27
        assert set(buffer.read_bytes().tolist()) == {200}

    def test_rgba_image_converted(self) -> None:
        buffer = preprocess(_solid((9, 8, 7, 0), mode="RGBA"), 2, 2, "uint8", "identity_0_255")
        assert buffer.read_bytes().tolist()[:3] == [9, 8, 7]

    def test_resizes_to_target(self) -> None:
        buffer = preprocess(_solid((1, 2, 3), size=(640, 480)), 224, 160, "uint8", "identity_0_255")
        assert buffer.shape == (1, 160, 224, 3)

    def test_source_image_not_mutated(self) -> None:
        image = _solid((50, 60, 70), mode="RGBA")
        before = image.tobytes()
        preprocess(image, 2, 2, "float32", "signed_neg1_1")
        assert image.mode == "RGBA"
        assert image.tobytes() == before

    def test_unknown_encoding_rejected(self) -> None:
        with pytest.raises(UnsupportedEncodingError):
            preprocess(_solid((0, 0, 0)), 2, 2, "int16", "identity_0_255")

    def test_float_policy_with_uint8_rejected(self) -> None:
        with pytest.raises(UnsupportedEncodingError):
            preprocess(_solid((0, 0, 0)), 2, 2, "uint8", "signed_neg1_1")

    def test_unknown_policy_rejected(self) -> None:
        with pytest.raises(UnsupportedEncodingError):
            preprocess(_solid((0, 0, 0)), 2, 2, "float32", "zscore")

    def test_non_positive_target_rejected(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            preprocess(_solid((0, 0, 0)), 0, 2, "uint8", "identity_0_255")

    def test_bad_array_rejected(self) -> None:
        with pytest.raises(ValueError, match="uint8 array"):
            preprocess(np.zeros((4, 4), dtype=np.uint8), 2, 2, "uint8", "identity_0_255")


class TestPreprocessor:
    def test_uses_descriptor_configuration(self) -> None:
        descriptor = ModelDescriptor(
            input_name="input",
            output_name="output",
            height=3,
            width=5,
            channels_first=False,
            input_encoding=ElementEncoding.FLOAT32,
            output_encoding=ElementEncoding.FLOAT32,
            output_length=10,
            normalization=NormalizationPolicy.UNSIGNED_0_1,
        )
        preprocessor = Preprocessor(descriptor)
        buffer = preprocessor(_solid((255, 255, 255)))
        assert buffer.shape == (1, 3, 5, 3)
        assert preprocessor.normalization is NormalizationPolicy.UNSIGNED_0_1
        np.testing.assert_allclose(buffer.read_floats(), 1.0)

    def test_default_policy_per_encoding(self) -> None:
        assert NormalizationPolicy.default_for(ElementEncoding.UINT8) is NormalizationPolicy.IDENTITY_0_255
        assert NormalizationPolicy.default_for(ElementEncoding.FLOAT32) is NormalizationPolicy.SIGNED_NEG1_1
