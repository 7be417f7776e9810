"""Inference engine: one compiled ONNX session bound to one accelerator."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from onnxruntime import InferenceSession, SessionOptions, get_available_providers
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from liteclassify.ml.accelerator import Accelerator, build_providers, provider_name
from liteclassify.ml.errors import (
    InferenceError,
    ModelLoadError,
    UninitializedError,
    UnsupportedEncodingError,
)
from liteclassify.ml.preprocessing import CHANNELS, NormalizationPolicy
from liteclassify.ml.tensor_buffer import ElementEncoding, TensorBuffer

if TYPE_CHECKING:
    from liteclassify.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelDescriptor:
    """Input and output layout of a compiled model."""

    input_name: str
    output_name: str
    height: int
    width: int
    channels_first: bool
    input_encoding: ElementEncoding
    output_encoding: ElementEncoding
    output_length: int | None
    normalization: NormalizationPolicy

    @property
    def input_shape(self) -> tuple[int, int, int, int]:
        """Shape of the preprocessed input buffer (always NHWC)."""
        return (1, self.height, self.width, CHANNELS)

    @property
    def input_size(self) -> int:
        return self.height * self.width * CHANNELS

    @classmethod
    def from_session(cls, session: InferenceSession, settings: Settings) -> ModelDescriptor:
        """Read the descriptor from session metadata.

        Raises:
            ModelLoadError: If the model is not a single-image RGB classifier
                or its spatial size cannot be resolved.
        """
        model_input = session.get_inputs()[0]
        model_output = session.get_outputs()[0]

        shape = list(model_input.shape)
        if len(shape) != 4:
            raise ModelLoadError(f"Expected a 4D image input, got shape {shape}")
        if shape[3] == CHANNELS:
            channels_first = False
            height_dim, width_dim = shape[1], shape[2]
        elif shape[1] == CHANNELS:
            channels_first = True
            height_dim, width_dim = shape[2], shape[3]
        else:
            raise ModelLoadError(f"Input shape {shape} has no 3-channel axis")

        try:
            input_encoding = ElementEncoding.from_onnx_type(model_input.type)
            output_encoding = ElementEncoding.from_onnx_type(model_output.type)
        except UnsupportedEncodingError as exc:
            raise ModelLoadError(str(exc)) from exc

        if settings.normalization is not None:
            normalization = NormalizationPolicy(settings.normalization)
        else:
            normalization = NormalizationPolicy.default_for(input_encoding)
        if input_encoding is ElementEncoding.UINT8 and normalization is not NormalizationPolicy.IDENTITY_0_255:
            raise ModelLoadError(f"uint8 model input cannot use {normalization.value} normalization")

        output_dim = model_output.shape[-1] if model_output.shape else None
        return cls(
            input_name=model_input.name,
            output_name=model_output.name,
            height=_resolve_dim("height", height_dim, settings.input_height),
            width=_resolve_dim("width", width_dim, settings.input_width),
            channels_first=channels_first,
            input_encoding=input_encoding,
            output_encoding=output_encoding,
            output_length=output_dim if isinstance(output_dim, int) and output_dim > 0 else None,
            normalization=normalization,
        )


def _resolve_dim(name: str, declared: object, configured: int | None) -> int:
    if isinstance(declared, int) and declared > 0:
        if configured is not None and configured != declared:
            raise ModelLoadError(f"Configured input {name} {configured} does not match model {name} {declared}")
        return declared
    if configured is None:
        raise ModelLoadError(f"Model input {name} is dynamic; set LITECLASSIFY_INPUT_{name.upper()}")
    return configured


class InferenceEngine:
    """Owns one onnxruntime session compiled for a single accelerator.

    ``run`` and ``close`` are serialized by an internal lock, so a close
    request waits for an in-flight run to finish.
    """

    def __init__(self, session: InferenceSession, descriptor: ModelDescriptor, accelerator: Accelerator) -> None:
        self._session: InferenceSession | None = session
        self._descriptor = descriptor
        self._accelerator = accelerator
        self._lock = threading.Lock()

    @classmethod
    def create(cls, model_bytes: bytes, accelerator: Accelerator, settings: Settings) -> InferenceEngine:
        """Compile a model for the given accelerator.

        Raises:
            ModelLoadError: If the provider is unavailable, the bytes are not a
                valid model, or the session could not be placed on the provider.
        """
        expected = provider_name(accelerator, settings)
        if expected not in get_available_providers():
            raise ModelLoadError(f"{expected} is not available in this onnxruntime build")

        start = time.perf_counter()
        try:
            session = InferenceSession(
                model_bytes,
                sess_options=_build_session_options(settings),
                providers=build_providers(accelerator, settings),
            )
        except Exception as exc:  # noqa: BLE001
            raise ModelLoadError(f"Failed to compile model for {accelerator.value}: {exc}") from exc

        active = session.get_providers()
        if not active or active[0] != expected:
            raise ModelLoadError(f"Session was placed on {active} instead of {expected}")

        descriptor = ModelDescriptor.from_session(session, settings)
        logger.info(
            "Compiled model for %s in %.1f ms (input %dx%d %s, normalization=%s)",
            accelerator.value,
            (time.perf_counter() - start) * 1000,
            descriptor.width,
            descriptor.height,
            descriptor.input_encoding.value,
            descriptor.normalization.value,
        )
        return cls(session, descriptor, accelerator)

    @property
    def accelerator(self) -> Accelerator:
        return self._accelerator

    @property
    def descriptor(self) -> ModelDescriptor:
        return self._descriptor

    @property
    def closed(self) -> bool:
        return self._session is None

    def run(self, input_buffer: TensorBuffer) -> TensorBuffer:
        """Run one synchronous inference.

        Raises:
            UninitializedError: If the engine has been closed.
            InferenceError: If the input does not match the model or the
                backend fails.
        """
        with self._lock:
            if self._session is None:
                raise UninitializedError("Inference engine has been closed")

            descriptor = self._descriptor
            if input_buffer.encoding is not descriptor.input_encoding:
                raise InferenceError(
                    f"Model expects {descriptor.input_encoding.value} input, got {input_buffer.encoding.value}"
                )
            if input_buffer.size != descriptor.input_size:
                raise InferenceError(f"Model expects {descriptor.input_size} input elements, got {input_buffer.size}")

            feed = input_buffer.as_array().reshape(descriptor.input_shape)
            if descriptor.channels_first:
                feed = np.ascontiguousarray(feed.transpose(0, 3, 1, 2))

            try:
                outputs = self._session.run([descriptor.output_name], {descriptor.input_name: feed})
            except Exception as exc:  # noqa: BLE001
                raise InferenceError(f"Inference failed on {self._accelerator.value}: {exc}") from exc

        raw = np.asarray(outputs[0])
        if raw.size == 0:
            raise InferenceError("Model produced an empty output")
        try:
            return TensorBuffer.from_array(raw.reshape(1, -1))
        except UnsupportedEncodingError as exc:
            raise InferenceError(str(exc)) from exc

    def close(self) -> None:
        """Release the session. Calling it again has no effect."""
        with self._lock:
            if self._session is None:
                return
            self._session = None
        logger.info("Closed %s inference engine", self._accelerator.value)


def _build_session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True
    return opts
