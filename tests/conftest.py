"""Shared fixtures: settings and in-memory stand-ins for compiled engines."""

from __future__ import annotations

import threading
from collections.abc import Callable, Collection
from dataclasses import replace
from pathlib import Path

import numpy as np
import pytest

from liteclassify.config import Settings
from liteclassify.ml.accelerator import Accelerator
from liteclassify.ml.engine import ModelDescriptor
from liteclassify.ml.errors import ModelLoadError, UninitializedError
from liteclassify.ml.preprocessing import NormalizationPolicy
from liteclassify.ml.tensor_buffer import ElementEncoding, TensorBuffer

LABELS = ["cat", "dog", "bird", "fish"]


def make_descriptor(**overrides: object) -> ModelDescriptor:
    descriptor = ModelDescriptor(
        input_name="input",
        output_name="output",
        height=4,
        width=4,
        channels_first=False,
        input_encoding=ElementEncoding.UINT8,
        output_encoding=ElementEncoding.UINT8,
        output_length=4,
        normalization=NormalizationPolicy.IDENTITY_0_255,
    )
    return replace(descriptor, **overrides)  # type: ignore[arg-type]


class FakeEngine:
    """Stands in for InferenceEngine; returns a fixed output."""

    def __init__(self, accelerator: Accelerator, descriptor: ModelDescriptor, output: np.ndarray) -> None:
        self.accelerator = accelerator
        self.descriptor = descriptor
        self.closed = False
        self.inputs: list[TensorBuffer] = []
        self.gate: tuple[threading.Event, threading.Event] | None = None
        self._output = output

    def run(self, input_buffer: TensorBuffer) -> TensorBuffer:
        if self.closed:
            raise UninitializedError("closed")
        self.inputs.append(input_buffer)
        if self.gate is not None:
            started, release = self.gate
            started.set()
            release.wait(timeout=5)
        return TensorBuffer.from_array(self._output)

    def close(self) -> None:
        self.closed = True


class FakeEngineFactory:
    """Engine factory that records every engine it builds."""

    def __init__(
        self,
        output: np.ndarray,
        descriptor: ModelDescriptor | None = None,
        failing: Collection[Accelerator] = (),
    ) -> None:
        self.output = output
        self.descriptor = descriptor or make_descriptor(output_length=output.size)
        self.failing = set(failing)
        self.created: list[FakeEngine] = []

    def __call__(self, model_bytes: bytes, accelerator: Accelerator, settings: Settings) -> FakeEngine:
        if accelerator in self.failing:
            raise ModelLoadError(f"cannot compile for {accelerator.value}")
        engine = FakeEngine(accelerator, self.descriptor, self.output)
        self.created.append(engine)
        return engine


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(models_dir=tmp_path / "models", top_k=3)


@pytest.fixture()
def make_engine_factory() -> Callable[..., FakeEngineFactory]:
    return FakeEngineFactory


@pytest.fixture()
def engine_factory() -> FakeEngineFactory:
    return FakeEngineFactory(np.array([[10, 200, 50, 5]], dtype=np.uint8))


@pytest.fixture()
def labels() -> list[str]:
    return list(LABELS)


@pytest.fixture()
def rgb_image() -> np.ndarray:
    rng = np.random.default_rng(seed=7)
    return rng.integers(0, 256, size=(12, 16, 3), dtype=np.uint8)
