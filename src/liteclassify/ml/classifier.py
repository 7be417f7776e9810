"""Classification orchestrator.

Pipeline:
    image -> Preprocessor -> InferenceEngine.run -> extract_top_k -> on_result

The classifier owns the live engine and replaces it when the accelerator
changes. One lock per instance serializes classification, accelerator
switches and close, so an engine is never closed while it is running.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

from liteclassify.ml.accelerator import Accelerator
from liteclassify.ml.engine import InferenceEngine
from liteclassify.ml.errors import (
    AcceleratorUnsupportedError,
    ClassifierError,
    ModelLoadError,
    UninitializedError,
)
from liteclassify.ml.postprocessing import ClassificationOutcome, ClassificationResult, extract_top_k
from liteclassify.ml.preprocessing import Preprocessor
from liteclassify.ml.probe import AcceleratorProbe

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import TracebackType

    import numpy as np
    from numpy.typing import NDArray
    from PIL import Image

    from liteclassify.config import Settings
    from liteclassify.ml.engine import ModelDescriptor
    from liteclassify.ml.tensor_buffer import TensorBuffer

    EngineFactory = Callable[[bytes, Accelerator, Settings], InferenceEngine]

logger = logging.getLogger(__name__)


class Classifier:
    """Long-lived image classifier with a switchable accelerator.

    Starts on CPU. Construction compiles the CPU engine and raises
    ModelLoadError if that fails. The label list is not checked against the
    model until classification.
    """

    def __init__(
        self,
        model_bytes: bytes,
        labels: Sequence[str],
        settings: Settings,
        *,
        probe: AcceleratorProbe | None = None,
        engine_factory: EngineFactory | None = None,
    ) -> None:
        self._model_bytes = model_bytes
        self._labels = tuple(labels)
        self._settings = settings
        self._engine_factory = engine_factory or InferenceEngine.create
        self._probe = probe if probe is not None else AcceleratorProbe(settings, self._engine_factory)
        self._lock = threading.Lock()

        self._engine: InferenceEngine | None = None
        self._accelerator = Accelerator.CPU
        self._install(Accelerator.CPU)

        output_length = self.descriptor.output_length
        if output_length is not None and output_length != len(self._labels):
            logger.warning(
                "Model declares %d outputs but %d labels were loaded; classification will fail",
                output_length,
                len(self._labels),
            )

    # -- Public API ---------------------------------------------------------

    @property
    def accelerator(self) -> Accelerator:
        return self._accelerator

    @property
    def engine(self) -> InferenceEngine | None:
        return self._engine

    @property
    def labels(self) -> tuple[str, ...]:
        return self._labels

    @property
    def descriptor(self) -> ModelDescriptor:
        engine = self._engine
        if engine is None:
            raise UninitializedError("No inference engine is loaded")
        return engine.descriptor

    def classify(
        self,
        image: Image.Image | NDArray[np.uint8],
        on_result: Callable[[ClassificationOutcome], None],
        top_k: int | None = None,
    ) -> None:
        """Classify an image and deliver the outcome through ``on_result``.

        Runs on the calling thread. Classifier errors are delivered as a
        failed outcome rather than raised. Caller errors are raised before
        any outcome is delivered.

        Raises:
            ValueError: If ``image`` is not a PIL image or an HxWx3/HxWx4
                uint8 array, or ``top_k`` is below 1.
        """
        try:
            result = self.classify_sync(image, top_k)
        except ClassifierError as exc:
            logger.warning("Classification failed: %s", exc)
            on_result(ClassificationOutcome(error=exc))
            return
        on_result(ClassificationOutcome(result=result))

    def classify_sync(self, image: Image.Image | NDArray[np.uint8], top_k: int | None = None) -> ClassificationResult:
        """Classify an image and return the ranked result.

        Raises:
            UninitializedError: If no engine is loaded.
            InferenceError: If the backend fails.
            LabelCountMismatchError: If model output and labels disagree.
        """
        k = self._settings.top_k if top_k is None else top_k
        with self._lock:
            engine = self._engine
            if engine is None:
                raise UninitializedError("No inference engine is loaded")

            input_buffer = self._preprocessor(image)
            output_buffer: TensorBuffer | None = None
            try:
                start = time.perf_counter()
                output_buffer = engine.run(input_buffer)
                inference_ms = (time.perf_counter() - start) * 1000
                predictions = extract_top_k(output_buffer, self._labels, k)
            finally:
                input_buffer.release()
                if output_buffer is not None:
                    output_buffer.release()

        logger.debug("Classified on %s in %.1f ms", engine.accelerator.value, inference_ms)
        return ClassificationResult(
            predictions=tuple(predictions),
            accelerator=engine.accelerator,
            inference_ms=inference_ms,
        )

    def switch_accelerator(self, target: Accelerator | str) -> Accelerator:
        """Move inference to another accelerator and return the active one.

        Waits for any in-flight classification. Requesting the active
        accelerator leaves the engine untouched.

        Raises:
            AcceleratorUnsupportedError: If the GPU cannot run the model. The
                classifier stays on (or falls back to) CPU.
            ModelLoadError: If not even a CPU engine can be built.
        """
        target = Accelerator(target)
        with self._lock:
            if target is self._accelerator and self._engine is not None:
                logger.debug("Accelerator already %s; keeping current engine", target.value)
                return target

            if target is Accelerator.GPU and not self._probe.supports(self._model_bytes, Accelerator.GPU):
                raise AcceleratorUnsupportedError(
                    f"GPU cannot run this model; staying on {self._accelerator.value}"
                )

            previous = self._accelerator
            self._close_engine()
            try:
                self._install(target)
            except ModelLoadError as exc:
                if target is Accelerator.CPU:
                    logger.error("Failed to rebuild CPU engine: %s", exc)
                    raise
                logger.warning("GPU engine failed after a successful probe, falling back to CPU: %s", exc)
                self._install(Accelerator.CPU)
                raise AcceleratorUnsupportedError(f"GPU engine could not be created: {exc}") from exc

            logger.info("Accelerator switched from %s to %s", previous.value, target.value)
            return target

    def close(self) -> None:
        """Release the engine. Later classifications report UninitializedError."""
        with self._lock:
            self._close_engine()

    def __enter__(self) -> Classifier:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -- Internal -----------------------------------------------------------

    def _install(self, accelerator: Accelerator) -> None:
        # Caller holds the lock. Without a live engine the state reads CPU.
        self._accelerator = Accelerator.CPU
        engine = self._engine_factory(self._model_bytes, accelerator, self._settings)
        self._engine = engine
        self._accelerator = accelerator
        self._preprocessor = Preprocessor(engine.descriptor)

    def _close_engine(self) -> None:
        engine = self._engine
        self._engine = None
        if engine is not None:
            engine.close()
