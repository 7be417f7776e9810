"""Top-K extraction from raw model output."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from liteclassify.ml.errors import ClassifierError, LabelCountMismatchError
from liteclassify.ml.tensor_buffer import ElementEncoding, TensorBuffer

if TYPE_CHECKING:
    from collections.abc import Sequence

    from liteclassify.ml.accelerator import Accelerator

_UINT8_SCALE = 255.0


@dataclass(frozen=True)
class Prediction:
    """A single ranked classification candidate."""

    index: int
    label: str
    score: float

    def format(self) -> str:
        return f"{self.label} ({self.score * 100:.2f}%)"


@dataclass(frozen=True)
class ClassificationResult:
    """Ranked predictions for one image, highest score first."""

    predictions: tuple[Prediction, ...]
    accelerator: Accelerator
    inference_ms: float

    @property
    def top(self) -> Prediction:
        return self.predictions[0]

    def format(self) -> str:
        """Render the result as display text."""
        if len(self.predictions) == 1:
            return self.top.format()
        lines = [f"Top {len(self.predictions)}:"]
        lines.extend(prediction.format() for prediction in self.predictions)
        lines.append(f"Inference time: {round(self.inference_ms)} ms")
        return "\n".join(lines)


@dataclass(frozen=True)
class ClassificationOutcome:
    """Either a result or the error that prevented one."""

    result: ClassificationResult | None = None
    error: ClassifierError | None = None

    def __post_init__(self) -> None:
        if (self.result is None) == (self.error is None):
            raise ValueError("Exactly one of result or error must be set")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> ClassificationResult:
        """Return the result or raise the carried error."""
        if self.result is None:
            raise self.error if self.error is not None else ValueError("Outcome carries no result")
        return self.result


def dequantize(output: TensorBuffer) -> list[float]:
    """Return output scores as floats; uint8 values are scaled by 1/255."""
    if output.encoding is ElementEncoding.UINT8:
        return [int(value) / _UINT8_SCALE for value in output.read_bytes()]
    return [float(value) for value in output.read_floats()]


def extract_top_k(output: TensorBuffer, labels: Sequence[str], k: int) -> list[Prediction]:
    """Select the k highest-scoring labels.

    Output indices are visited in ascending order. A candidate enters the
    window at the first rank whose score it strictly exceeds, so on equal
    scores the lower index keeps the higher rank.

    Raises:
        ValueError: If k is smaller than 1.
        LabelCountMismatchError: If the output length differs from the label
            count or a selected index has no label.
    """
    if k < 1:
        raise ValueError(f"k must be at least 1, got {k}")

    scores = dequantize(output)
    if len(scores) != len(labels):
        raise LabelCountMismatchError(f"Model produced {len(scores)} scores but {len(labels)} labels are loaded")

    window: list[tuple[int, float]] = []
    for index, score in enumerate(scores):
        for rank, (_, ranked_score) in enumerate(window):
            if score > ranked_score:
                window.insert(rank, (index, score))
                del window[k:]
                break
        else:
            if len(window) < k:
                window.append((index, score))

    predictions = []
    for index, score in window:
        if not 0 <= index < len(labels):
            raise LabelCountMismatchError(f"Output index {index} has no label ({len(labels)} labels)")
        predictions.append(Prediction(index=index, label=labels[index], score=score))
    return predictions
