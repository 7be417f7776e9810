"""Exception hierarchy for the classification pipeline."""

from __future__ import annotations


class ClassifierError(Exception):
    """Base class for every error raised by the classification core."""


class ModelLoadError(ClassifierError):
    """Model bytes are malformed or could not be compiled for the accelerator."""


class LabelLoadError(ClassifierError):
    """The label source could not be read."""


class UninitializedError(ClassifierError):
    """An engine or buffer was used before creation or after release."""


class AcceleratorUnsupportedError(ClassifierError):
    """The requested accelerator cannot run this model."""


class InferenceError(ClassifierError):
    """The backend failed while executing a single inference call."""


class LabelCountMismatchError(ClassifierError):
    """Model output does not line up with the label list."""


class UnsupportedEncodingError(ClassifierError):
    """A tensor element encoding or normalization combination is not supported."""
