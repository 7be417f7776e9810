"""Accelerator feasibility checks by trial compilation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from liteclassify.ml.engine import InferenceEngine
from liteclassify.ml.errors import ModelLoadError

if TYPE_CHECKING:
    from collections.abc import Callable

    from liteclassify.config import Settings
    from liteclassify.ml.accelerator import Accelerator

logger = logging.getLogger(__name__)


class AcceleratorProbe:
    """Checks whether a model compiles for an accelerator without keeping it.

    A probe is a full model compile. Call it when the accelerator is about to
    change, never per inference.
    """

    def __init__(
        self,
        settings: Settings,
        engine_factory: Callable[[bytes, Accelerator, Settings], InferenceEngine] | None = None,
    ) -> None:
        self._settings = settings
        self._engine_factory = engine_factory or InferenceEngine.create

    def supports(self, model_bytes: bytes, accelerator: Accelerator) -> bool:
        """Return True if the model compiles for the accelerator."""
        try:
            engine = self._engine_factory(model_bytes, accelerator, self._settings)
        except ModelLoadError as exc:
            logger.warning("Accelerator %s unavailable for this model: %s", accelerator.value, exc)
            return False
        engine.close()
        logger.info("Accelerator %s probe succeeded", accelerator.value)
        return True
