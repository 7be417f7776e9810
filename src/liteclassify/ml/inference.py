"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> Classifier

The classifier runs synchronously and reports through a callback; this layer
moves that work off the event loop and turns the callback into an awaitable.
Requests beyond the semaphore limit queue with a 5s timeout, then get 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray
    from PIL import Image

    from liteclassify.config import Settings
    from liteclassify.ml.classifier import Classifier
    from liteclassify.ml.postprocessing import ClassificationOutcome, ClassificationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Manages the semaphore and thread pool that run classifier work."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="classifier",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the worker pool.

        Raises:
            TimeoutError: If no slot frees up within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=SEMAPHORE_TIMEOUT_SECONDS)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    async def classify(
        self,
        classifier: Classifier,
        image: Image.Image | NDArray[np.uint8],
        top_k: int | None = None,
    ) -> ClassificationResult:
        """Classify on a worker thread and await the callback's outcome.

        Raises:
            ClassifierError: Whatever error the classifier delivered.
            TimeoutError: If no worker slot frees up within the timeout.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[ClassificationOutcome] = loop.create_future()

        def deliver(outcome: ClassificationOutcome) -> None:
            loop.call_soon_threadsafe(_resolve, future, outcome)

        await self.run(classifier.classify, image, deliver, top_k)
        outcome = await future
        return outcome.unwrap()

    @property
    def active_count(self) -> int:
        """Number of currently running tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)


def _resolve(future: asyncio.Future[ClassificationOutcome], outcome: ClassificationOutcome) -> None:
    if not future.done():
        future.set_result(outcome)
