"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from liteclassify.api.routes import router
from liteclassify.config import Settings, get_settings
from liteclassify.ml.accelerator import Accelerator
from liteclassify.ml.classifier import Classifier
from liteclassify.ml.errors import AcceleratorUnsupportedError
from liteclassify.ml.inference import InferencePool
from liteclassify.ml.model_store import ModelStore

logger = logging.getLogger(__name__)


def build_classifier(settings: Settings) -> Classifier:
    """Load the model and labels, then bring the classifier to the preferred accelerator."""
    store = ModelStore(settings)
    classifier = Classifier(store.read_model_bytes(), store.load_labels(), settings)

    preferred = Accelerator(settings.accelerator)
    if preferred is not classifier.accelerator:
        try:
            classifier.switch_accelerator(preferred)
        except AcceleratorUnsupportedError as exc:
            logger.warning("Preferred accelerator %s unavailable, running on CPU: %s", preferred.value, exc)
    return classifier


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting LiteClassify (accelerator=%s, top_k=%s, max_concurrent=%s)",
        settings.accelerator,
        settings.top_k,
        settings.max_concurrent,
    )

    classifier = build_classifier(settings)
    app.state.classifier = classifier

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    logger.info("LiteClassify ready on %s", classifier.accelerator.value)
    yield

    logger.info("Shutting down LiteClassify")
    inference_pool.shutdown()
    classifier.close()
    logger.info("LiteClassify shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="LiteClassify",
        description="Image classification inference API with switchable CPU/GPU execution",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    settings = get_settings()
    uvicorn.run("liteclassify.main:app", host=settings.host, port=settings.port)
