"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse

from liteclassify.api.imaging import decode_image
from liteclassify.api.schemas import (
    AcceleratorRequest,
    AcceleratorResponse,
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfoResponse,
)
from liteclassify.ml.errors import (
    AcceleratorUnsupportedError,
    InferenceError,
    LabelCountMismatchError,
    ModelLoadError,
    UninitializedError,
)

if TYPE_CHECKING:
    from liteclassify.config import Settings
    from liteclassify.ml.classifier import Classifier
    from liteclassify.ml.inference import InferencePool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> Classifier:
    classifier: Classifier = request.app.state.classifier
    return classifier


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@router.post(
    "/classify",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    top_k: Annotated[int | None, Query(ge=1)] = None,
) -> ClassifyImageResponse | JSONResponse:
    """Classify an uploaded image and return ranked labels."""
    settings = _get_settings(request)
    data = await file.read()
    if len(data) > settings.max_file_size:
        return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, f"File exceeds {settings.max_file_size} bytes")

    try:
        image = decode_image(data, settings.max_image_pixels)
    except ValueError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    pool = _get_inference_pool(request)
    try:
        result = await pool.classify(_get_classifier(request), image, top_k)
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Inference queue is full")
    except UninitializedError as exc:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    except (InferenceError, LabelCountMismatchError) as exc:
        logger.error("Classification of %s failed: %s", file.filename, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    return ClassifyImageResponse(
        tags=[
            ImageTag(index=prediction.index, label=prediction.label, confidence=prediction.score)
            for prediction in result.predictions
        ],
        accelerator=result.accelerator.value,
        inference_ms=result.inference_ms,
        text=result.format(),
    )


@router.get(
    "/accelerator",
    response_model=AcceleratorResponse,
    summary="Show the active accelerator",
)
async def get_accelerator(request: Request) -> AcceleratorResponse:
    """Return the accelerator currently running inference."""
    return AcceleratorResponse(accelerator=_get_classifier(request).accelerator.value)


@router.put(
    "/accelerator",
    response_model=AcceleratorResponse,
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Switch the accelerator",
)
async def set_accelerator(request: Request, body: AcceleratorRequest) -> AcceleratorResponse | JSONResponse:
    """Move inference to another accelerator.

    A GPU that cannot run the model leaves the service on CPU and returns 409.
    """
    classifier = _get_classifier(request)
    pool = _get_inference_pool(request)
    try:
        active = await pool.run(classifier.switch_accelerator, body.accelerator)
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Inference queue is full")
    except AcceleratorUnsupportedError as exc:
        return _error(status.HTTP_409_CONFLICT, f"{exc} (active: {classifier.accelerator.value})")
    except ModelLoadError as exc:
        logger.error("Accelerator switch left no usable engine: %s", exc)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    return AcceleratorResponse(accelerator=active.value)


@router.get(
    "/model",
    response_model=ModelInfoResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Describe the loaded model",
)
async def model_info(request: Request) -> ModelInfoResponse | JSONResponse:
    """Return the input/output layout of the loaded model."""
    classifier = _get_classifier(request)
    try:
        descriptor = classifier.descriptor
    except UninitializedError as exc:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    return ModelInfoResponse(
        input_width=descriptor.width,
        input_height=descriptor.height,
        input_encoding=descriptor.input_encoding.value,
        output_encoding=descriptor.output_encoding.value,
        normalization=descriptor.normalization.value,
        channels_first=descriptor.channels_first,
        output_length=descriptor.output_length,
        label_count=len(classifier.labels),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    classifier = _get_classifier(request)
    pool = _get_inference_pool(request)
    model_loaded = classifier.engine is not None
    return HealthResponse(
        status="ok" if model_loaded else "degraded",
        accelerator=classifier.accelerator.value,
        model_loaded=model_loaded,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
