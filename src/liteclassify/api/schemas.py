"""Pydantic request/response schemas for the LiteClassify API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single ranked label with its confidence score."""

    index: int = Field(description="Model output index of the label")
    label: str
    confidence: float


class ClassifyImageResponse(BaseModel):
    """Response for the image classification endpoint."""

    tags: list[ImageTag] = Field(description="Predictions sorted by confidence (descending)")
    accelerator: str
    inference_ms: float
    text: str = Field(description="Human-readable rendering of the result")


class AcceleratorRequest(BaseModel):
    """Request to move inference to another accelerator."""

    accelerator: Literal["cpu", "gpu"]


class AcceleratorResponse(BaseModel):
    """The accelerator currently running inference."""

    accelerator: str


class ModelInfoResponse(BaseModel):
    """Layout of the loaded model."""

    input_width: int
    input_height: int
    input_encoding: str
    output_encoding: str
    normalization: str
    channels_first: bool
    output_length: int | None
    label_count: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    accelerator: str
    model_loaded: bool
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
