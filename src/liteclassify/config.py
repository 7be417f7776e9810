"""Environment-based configuration for LiteClassify."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from LITECLASSIFY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LITECLASSIFY_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: str = "INFO"

    # Model source: a local file, or a file in a HuggingFace repo
    model_path: Path | None = None
    model_repo_id: str | None = None
    model_filename: str = "model.onnx"
    model_subfolder: str | None = None
    models_dir: Path = Path("models")

    # Labels: a local file, or labels_filename next to the model in the repo
    labels_path: Path | None = None
    labels_filename: str = "labels.txt"

    # Overrides for models with dynamic spatial dims or a non-default normalization
    input_width: int | None = Field(default=None, ge=1)
    input_height: int | None = Field(default=None, ge=1)
    normalization: Literal["identity_0_255", "signed_neg1_1", "unsigned_0_1"] | None = None

    # Classification
    top_k: int = Field(default=3, ge=1)

    # Accelerator; the classifier always starts on CPU and switches afterwards
    accelerator: Literal["cpu", "gpu"] = "cpu"
    gpu_provider: str = "CUDAExecutionProvider"
    gpu_device_id: int = Field(default=0, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=1, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
