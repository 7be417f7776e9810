"""Accelerator selection and onnxruntime execution provider mapping."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from liteclassify.config import Settings

CPU_PROVIDER = "CPUExecutionProvider"
CUDA_PROVIDER = "CUDAExecutionProvider"

ProviderList = list[str | tuple[str, dict[str, object]]]


class Accelerator(StrEnum):
    CPU = "cpu"
    GPU = "gpu"


def provider_name(accelerator: Accelerator, settings: Settings) -> str:
    """Return the execution provider that backs an accelerator."""
    if accelerator is Accelerator.GPU:
        return settings.gpu_provider
    return CPU_PROVIDER


def build_providers(accelerator: Accelerator, settings: Settings) -> ProviderList:
    """Build the provider list for a session bound to a single accelerator.

    GPU sessions get no CPU fallback entry: a model that cannot be placed on
    the GPU must fail to load instead of quietly running on the CPU.
    """
    if accelerator is Accelerator.CPU:
        return [CPU_PROVIDER]

    name = settings.gpu_provider
    if name == CUDA_PROVIDER:
        return [
            (
                CUDA_PROVIDER,
                {
                    "device_id": settings.gpu_device_id,
                    "gpu_mem_limit": settings.gpu_mem_limit,
                    "arena_extend_strategy": "kSameAsRequested",
                },
            )
        ]
    return [name]
