"""Model registry: metadata, scoring and selection."""

from __future__ import annotations

from .models import (
    ModelCapabilities,
    ModelInfo,
    ModelMetrics,
    ModelPricing,
    ModelSelection,
    ScoredModel,
    TaskRequirements,
    find_model,
)
from .selector import ModelSelector

__all__ = [
    "ModelCapabilities",
    "ModelInfo",
    "ModelMetrics",
    "ModelPricing",
    "ModelSelection",
    "ScoredModel",
    "TaskRequirements",
    "ModelSelector",
    "find_model",
]
