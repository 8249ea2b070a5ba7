"""Pydantic models describing AI models and selection requests."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from ..contracts import Priority


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class ModelCapabilities(BaseModel):
    text: bool = True
    vision: bool = False
    code: bool = False
    function_calling: bool = False
    json_mode: bool = False
    large_context: bool = False

    def has(self, capability: str) -> bool:
        return bool(getattr(self, capability, False))


class ModelPricing(BaseModel):
    """Per-model input/output pricing in USD per 1k tokens."""

    input_cost_per_1k: float = Field(default=0.01, ge=0)
    output_cost_per_1k: float = Field(default=0.03, ge=0)

    def cost(self, input_tokens: int, output_tokens: int) -> Tuple[float, float]:
        """Return ``(input_cost, output_cost)`` in USD."""
        return (
            (input_tokens / 1000) * self.input_cost_per_1k,
            (output_tokens / 1000) * self.output_cost_per_1k,
        )


class ModelMetrics(BaseModel):
    """Live performance record. Scores are clamped to ``[0, 1]``."""

    performance_score: float = 0.8
    speed_score: float = 0.8
    cost_efficiency: float = 0.8
    reliability_score: float = 0.9
    avg_latency_ms: float = Field(default=2000.0, ge=0)
    success_rate: float = 0.95

    @field_validator(
        "performance_score",
        "speed_score",
        "cost_efficiency",
        "reliability_score",
        "success_rate",
    )
    @classmethod
    def _clamp(cls, v: float) -> float:
        return clamp(v)


class ModelInfo(BaseModel):
    """Metadata describing an invocable model."""

    id: str
    provider_id: str
    model_id: str
    display_name: str = ""
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)
    pricing: ModelPricing = Field(default_factory=ModelPricing)
    context_window: int = 4096
    max_output_tokens: int = 4096
    metrics: ModelMetrics = Field(default_factory=ModelMetrics)
    best_use_cases: List[str] = Field(default_factory=list)
    is_active: bool = True

    @property
    def label(self) -> str:
        return self.display_name or self.model_id

    @property
    def ref(self) -> str:
        return f"{self.provider_id}:{self.model_id}"


def find_model(models: Iterable[ModelInfo], ref: str) -> Optional[ModelInfo]:
    """Look a model up by catalog id, ``provider:model_id`` or bare model id.

    A bare model id only resolves when exactly one provider serves it.
    """
    candidates = list(models)
    for model in candidates:
        if model.id == ref:
            return model
    if ":" in ref:
        return next((m for m in candidates if m.ref == ref), None)
    matches = [m for m in candidates if m.model_id == ref]
    return matches[0] if len(matches) == 1 else None


class TaskRequirements(BaseModel):
    """What a step needs from the model that executes it."""

    task_type: str = "reasoning"
    priority: Priority = "balanced"
    required_capabilities: List[str] = Field(default_factory=list)
    estimated_input_tokens: int = Field(default=1000, ge=0)
    estimated_output_tokens: int = Field(default=1000, ge=0)
    quality_threshold: float = Field(default=0.0, ge=0, le=1)
    max_cost_per_request: Optional[float] = None
    max_latency_ms: Optional[float] = None
    context_length_needed: Optional[int] = None


class ScoredModel(BaseModel):
    model: ModelInfo
    score: float
    breakdown: Dict[str, float]


class ModelSelection(BaseModel):
    primary_model: ModelInfo
    fallback_models: List[ModelInfo] = Field(default_factory=list)
    estimated_cost: float
    confidence: float
    reasoning: str
