"""Versioned scoring data for model selection and quality checks.

The packaged ``scoring.yaml`` holds the defaults. Operators can point
``StepwrightConfig.scoring_path`` at their own file to retune weights or
pricing without a release; the file is validated when it is loaded.
"""

from __future__ import annotations

from importlib import resources
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

SUPPORTED_SCHEMA_VERSION = 1
SCORE_COMPONENTS = frozenset(
    {"task_alignment", "quality", "speed", "cost", "reliability", "capabilities"}
)
PRIORITIES = frozenset({"cost", "quality", "speed", "balanced"})
QUALITY_METRICS = frozenset(
    {"accuracy", "relevance", "completeness", "clarity", "factual_consistency"}
)
_WEIGHT_TOLERANCE = 1e-6


class PricingDefaults(BaseModel):
    input_cost_per_1k: float = Field(ge=0)
    output_cost_per_1k: float = Field(ge=0)


class ReasoningThresholds(BaseModel):
    quality_above: float = 0.9
    cost_above: float = 0.8
    speed_above: float = 0.8


class SelectorScoring(BaseModel):
    task_alignment_match: float = 1.0
    task_alignment_miss: float = 0.6
    max_reasonable_cost_usd: float = Field(default=0.10, gt=0)
    cost_efficiency_share: float = Field(default=0.5, ge=0, le=1)
    large_context_tokens: int = 100_000
    default_large_context_needed: int = 32_000
    capability_bonus: Dict[str, float] = Field(default_factory=dict)
    required_capability_bonus: Dict[str, float] = Field(default_factory=dict)
    default_pricing: PricingDefaults = PricingDefaults(
        input_cost_per_1k=0.01, output_cost_per_1k=0.03
    )
    reasoning: ReasoningThresholds = ReasoningThresholds()


class QualityScoring(BaseModel):
    metric_weights: Dict[str, float]
    relevance_baseline: float = Field(default=0.8, ge=0, le=1)
    factual_consistency_baseline: float = Field(default=0.85, ge=0, le=1)
    normal_word_length: float = 5
    normal_sentence_length: float = 15
    min_words: Dict[str, int] = Field(default_factory=dict)
    default_min_words: int = Field(default=50, gt=0)
    expected_length: Dict[str, int] = Field(default_factory=dict)
    default_expected_length: int = Field(default=500, gt=0)
    review_overall_below: float = 0.6
    review_accuracy_below: float = 0.5
    improvement_threshold: float = 0.1

    @field_validator("metric_weights")
    @classmethod
    def _check_metric_weights(cls, v: Dict[str, float]) -> Dict[str, float]:
        if set(v) != QUALITY_METRICS:
            raise ValueError(
                f"metric_weights must define exactly {sorted(QUALITY_METRICS)}"
            )
        if abs(sum(v.values()) - 1.0) > _WEIGHT_TOLERANCE:
            raise ValueError("metric_weights must sum to 1")
        return v

    def min_words_for(self, step_type: str) -> int:
        return self.min_words.get(step_type, self.default_min_words)

    def expected_length_for(self, step_type: str) -> int:
        return self.expected_length.get(step_type, self.default_expected_length)


class ScoringProfile(BaseModel):
    """Validated scoring configuration."""

    schema_version: int
    priority_weights: Dict[str, Dict[str, float]]
    selector: SelectorScoring = SelectorScoring()
    quality: QualityScoring

    @field_validator("schema_version")
    @classmethod
    def _check_version(cls, v: int) -> int:
        if v != SUPPORTED_SCHEMA_VERSION:
            raise ValueError(
                f"Unsupported scoring schema_version {v}; expected {SUPPORTED_SCHEMA_VERSION}"
            )
        return v

    @model_validator(mode="after")
    def _check_presets(self) -> "ScoringProfile":
        missing = PRIORITIES - set(self.priority_weights)
        if missing:
            raise ValueError(f"Missing priority presets: {sorted(missing)}")
        for name, weights in self.priority_weights.items():
            unknown = set(weights) - SCORE_COMPONENTS
            if unknown:
                raise ValueError(f"Preset {name!r} has unknown components {sorted(unknown)}")
            if abs(sum(weights.values()) - 1.0) > _WEIGHT_TOLERANCE:
                raise ValueError(f"Preset {name!r} weights must sum to 1")
        return self

    def weights_for(self, priority: str) -> Dict[str, float]:
        return self.priority_weights.get(priority, self.priority_weights["balanced"])


def load_scoring_profile(path: Optional[str | Path] = None) -> ScoringProfile:
    """Load and validate scoring data from ``path`` or the packaged defaults."""

    if path is not None:
        raw = Path(path).read_text()
    else:
        raw = resources.files("stepwright").joinpath("scoring.yaml").read_text()
    data = yaml.safe_load(raw) or {}
    return ScoringProfile.model_validate(data)
