"""Model selection and online performance tracking."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from ..config import SelectorSettings
from ..errors import NoAccessibleModel, NoCapableModel
from ..scoring import ScoringProfile, load_scoring_profile
from .models import (
    ModelInfo,
    ModelMetrics,
    ModelSelection,
    ScoredModel,
    TaskRequirements,
    clamp,
    find_model,
)

if TYPE_CHECKING:
    from ..persistence.repository import ModelCatalog

logger = logging.getLogger(__name__)


class ModelSelector:
    """Rank the models a user can reach and track how they actually perform.

    Model metadata is read from a :class:`ModelCatalog` and cached for
    ``settings.cache_ttl_seconds``. Any metric update invalidates the cache.
    """

    def __init__(
        self,
        catalog: "ModelCatalog",
        profile: Optional[ScoringProfile] = None,
        settings: Optional[SelectorSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._catalog = catalog
        self.profile = profile or load_scoring_profile()
        self.settings = settings or SelectorSettings()
        self._clock = clock
        self._cache: Dict[str, ModelInfo] = {}
        self._cache_loaded_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Cache
    async def _ensure_cache(self) -> None:
        now = self._clock()
        stale = (
            self._cache_loaded_at is None
            or now - self._cache_loaded_at > self.settings.cache_ttl_seconds
            or not self._cache
        )
        if stale:
            await self._refresh_cache()

    async def _refresh_cache(self) -> None:
        models = await self._catalog.list_models(active_only=True)
        self._cache = {m.id: m for m in models}
        self._cache_loaded_at = self._clock()
        logger.debug(f"Loaded {len(self._cache)} active models into selector cache")

    def invalidate_cache(self) -> None:
        self._cache.clear()
        self._cache_loaded_at = None

    # ------------------------------------------------------------------
    # Selection
    async def select_optimal_model(
        self,
        requirements: TaskRequirements,
        accessible_providers: Iterable[str],
        exclude: Iterable[str] = (),
        preferred: Optional[str] = None,
    ) -> ModelSelection:
        await self._ensure_cache()

        available = self._available_models(accessible_providers, exclude)
        if not available:
            raise NoAccessibleModel()

        capable = [m for m in available if self._is_capable(m, requirements)]
        if not capable:
            raise NoCapableModel()

        ranked = self.score_models(capable, requirements)
        if preferred:
            index = next(
                (i for i, s in enumerate(ranked) if self._matches(s.model, preferred)),
                None,
            )
            if index is not None and index > 0:
                ranked.insert(0, ranked.pop(index))

        primary = ranked[0]
        fallbacks = [s.model for s in ranked[1 : 1 + self.settings.max_fallbacks]]
        estimated_cost = self.estimate_cost(
            primary.model,
            requirements.estimated_input_tokens,
            requirements.estimated_output_tokens,
        )
        selection = ModelSelection(
            primary_model=primary.model,
            fallback_models=fallbacks,
            estimated_cost=estimated_cost,
            confidence=primary.score,
            reasoning=self._reasoning(primary, requirements),
        )
        logger.debug(
            f"Selected {primary.model.model_id} (score {primary.score:.3f}) "
            f"for {requirements.task_type}/{requirements.priority}"
        )
        return selection

    async def get_model_recommendations(
        self, use_case: str, accessible_providers: Iterable[str]
    ) -> List[ModelInfo]:
        """Models whose ``best_use_cases`` list ``use_case``, best first."""
        await self._ensure_cache()
        matching = [
            m
            for m in self._available_models(accessible_providers)
            if use_case in m.best_use_cases
        ]
        return sorted(matching, key=lambda m: m.metrics.performance_score, reverse=True)

    async def get_fallback_model(
        self,
        failed_model_id: str,
        requirements: TaskRequirements,
        accessible_providers: Iterable[str],
    ) -> Optional[ModelInfo]:
        try:
            selection = await self.select_optimal_model(
                requirements, accessible_providers, exclude=[failed_model_id]
            )
        except (NoAccessibleModel, NoCapableModel):
            logger.warning(f"No fallback available for {failed_model_id}")
            return None
        return selection.primary_model

    async def get_model(self, ref: str) -> Optional[ModelInfo]:
        await self._ensure_cache()
        return find_model(self._cache.values(), ref) or await self._catalog.get_model(ref)

    # ------------------------------------------------------------------
    # Metrics
    async def update_model_metrics(
        self,
        ref: str,
        actual_latency_ms: float,
        success: bool,
        quality_score: Optional[float] = None,
    ) -> Optional[ModelMetrics]:
        """Fold one observed invocation into the model's metrics with an EMA."""

        model = await self._catalog.get_model(ref)
        if model is None:
            logger.debug(f"Skipping metrics update for unknown model {ref}")
            return None

        alpha = self.settings.ema_alpha
        current = model.metrics
        outcome = 1.0 if success else 0.0

        latency_score = 1 - min(actual_latency_ms / self.settings.latency_baseline_ms, 1.0)
        performance = current.performance_score
        if quality_score is not None:
            performance += alpha * (clamp(quality_score) - performance)

        updated = ModelMetrics(
            performance_score=performance,
            speed_score=current.speed_score + alpha * (latency_score - current.speed_score),
            cost_efficiency=current.cost_efficiency,
            reliability_score=current.reliability_score
            + alpha * (outcome - current.reliability_score),
            avg_latency_ms=current.avg_latency_ms
            + alpha * (actual_latency_ms - current.avg_latency_ms),
            success_rate=current.success_rate + alpha * (outcome - current.success_rate),
        )
        await self._catalog.update_model_metrics(model.id, updated)
        self.invalidate_cache()
        return updated

    # ------------------------------------------------------------------
    # Scoring
    def estimate_cost(self, model: ModelInfo, input_tokens: int, output_tokens: int) -> float:
        input_cost, output_cost = model.pricing.cost(input_tokens, output_tokens)
        return input_cost + output_cost

    def score_models(
        self, models: Iterable[ModelInfo], requirements: TaskRequirements
    ) -> List[ScoredModel]:
        weights = self.profile.weights_for(requirements.priority)
        scored = []
        for model in models:
            breakdown = self._breakdown(model, requirements)
            total_weight = sum(weights.values())
            score = sum(breakdown.get(k, 0.0) * w for k, w in weights.items())
            scored.append(
                ScoredModel(
                    model=model,
                    score=score / total_weight if total_weight else 0.0,
                    breakdown=breakdown,
                )
            )
        return sorted(scored, key=lambda s: s.score, reverse=True)

    def _breakdown(self, model: ModelInfo, requirements: TaskRequirements) -> Dict[str, float]:
        cfg = self.profile.selector
        metrics = model.metrics
        price = self.estimate_cost(
            model, requirements.estimated_input_tokens, requirements.estimated_output_tokens
        )
        price_score = max(0.0, 1 - price / cfg.max_reasonable_cost_usd)
        share = cfg.cost_efficiency_share
        return {
            "task_alignment": (
                cfg.task_alignment_match
                if requirements.task_type in model.best_use_cases
                else cfg.task_alignment_miss
            ),
            "quality": metrics.performance_score,
            "speed": metrics.speed_score,
            "cost": share * metrics.cost_efficiency + (1 - share) * price_score,
            "reliability": metrics.reliability_score,
            "capabilities": self._capability_bonus(model, requirements),
        }

    def _capability_bonus(self, model: ModelInfo, requirements: TaskRequirements) -> float:
        cfg = self.profile.selector
        bonus = 0.0
        for capability, value in cfg.capability_bonus.items():
            if capability == "large_context":
                if model.context_window > cfg.large_context_tokens:
                    bonus += value
            elif model.capabilities.has(capability):
                bonus += value
        for capability, value in cfg.required_capability_bonus.items():
            if capability in requirements.required_capabilities and model.capabilities.has(
                capability
            ):
                bonus += value
        return min(1.0, bonus)

    def _reasoning(self, selected: ScoredModel, requirements: TaskRequirements) -> str:
        thresholds = self.profile.selector.reasoning
        model = selected.model
        reasons = [f"Selected {model.label} for {requirements.task_type} task"]
        if requirements.task_type in model.best_use_cases:
            reasons.append(f"optimized for {requirements.task_type}")
        if selected.breakdown["quality"] > thresholds.quality_above:
            reasons.append("high quality performance")
        if selected.breakdown["cost"] > thresholds.cost_above:
            reasons.append("cost-effective pricing")
        if selected.breakdown["speed"] > thresholds.speed_above:
            reasons.append("fast response times")
        caps = [
            label
            for flag, label in (
                ("vision", "vision"),
                ("function_calling", "function calling"),
                ("code", "code generation"),
            )
            if model.capabilities.has(flag)
        ]
        if caps:
            reasons.append(f"supports {', '.join(caps)}")
        return ", ".join(reasons)

    # ------------------------------------------------------------------
    # Filtering
    def _available_models(
        self, accessible_providers: Iterable[str], exclude: Iterable[str] = ()
    ) -> List[ModelInfo]:
        providers = {p.lower() for p in accessible_providers}
        excluded = set(exclude)
        return [
            m
            for m in self._cache.values()
            if m.provider_id.lower() in providers
            and m.model_id not in excluded
            and m.id not in excluded
            and m.ref not in excluded
        ]

    def _is_capable(self, model: ModelInfo, requirements: TaskRequirements) -> bool:
        cfg = self.profile.selector
        for capability in requirements.required_capabilities:
            if capability == "large_context":
                needed = requirements.context_length_needed or cfg.default_large_context_needed
                if not model.capabilities.large_context or model.context_window < needed:
                    return False
            elif capability in type(model.capabilities).model_fields and not model.capabilities.has(
                capability
            ):
                return False

        if (
            requirements.context_length_needed
            and model.context_window < requirements.context_length_needed
        ):
            return False
        if requirements.max_cost_per_request is not None:
            cost = self.estimate_cost(
                model,
                requirements.estimated_input_tokens,
                requirements.estimated_output_tokens,
            )
            if cost > requirements.max_cost_per_request:
                return False
        if (
            requirements.max_latency_ms is not None
            and model.metrics.avg_latency_ms > requirements.max_latency_ms
        ):
            return False
        return model.metrics.performance_score >= requirements.quality_threshold

    @staticmethod
    def _matches(model: ModelInfo, ref: str) -> bool:
        return ref in (model.model_id, model.id, model.ref)
