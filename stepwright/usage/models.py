"""Data models for spending limits and the usage ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..contracts import utc_now

UsageStatus = Literal["safe", "warning", "limit_reached", "exceeded"]
CostTrend = Literal["increasing", "decreasing", "stable"]


class UsageLimits(BaseModel):
    daily_limit_usd: float = Field(default=10.0, gt=0)
    monthly_limit_usd: float = Field(default=100.0, gt=0)
    hard_stop_enabled: bool = True
    warning_threshold: float = Field(default=0.8, gt=0, le=1)
    notification_enabled: bool = True
    auto_pause_workflows: bool = True


class UsageRecord(BaseModel):
    """Immutable usage-ledger row written after each model invocation."""

    user_id: str
    provider_id: str
    model_id: str
    workflow_id: Optional[str] = None
    agent_step: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    input_cost_usd: float = 0.0
    output_cost_usd: float = 0.0
    latency_ms: float = 0.0
    status: str = "success"
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def total_cost_usd(self) -> float:
        return self.input_cost_usd + self.output_cost_usd

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class PeriodUsage(BaseModel):
    cost: float = 0.0
    requests: int = 0
    tokens: int = 0
    limit: float
    percentage: float = 0.0


class RemainingBudget(BaseModel):
    daily: float
    monthly: float


class UsageStats(BaseModel):
    today: PeriodUsage
    this_month: PeriodUsage
    remaining: RemainingBudget
    status: UsageStatus = "safe"


class AdmissionDecision(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    suggestion: Optional[str] = None
    warning: bool = False
    period: Optional[Literal["daily", "monthly"]] = None


class StepCostEstimate(BaseModel):
    model: str
    estimated_input_tokens: int = 0
    estimated_output_tokens: int = 0


class CostPrediction(BaseModel):
    estimated_tokens: int
    estimated_cost: float
    will_exceed_daily: bool
    will_exceed_monthly: bool
    recommendation: str


class ModelCost(BaseModel):
    model: str
    cost: float


class DailyUsage(BaseModel):
    date: str
    cost: float = 0.0
    requests: int = 0
    tokens: int = 0
    top_models: List[ModelCost] = Field(default_factory=list)


class CostTrends(BaseModel):
    trend: CostTrend = "stable"
    percentage_change: float = 0.0


class UsageAnalytics(BaseModel):
    daily_breakdown: List[DailyUsage] = Field(default_factory=list)
    provider_breakdown: Dict[str, float] = Field(default_factory=dict)
    model_breakdown: Dict[str, float] = Field(default_factory=dict)
    cost_trends: CostTrends = Field(default_factory=CostTrends)
