"""Usage ledger models and the admission gate."""

from __future__ import annotations

from .models import (
    AdmissionDecision,
    CostPrediction,
    CostTrends,
    DailyUsage,
    StepCostEstimate,
    UsageAnalytics,
    UsageLimits,
    UsageRecord,
    UsageStats,
)
from .monitor import UsageMonitor, classify_usage

__all__ = [
    "AdmissionDecision",
    "CostPrediction",
    "CostTrends",
    "DailyUsage",
    "StepCostEstimate",
    "UsageAnalytics",
    "UsageLimits",
    "UsageRecord",
    "UsageStats",
    "UsageMonitor",
    "classify_usage",
]
