"""Spending limits, admission decisions and usage analytics."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

from ..config import LimitDefaults
from ..contracts import utc_now
from ..registry.models import ModelPricing
from .models import (
    AdmissionDecision,
    CostPrediction,
    CostTrends,
    DailyUsage,
    ModelCost,
    PeriodUsage,
    RemainingBudget,
    StepCostEstimate,
    UsageAnalytics,
    UsageLimits,
    UsageRecord,
    UsageStats,
    UsageStatus,
)

if TYPE_CHECKING:
    from ..persistence.repository import ModelCatalog, UsageLedger

logger = logging.getLogger(__name__)

LIMIT_REACHED_FRACTION = 0.95
TREND_BAND_PERCENT = 10.0
TOP_MODELS_PER_DAY = 3

Notifier = Callable[[str, UsageStats], Any]


def _day_start(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _month_bounds(moment: datetime) -> tuple[datetime, datetime]:
    start = _day_start(moment).replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def classify_usage(fraction: float, warning_threshold: float) -> UsageStatus:
    """Map the higher of the daily/monthly usage fractions to a status."""
    if fraction >= 1.0:
        return "exceeded"
    if fraction >= LIMIT_REACHED_FRACTION:
        return "limit_reached"
    if fraction >= warning_threshold:
        return "warning"
    return "safe"


def _summarise(records: Iterable[UsageRecord], limit: float) -> PeriodUsage:
    cost = 0.0
    requests = 0
    tokens = 0
    for record in records:
        cost += record.total_cost_usd
        requests += 1
        tokens += record.total_tokens
    return PeriodUsage(
        cost=cost,
        requests=requests,
        tokens=tokens,
        limit=limit,
        percentage=(cost / limit) * 100,
    )


class UsageMonitor:
    """Admission gate in front of every billable model invocation."""

    def __init__(
        self,
        ledger: "UsageLedger",
        defaults: Optional[LimitDefaults] = None,
        catalog: Optional["ModelCatalog"] = None,
        default_pricing: Optional[ModelPricing] = None,
        clock: Callable[[], datetime] = utc_now,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self._ledger = ledger
        self._defaults = defaults or LimitDefaults()
        self._catalog = catalog
        self._default_pricing = default_pricing or ModelPricing()
        self._clock = clock
        self._notifier = notifier
        self._last_notified: Dict[str, UsageStatus] = {}

    # ------------------------------------------------------------------
    # Limits
    async def get_user_limits(self, user_id: str) -> UsageLimits:
        limits = await self._ledger.get_limits(user_id)
        if limits is None:
            return UsageLimits(**self._defaults.model_dump())
        return limits

    async def update_limits(self, user_id: str, **changes: Any) -> UsageLimits:
        current = await self.get_user_limits(user_id)
        updated = UsageLimits.model_validate({**current.model_dump(), **changes})
        await self._ledger.upsert_limits(user_id, updated)
        logger.info(f"Updated usage limits for {user_id}: {changes}")
        return updated

    # ------------------------------------------------------------------
    # Usage
    async def get_current_usage(self, user_id: str) -> UsageStats:
        limits = await self.get_user_limits(user_id)
        now = self._clock()
        month_start, month_end = _month_bounds(now)
        day_start = _day_start(now)
        month_rows = await self._ledger.list_usage(user_id, month_start, month_end)

        today = _summarise(
            (r for r in month_rows if r.created_at >= day_start), limits.daily_limit_usd
        )
        this_month = _summarise(month_rows, limits.monthly_limit_usd)
        fraction = max(today.percentage, this_month.percentage) / 100
        return UsageStats(
            today=today,
            this_month=this_month,
            remaining=RemainingBudget(
                daily=max(0.0, limits.daily_limit_usd - today.cost),
                monthly=max(0.0, limits.monthly_limit_usd - this_month.cost),
            ),
            status=classify_usage(fraction, limits.warning_threshold),
        )

    async def can_make_request(self, user_id: str, estimated_cost: float) -> AdmissionDecision:
        limits = await self.get_user_limits(user_id)
        stats = await self.get_current_usage(user_id)

        new_daily = stats.today.cost + estimated_cost
        new_monthly = stats.this_month.cost + estimated_cost
        if limits.hard_stop_enabled:
            if new_daily > limits.daily_limit_usd:
                return AdmissionDecision(
                    allowed=False,
                    reason=f"Request would exceed daily limit (${limits.daily_limit_usd:.2f})",
                    period="daily",
                    suggestion=(
                        f"Current usage: ${stats.today.cost:.4f}, "
                        f"Request cost: ${estimated_cost:.4f}"
                    ),
                )
            if new_monthly > limits.monthly_limit_usd:
                return AdmissionDecision(
                    allowed=False,
                    reason=f"Request would exceed monthly limit (${limits.monthly_limit_usd:.2f})",
                    period="monthly",
                    suggestion=(
                        f"Current usage: ${stats.this_month.cost:.4f}, "
                        f"Request cost: ${estimated_cost:.4f}"
                    ),
                )

        fraction = max(new_daily / limits.daily_limit_usd, new_monthly / limits.monthly_limit_usd)
        if fraction > limits.warning_threshold:
            return AdmissionDecision(
                allowed=True,
                warning=True,
                reason=f"Warning: {fraction * 100:.1f}% of limit reached",
                suggestion="Consider monitoring your usage more closely",
            )
        return AdmissionDecision(allowed=True)

    async def predict_workflow_cost(
        self, user_id: str, steps: List[StepCostEstimate]
    ) -> CostPrediction:
        total_cost = 0.0
        total_tokens = 0
        for step in steps:
            pricing = await self._pricing_for(step.model)
            input_cost, output_cost = pricing.cost(
                step.estimated_input_tokens, step.estimated_output_tokens
            )
            total_cost += input_cost + output_cost
            total_tokens += step.estimated_input_tokens + step.estimated_output_tokens

        limits = await self.get_user_limits(user_id)
        stats = await self.get_current_usage(user_id)
        daily_after = stats.today.cost + total_cost
        will_exceed_daily = daily_after > limits.daily_limit_usd
        will_exceed_monthly = stats.this_month.cost + total_cost > limits.monthly_limit_usd

        if will_exceed_daily:
            recommendation = (
                "This workflow will exceed your daily limit. "
                "Consider reducing scope or increasing limits."
            )
        elif will_exceed_monthly:
            recommendation = (
                "This workflow will exceed your monthly limit. Consider upgrading your plan."
            )
        elif daily_after / limits.daily_limit_usd > limits.warning_threshold:
            recommendation = "This workflow will use a significant portion of your daily limit."
        else:
            recommendation = "Workflow is within your limits"

        return CostPrediction(
            estimated_tokens=total_tokens,
            estimated_cost=total_cost,
            will_exceed_daily=will_exceed_daily,
            will_exceed_monthly=will_exceed_monthly,
            recommendation=recommendation,
        )

    async def log_usage(self, record: UsageRecord) -> None:
        await self._ledger.append_usage(record)
        logger.debug(
            f"Logged usage for {record.user_id}: {record.model_id} "
            f"${record.total_cost_usd:.4f} ({record.status})"
        )
        await self.check_warning_thresholds(record.user_id)

    async def check_warning_thresholds(self, user_id: str) -> UsageStatus:
        """Notify once each time a user moves into ``warning`` or ``limit_reached``."""
        stats = await self.get_current_usage(user_id)
        limits = await self.get_user_limits(user_id)
        previous = self._last_notified.get(user_id)
        self._last_notified[user_id] = stats.status
        if not limits.notification_enabled:
            return stats.status
        if stats.status in ("warning", "limit_reached") and stats.status != previous:
            logger.warning(
                f"Usage {stats.status} for user {user_id}: "
                f"today {stats.today.percentage:.1f}%, month {stats.this_month.percentage:.1f}%"
            )
            if self._notifier is not None:
                self._notifier(user_id, stats)
        return stats.status

    async def get_workflow_usage(
        self, user_id: str, workflow_id: str, since: datetime
    ) -> List[UsageRecord]:
        rows = await self._ledger.list_usage(user_id, since)
        return [row for row in rows if row.workflow_id == workflow_id]

    # ------------------------------------------------------------------
    # Analytics
    async def get_usage_analytics(self, user_id: str, days: int = 30) -> UsageAnalytics:
        end = self._clock()
        start = end - timedelta(days=days)
        rows = await self._ledger.list_usage(user_id, start)

        daily: Dict[str, DailyUsage] = {}
        daily_models: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        providers: Dict[str, float] = defaultdict(float)
        models: Dict[str, float] = defaultdict(float)
        for row in rows:
            date = row.created_at.date().isoformat()
            day = daily.setdefault(date, DailyUsage(date=date))
            cost = row.total_cost_usd
            day.cost += cost
            day.requests += 1
            day.tokens += row.total_tokens
            daily_models[date][row.model_id] += cost
            providers[row.provider_id or "unknown"] += cost
            models[row.model_id or "unknown"] += cost

        breakdown = []
        for date in sorted(daily):
            day = daily[date]
            ranked = sorted(daily_models[date].items(), key=lambda kv: kv[1], reverse=True)
            day.top_models = [ModelCost(model=m, cost=c) for m, c in ranked[:TOP_MODELS_PER_DAY]]
            breakdown.append(day)

        return UsageAnalytics(
            daily_breakdown=breakdown,
            provider_breakdown=dict(providers),
            model_breakdown=dict(models),
            cost_trends=self.calculate_cost_trends(breakdown),
        )

    @staticmethod
    def calculate_cost_trends(daily: List[DailyUsage]) -> CostTrends:
        if len(daily) < 2:
            return CostTrends()
        middle = len(daily) // 2
        first, second = daily[:middle], daily[middle:]
        first_avg = sum(d.cost for d in first) / len(first)
        second_avg = sum(d.cost for d in second) / len(second)
        if first_avg == 0:
            change = 0.0 if second_avg == 0 else 100.0
        else:
            change = ((second_avg - first_avg) / first_avg) * 100

        if change > TREND_BAND_PERCENT:
            trend = "increasing"
        elif change < -TREND_BAND_PERCENT:
            trend = "decreasing"
        else:
            trend = "stable"
        return CostTrends(trend=trend, percentage_change=change)

    # ------------------------------------------------------------------
    async def _pricing_for(self, model: str) -> ModelPricing:
        if self._catalog is None:
            return self._default_pricing
        info = await self._catalog.get_model(model)
        return info.pricing if info else self._default_pricing
