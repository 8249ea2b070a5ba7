from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class UsageLog(SQLModel, table=True):
    """One row per model invocation. Rows are never updated."""

    __tablename__ = "usage_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
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
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class UserUsageLimits(SQLModel, table=True):
    """Per-user spending configuration."""

    __tablename__ = "user_usage_limits"

    user_id: str = Field(primary_key=True)
    daily_limit_usd: float = 10.0
    monthly_limit_usd: float = 100.0
    hard_stop_enabled: bool = True
    warning_threshold: float = 0.8
    notification_enabled: bool = True
    auto_pause_workflows: bool = True
    updated_at: datetime = Field(default_factory=datetime.utcnow)
