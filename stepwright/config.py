from __future__ import annotations

import os
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


class EngineSettings(BaseModel):
    """Workflow engine behaviour."""

    cache_max_entries: int = Field(default=256, gt=0)
    retention_hours: float = Field(default=24.0, ge=0)
    cleanup_after_days: int = Field(default=7, ge=0)
    self_correction_attempts: int = Field(default=0, ge=0)
    retry_backoff_base: float = Field(default=1.5, gt=0)
    retry_backoff_jitter: float = Field(default=0.5, ge=0)


class SelectorSettings(BaseModel):
    """Model registry cache and metric tracking."""

    cache_ttl_seconds: float = Field(default=300.0, ge=0)
    ema_alpha: float = Field(default=0.1, gt=0, le=1)
    latency_baseline_ms: float = Field(default=10_000.0, gt=0)
    max_fallbacks: int = Field(default=3, ge=0)


class LimitDefaults(BaseModel):
    """Spending limits applied to users without a stored configuration."""

    daily_limit_usd: float = 10.0
    monthly_limit_usd: float = 100.0
    hard_stop_enabled: bool = True
    warning_threshold: float = Field(default=0.8, gt=0, le=1)
    notification_enabled: bool = True
    auto_pause_workflows: bool = True


class StepwrightConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    ledger_url: Optional[str] = None
    scoring_path: Optional[str] = None
    providers: List[str] = Field(default_factory=list)
    engine: EngineSettings = EngineSettings()
    selector: SelectorSettings = SelectorSettings()
    limits: LimitDefaults = LimitDefaults()


def load_config(path: Optional[str] = None) -> StepwrightConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPWRIGHT_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPWRIGHT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepwrightConfig(**data)
    else:
        config = StepwrightConfig()

    env_db_url = os.getenv("STEPWRIGHT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_ledger_url = os.getenv("STEPWRIGHT_LEDGER_URL")
    if env_ledger_url:
        config.ledger_url = env_ledger_url
    env_scoring = os.getenv("STEPWRIGHT_SCORING")
    if env_scoring:
        config.scoring_path = env_scoring
    env_providers = os.getenv("STEPWRIGHT_PROVIDERS")
    if env_providers:
        config.providers = [p.strip() for p in env_providers.split(",") if p.strip()]
    return config
