"""Output quality checks and human review escalation."""

from __future__ import annotations

from .gate import QualityGate
from .models import (
    HumanFeedback,
    QualityCheckResult,
    QualityIssue,
    QualityMetrics,
    ReviewRequest,
    SelfCorrectionAttempt,
)
from .rules import (
    RULE_TYPES,
    CoherenceRule,
    FormatRule,
    KeywordsRule,
    LengthRule,
    ValidationRule,
    build_rules,
    register_rule,
)

__all__ = [
    "QualityGate",
    "HumanFeedback",
    "QualityCheckResult",
    "QualityIssue",
    "QualityMetrics",
    "ReviewRequest",
    "SelfCorrectionAttempt",
    "RULE_TYPES",
    "CoherenceRule",
    "FormatRule",
    "KeywordsRule",
    "LengthRule",
    "ValidationRule",
    "build_rules",
    "register_rule",
]
