"""Data models produced by the quality gate."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..contracts import utc_now

Severity = Literal["low", "medium", "high"]
ReviewPriority = Literal["low", "medium", "high"]


class RuleOutcome(BaseModel):
    rule_id: str
    rule_type: str
    rule_name: str = ""
    required: bool = False
    passed: bool
    message: str
    severity: Severity = "low"
    suggested_fix: Optional[str] = None


class QualityMetrics(BaseModel):
    accuracy_score: float
    relevance_score: float
    completeness_score: float
    clarity_score: float
    factual_consistency: float
    overall_quality: float


class QualityIssue(BaseModel):
    type: Literal["error", "warning", "suggestion"]
    rule_id: str
    message: str
    severity: Severity
    suggested_fix: Optional[str] = None


class AutoCorrection(BaseModel):
    type: str
    description: str
    confidence: float


class QualityCheckResult(BaseModel):
    passed: bool
    confidence: float
    metrics: QualityMetrics
    issues: List[QualityIssue] = Field(default_factory=list)
    human_review_required: bool = False
    auto_corrections: List[AutoCorrection] = Field(default_factory=list)


class SelfCorrectionAttempt(BaseModel):
    attempt_number: int
    original_output: str
    corrected_output: str
    improvement_score: float
    correction_reasoning: str
    success: bool
    quality: Optional[QualityCheckResult] = None
    input_tokens: int = 0
    output_tokens: int = 0


class ReviewRequest(BaseModel):
    """Human review request persisted by the quality gate."""

    id: str
    workflow_id: Optional[str] = None
    step_id: Optional[str] = None
    content: str
    quality: Optional[QualityCheckResult] = None
    priority: ReviewPriority = "medium"
    status: Literal["pending", "completed"] = "pending"
    approved: Optional[bool] = None
    feedback: Optional[str] = None
    corrected_output: Optional[str] = None
    reviewer_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None


class HumanFeedback(BaseModel):
    approved: bool
    feedback: Optional[str] = None
    corrected_output: Optional[str] = None
    reviewer_id: Optional[str] = None
