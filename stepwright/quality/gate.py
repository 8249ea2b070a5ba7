"""Quality gate: rule checks, self-correction and human review."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

from ..contracts import utc_now
from ..errors import ReviewNotFound
from ..providers.base import CancellationToken, ModelInvoker, invoke_with_deadline
from ..scoring import ScoringProfile, load_scoring_profile
from .metrics import compute_metrics, confidence_score, rule_compliance
from .models import (
    AutoCorrection,
    HumanFeedback,
    QualityCheckResult,
    QualityIssue,
    ReviewPriority,
    ReviewRequest,
    RuleOutcome,
    SelfCorrectionAttempt,
)
from .rules import RuleSpec, build_rules

if TYPE_CHECKING:
    from ..persistence.repository import ReviewRepository

logger = logging.getLogger(__name__)

AUTO_CORRECTION_CONFIDENCE = 0.7


class QualityGate:
    """Decide whether a step output passes, needs correction or a human.

    ``invoker`` and ``correction_model`` are only needed for
    :meth:`perform_self_correction`.
    """

    def __init__(
        self,
        reviews: "ReviewRepository",
        invoker: Optional[ModelInvoker] = None,
        correction_model: Optional[str] = None,
        profile: Optional[ScoringProfile] = None,
    ) -> None:
        self._reviews = reviews
        self._invoker = invoker
        self.correction_model = correction_model
        self.profile = profile or load_scoring_profile()

    # ------------------------------------------------------------------
    def run_rules(self, output: str, rules: Iterable[RuleSpec]) -> List[RuleOutcome]:
        return [rule.evaluate(output) for rule in build_rules(rules)]

    def check_quality(
        self, output: str, step_type: str, rules: Sequence[RuleSpec] = ()
    ) -> QualityCheckResult:
        scoring = self.profile.quality
        outcomes = self.run_rules(output, rules)
        metrics = compute_metrics(output, outcomes, step_type, scoring)
        failed = [o for o in outcomes if not o.passed]

        human_review = (
            metrics.overall_quality < scoring.review_overall_below
            or any(o.severity == "high" for o in failed)
            or metrics.accuracy_score < scoring.review_accuracy_below
        )
        result = QualityCheckResult(
            passed=all(o.passed for o in outcomes if o.required),
            confidence=(metrics.overall_quality + rule_compliance(outcomes)) / 2,
            metrics=metrics,
            issues=[
                QualityIssue(
                    type="error" if o.required else "warning",
                    rule_id=o.rule_id,
                    message=o.message,
                    severity=o.severity,
                    suggested_fix=o.suggested_fix,
                )
                for o in failed
            ],
            human_review_required=human_review,
            auto_corrections=[
                AutoCorrection(
                    type=o.rule_type,
                    description=f"Auto-fix for {o.rule_name}: {o.message}",
                    confidence=AUTO_CORRECTION_CONFIDENCE,
                )
                for o in failed
                if o.severity != "high"
            ],
        )
        logger.debug(
            f"Quality check ({step_type}): passed={result.passed} "
            f"overall={metrics.overall_quality:.2f} review={human_review}"
        )
        return result

    def calculate_confidence_score(
        self,
        output: str,
        model_reliability: float,
        step_type: str,
        results: Sequence[RuleOutcome],
    ) -> float:
        return confidence_score(
            output, model_reliability, step_type, results, self.profile.quality
        )

    # ------------------------------------------------------------------
    async def perform_self_correction(
        self,
        output: str,
        result: QualityCheckResult,
        step_type: str,
        rules: Sequence[RuleSpec] = (),
        max_attempts: int = 3,
        model: Optional[str] = None,
        timeout_ms: int = 0,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[SelfCorrectionAttempt]:
        """Ask the model to fix its own output until improvements stall.

        Each correction call runs under ``timeout_ms`` and ``cancel_token``
        like the step call it corrects.
        """

        model = model or self.correction_model
        if self._invoker is None or model is None:
            raise ValueError("Self-correction needs a model invoker and a model")

        threshold = self.profile.quality.improvement_threshold
        attempts: List[SelfCorrectionAttempt] = []
        current_output = output
        current = result
        for number in range(1, max_attempts + 1):
            if not current.issues:
                break
            response = await invoke_with_deadline(
                self._invoker,
                model,
                self._correction_prompt(current_output, current),
                timeout_ms=timeout_ms,
                cancel_token=cancel_token,
            )
            rechecked = self.check_quality(response.content, step_type, rules)
            before = current.metrics.overall_quality
            after = rechecked.metrics.overall_quality
            improvement = (after - before) / before if before > 0 else after
            attempt = SelfCorrectionAttempt(
                attempt_number=number,
                original_output=current_output,
                corrected_output=response.content,
                improvement_score=improvement,
                correction_reasoning=(
                    f"Attempting to address {len(current.issues)} quality issues"
                ),
                success=improvement > threshold,
                quality=rechecked,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
            )
            attempts.append(attempt)
            logger.info(
                f"Self-correction attempt {number}: improvement {improvement:.2%}"
            )
            if not attempt.success:
                break
            current_output = response.content
            current = rechecked
        return attempts

    @staticmethod
    def _correction_prompt(output: str, result: QualityCheckResult) -> str:
        issues = "\n".join(f"- {issue.message}" for issue in result.issues)
        return (
            "Please improve the following text by addressing these issues:\n\n"
            f"{issues}\n\nOriginal text:\n{output}\n\nImproved text:"
        )

    # ------------------------------------------------------------------
    async def request_human_review(
        self,
        workflow_id: Optional[str],
        step_id: Optional[str],
        output: str,
        result: QualityCheckResult,
        priority: ReviewPriority = "medium",
    ) -> str:
        review = ReviewRequest(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            step_id=step_id,
            content=output,
            quality=result,
            priority=priority,
        )
        await self._reviews.create_review(review)
        logger.info(
            f"Human review {review.id} requested for workflow {workflow_id} step {step_id}"
        )
        return review.id

    async def get_human_feedback(self, review_id: str) -> Optional[HumanFeedback]:
        """Return the reviewer's verdict, or ``None`` while the review is pending."""
        review = await self._reviews.get_review(review_id)
        if review is None:
            raise ReviewNotFound(review_id)
        if review.status != "completed":
            return None
        return HumanFeedback(
            approved=bool(review.approved),
            feedback=review.feedback,
            corrected_output=review.corrected_output,
            reviewer_id=review.reviewer_id,
        )

    async def complete_human_review(
        self,
        review_id: str,
        approved: bool,
        feedback: Optional[str] = None,
        corrected_output: Optional[str] = None,
        reviewer_id: Optional[str] = None,
    ) -> ReviewRequest:
        review = await self._reviews.get_review(review_id)
        if review is None:
            raise ReviewNotFound(review_id)
        review.status = "completed"
        review.approved = approved
        review.feedback = feedback
        review.corrected_output = corrected_output
        review.reviewer_id = reviewer_id
        review.completed_at = utc_now()
        await self._reviews.save_review(review)
        logger.info(f"Human review {review_id} completed: approved={approved}")
        return review

    async def list_pending_reviews(self) -> List[ReviewRequest]:
        return await self._reviews.list_reviews(status="pending")
