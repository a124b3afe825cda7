"""
Risk Aggregator - Computes the session risk score from violations
"""

import logging
from typing import Any, Dict, Optional, Sequence

from ..types import RiskLevel, RiskScore, Violation, ViolationTier, violation_type_name
from .taxonomy import SEVERITY_WEIGHTS

logger = logging.getLogger(__name__)


class RiskAggregator:
    """
    Computes a 0-100 risk score from a violation list.

    Formula:
        weight_i   = severity_weight(severity_i) * confidence_i
        running_k  = mean(weight_1 .. weight_k)
        risk_score = round(100 * max_k(running_k) / 4)

    Running means are taken in chronological order. Violations sharing a
    timestamp form one frame and are taken heaviest first, so the order in
    which a frame's violations were listed does not matter. The score is a
    pure function of the list and never decreases when a violation at or
    after the latest timestamp is added.

    Holds no mutable state; safe to call from any thread.
    """

    # (minimum score, level) ascending
    LEVEL_BANDS = (
        (0, RiskLevel.MINIMAL),
        (20, RiskLevel.LOW),
        (40, RiskLevel.MEDIUM),
        (70, RiskLevel.HIGH),
    )

    RECOMMENDATIONS: Dict[RiskLevel, str] = {
        RiskLevel.HIGH: "Manual review required",
        RiskLevel.MEDIUM: "Additional verification recommended",
        RiskLevel.LOW: "Minor concerns noted",
        RiskLevel.MINIMAL: "No integrity concerns",
    }

    # Score at or above which review is required
    REVIEW_SCORE_THRESHOLD = 70

    # Minimum review-tier violations for review
    MIN_FLAGS_FOR_REVIEW = 2

    def __init__(self, severity_weights: Optional[Dict[str, int]] = None):
        self.severity_weights = dict(SEVERITY_WEIGHTS)
        if severity_weights:
            self.severity_weights.update(severity_weights)
        self.max_weight = max(self.severity_weights.values())

    def weight(self, violation: Violation) -> float:
        return self.severity_weights[violation.severity.value] * violation.confidence

    def compute(self, violations: Sequence[Violation]) -> int:
        """
        Compute risk score.

        Args:
            violations: Full violation list of a session

        Returns:
            Risk score (0-100, higher is riskier)
        """
        if not violations:
            return 0

        ordered = sorted(violations, key=lambda v: (v.timestamp, -self.weight(v)))
        total = 0.0
        peak = 0.0
        for count, violation in enumerate(ordered, start=1):
            total += self.weight(violation)
            peak = max(peak, total / count)

        score = max(0, min(100, int(round(100 * peak / self.max_weight))))
        logger.debug(f"Computed risk score: {score} from {len(violations)} violations")
        return score

    def get_level(self, score: int) -> RiskLevel:
        level = RiskLevel.MINIMAL
        for minimum, band in self.LEVEL_BANDS:
            if score >= minimum:
                level = band
        return level

    def compute_breakdown(self, violations: Sequence[Violation]) -> Dict[str, Any]:
        """Summed weight and count per violation type"""
        breakdown: Dict[str, Any] = {}
        for violation in violations:
            name = violation_type_name(violation.type)
            entry = breakdown.setdefault(name, {"count": 0, "weight": 0.0, "max_severity": "low"})
            entry["count"] += 1
            entry["weight"] = round(entry["weight"] + self.weight(violation), 4)
            if self.severity_weights[violation.severity.value] > self.severity_weights[entry["max_severity"]]:
                entry["max_severity"] = violation.severity.value
        return breakdown

    def requires_review(self, violations: Sequence[Violation], score: int) -> bool:
        if any(v.auto_block for v in violations):
            return True
        if score >= self.REVIEW_SCORE_THRESHOLD:
            return True
        flagged = [v for v in violations if v.tier in (ViolationTier.BLOCK, ViolationTier.REVIEW)]
        return len(flagged) >= self.MIN_FLAGS_FOR_REVIEW

    def get_review_priority(self, violations: Sequence[Violation], score: int) -> str:
        """
        Returns:
            'urgent', 'high', 'normal', or 'low'
        """
        if any(v.auto_block for v in violations):
            return "urgent"
        if score >= self.REVIEW_SCORE_THRESHOLD:
            return "urgent"
        if score >= 40:
            return "high"
        if len(violations) >= 3:
            return "high"
        if violations:
            return "normal"
        return "low"

    def assess(self, violations: Sequence[Violation], elapsed_seconds: Optional[float] = None) -> RiskScore:
        """
        Full risk assessment.

        Args:
            violations: Full violation list of a session
            elapsed_seconds: Monitored duration, used for the violation rate

        Returns:
            RiskScore
        """
        violations = list(violations)
        score = self.compute(violations)
        level = self.get_level(score)
        rate = None
        if elapsed_seconds and elapsed_seconds > 0:
            rate = round(len(violations) / (elapsed_seconds / 60.0), 2)

        return RiskScore(
            score=score,
            level=level,
            recommendation=self.RECOMMENDATIONS[level],
            review_required=self.requires_review(violations, score),
            review_priority=self.get_review_priority(violations, score),
            violation_count=len(violations),
            auto_block=any(v.auto_block for v in violations),
            breakdown=self.compute_breakdown(violations),
            violations_per_minute=rate,
        )


def aggregate_risk(violations: Sequence[Violation], elapsed_seconds: Optional[float] = None) -> RiskScore:
    """Risk assessment with default weights"""
    return RiskAggregator().assess(violations, elapsed_seconds)
