"""
Scoring engine.

Turns per-criterion checks into a 0-100 score and a pass/fail verdict.
Pure and deterministic: no I/O, no clock, no randomness.

Weights resolve per check in this order: the weight on the check, the
weight recorded for that criterion in the criteria map, then 0. The raw
weighted sum is then scaled one of three ways:

    0 < total weight <= 1   score = weighted_sum * 100
    total weight > 1        score = weighted_sum / total_weight * 100
    total weight == 0       score = passed_count / check_count * 100

The verdict needs both score >= threshold and every required check passed.

Usage:
    result = score(checks, {"expiryDate": {"weight": 1.0, "required": True}})
    print(result.overall_score, result.passed)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from certeval.criteria.schema import (
    DEFAULT_THRESHOLD,
    criterion_required,
    criterion_weight,
    normalize_threshold,
)
from certeval.storage.records import CriterionCheck

_EPSILON = 1e-9

CheckLike = Union[CriterionCheck, Mapping[str, Any]]


class Normalization(Enum):
    """How the weighted sum was mapped onto 0-100."""

    WEIGHTED = "weighted"
    PROPORTIONAL = "proportional"
    UNWEIGHTED = "unweighted"
    EMPTY = "empty"


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-check contribution to the overall score."""

    criterion: str
    weight: float
    passed: bool
    required: bool
    contribution: float  # weight if passed else 0
    sub_score: float  # weight * 100 if passed else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criterion": self.criterion,
            "weight": self.weight,
            "passed": self.passed,
            "required": self.required,
            "contribution": self.contribution,
            "sub_score": self.sub_score,
        }


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring one set of checks."""

    overall_score: float
    passed: bool
    threshold: float
    threshold_passed: bool
    required_passed: bool
    total_weight: float
    weighted_sum: float
    passed_count: int
    total_count: int
    normalization: Normalization
    breakdown: List[ScoreBreakdown] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return self.total_count - self.passed_count

    @property
    def failed_required(self) -> List[str]:
        return [b.criterion for b in self.breakdown if b.required and not b.passed]

    @property
    def message(self) -> str:
        """Human-readable summary used in results replies."""
        lines = [
            f"Overall Score: {self.overall_score:.2f}/100 (Threshold: {self.threshold:g})",
            f"{self.passed_count} of {self.total_count} criteria passed",
            "Certificate PASSED" if self.passed else "Certificate FAILED",
        ]
        if not self.required_passed:
            lines.append("Note: Some required criteria failed.")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "passed": self.passed,
            "threshold": self.threshold,
            "threshold_passed": self.threshold_passed,
            "required_passed": self.required_passed,
            "total_weight": self.total_weight,
            "weighted_sum": self.weighted_sum,
            "passed_count": self.passed_count,
            "total_count": self.total_count,
            "normalization": self.normalization.value,
            "breakdown": [b.to_dict() for b in self.breakdown],
            "message": self.message,
        }


def _as_check(check: CheckLike) -> CriterionCheck:
    if isinstance(check, CriterionCheck):
        return check
    return CriterionCheck.from_dict(dict(check))


def resolve_weight(check: CriterionCheck, criteria: Mapping[str, Any]) -> float:
    if check.weight is not None:
        return float(check.weight)
    if check.criterion in criteria:
        return criterion_weight(criteria[check.criterion])
    return 0.0


def resolve_required(check: CriterionCheck, criteria: Mapping[str, Any]) -> bool:
    if check.required is not None:
        return bool(check.required)
    if check.criterion in criteria:
        return criterion_required(criteria[check.criterion])
    return True


def score(
    checks: Iterable[CheckLike],
    criteria: Optional[Mapping[str, Any]] = None,
    threshold: Optional[float] = DEFAULT_THRESHOLD,
) -> ScoreResult:
    """Score checks against criteria weights and a pass threshold."""
    criteria = criteria or {}
    threshold = normalize_threshold(threshold)

    breakdown: List[ScoreBreakdown] = []
    for raw in checks:
        check = _as_check(raw)
        weight = resolve_weight(check, criteria)
        passed = check.passed is True
        breakdown.append(
            ScoreBreakdown(
                criterion=check.criterion,
                weight=weight,
                passed=passed,
                required=resolve_required(check, criteria),
                contribution=weight if passed else 0.0,
                sub_score=weight * 100 if passed else 0.0,
            )
        )

    total_weight = sum(b.weight for b in breakdown)
    weighted_sum = sum(b.contribution for b in breakdown)
    passed_count = sum(1 for b in breakdown if b.passed)
    total_count = len(breakdown)

    if total_count == 0:
        raw_score, normalization = 0.0, Normalization.EMPTY
    elif total_weight <= 0:
        raw_score, normalization = passed_count / total_count * 100, Normalization.UNWEIGHTED
    elif total_weight <= 1.0 + _EPSILON:
        raw_score, normalization = weighted_sum * 100, Normalization.WEIGHTED
    else:
        raw_score, normalization = weighted_sum / total_weight * 100, Normalization.PROPORTIONAL

    overall = round(min(100.0, max(0.0, raw_score)), 2)
    threshold_passed = overall >= threshold
    required_passed = all(b.passed for b in breakdown if b.required)

    return ScoreResult(
        overall_score=overall,
        passed=threshold_passed and required_passed,
        threshold=threshold,
        threshold_passed=threshold_passed,
        required_passed=required_passed,
        total_weight=total_weight,
        weighted_sum=weighted_sum,
        passed_count=passed_count,
        total_count=total_count,
        normalization=normalization,
        breakdown=breakdown,
    )
