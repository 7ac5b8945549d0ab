"""
Scoring Module

Deterministic weighted scoring of per-criterion checks.

Usage:
    from certeval.scoring import score

    result = score(checks, criteria, threshold=70)
"""

from .engine import (
    Normalization,
    ScoreBreakdown,
    ScoreResult,
    resolve_required,
    resolve_weight,
    score,
)

__all__ = [
    "Normalization",
    "ScoreBreakdown",
    "ScoreResult",
    "resolve_required",
    "resolve_weight",
    "score",
]
