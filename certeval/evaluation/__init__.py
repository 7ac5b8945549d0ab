"""
Evaluation Module

Validation of criteria against document content, and the runner that
scores, persists and compares evaluations.

Usage:
    from certeval.evaluation import EvaluationRunner, ValidationExecutor

    executor = ValidationExecutor(llm, retriever)
    runner = EvaluationRunner(executor, criteria_store, evaluation_store)
    result = await runner.run(criteria_set)
"""

from .executor import (
    NO_INFORMATION_REASON,
    ValidationExecutor,
    ValidationOutcome,
    build_queries,
    describe_criteria,
    normalize_confidence,
)
from .runner import PERSIST_MODES, EvaluationRunner, RunResult

__all__ = [
    "NO_INFORMATION_REASON",
    "PERSIST_MODES",
    "EvaluationRunner",
    "RunResult",
    "ValidationExecutor",
    "ValidationOutcome",
    "build_queries",
    "describe_criteria",
    "normalize_confidence",
]
