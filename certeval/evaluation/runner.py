"""
Evaluation runner.

Ties the validation executor, the scoring engine and the stores together:

- run(): validate a stored criteria set, score it, persist the Evaluation
- reevaluate(): merge criteria updates into an existing version, persist the
  merge according to `persist`, run, and compare with the previous
  evaluation for the same session/document

Persist modes for reevaluate():
    "version"  store the merge as a new criteria version (default)
    "update"   overwrite the addressed version in place
    "none"     use the merge for this run only; the evaluation still
               references the addressed version but snapshots the merge
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from certeval.criteria.merge import deep_merge
from certeval.criteria.schema import normalize_threshold, validate_criteria_map
from certeval.evaluation.executor import ValidationExecutor, ValidationOutcome
from certeval.scoring.engine import ScoreResult, score
from certeval.storage.criteria_store import CriteriaStore
from certeval.storage.evaluation_store import EvaluationStore
from certeval.storage.records import Comparison, CriteriaSet, Evaluation
from utils.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PERSIST_MODES = ("version", "update", "none")


@dataclass
class RunResult:
    """One completed validation + scoring run."""

    criteria_set: CriteriaSet
    outcome: ValidationOutcome
    score: ScoreResult
    evaluation: Evaluation
    previous: Optional[Evaluation] = None
    comparison: Optional[Comparison] = None

    def to_dict(self) -> dict:
        return {
            "criteria_id": self.criteria_set.id,
            "evaluation": self.evaluation.to_dict(),
            "score": self.score.to_dict(),
            "pre_score_passed": self.outcome.passed,
            "comparison": self.comparison.to_dict() if self.comparison else None,
        }


class EvaluationRunner:
    """
    Run and re-run evaluations for a session.

    Usage:
        runner = EvaluationRunner(executor, criteria_store, evaluation_store)
        result = await runner.run(criteria_set, document_id)
        again = await runner.reevaluate(session_id, {"expiryDate": {"weight": 0.6}})
    """

    def __init__(
        self,
        executor: ValidationExecutor,
        criteria_store: CriteriaStore,
        evaluation_store: EvaluationStore,
    ):
        self.executor = executor
        self.criteria_store = criteria_store
        self.evaluation_store = evaluation_store

    async def run(
        self,
        criteria_set: CriteriaSet,
        document_id: Optional[str] = None,
        stored_criteria_id: Optional[str] = None,
    ) -> RunResult:
        """
        Validate, score and persist.

        stored_criteria_id is the version the evaluation references when
        criteria_set is an unpersisted working copy.

        Raises:
            ValidationError, CollaboratorError, ParseError: from validation.
                Nothing is persisted in those cases.
        """
        previous = self.evaluation_store.get_latest(criteria_set.session_id, document_id)
        outcome = await self.executor.evaluate(criteria_set, document_id)
        result = score(outcome.checks, criteria_set.criteria, criteria_set.threshold)

        evaluation = self.evaluation_store.save(
            session_id=criteria_set.session_id,
            criteria_id=stored_criteria_id or criteria_set.id,
            checks=outcome.checks,
            score=result.overall_score,
            passed=result.passed,
            document_id=document_id,
            evidence=outcome.evidence,
            criteria_snapshot=criteria_set.criteria,
            threshold=criteria_set.threshold,
        )

        comparison = None
        if previous is not None:
            comparison = self.evaluation_store.compare(previous.id, evaluation.id)

        return RunResult(
            criteria_set=criteria_set,
            outcome=outcome,
            score=result,
            evaluation=evaluation,
            previous=previous,
            comparison=comparison,
        )

    async def reevaluate(
        self,
        session_id: str,
        criteria_updates: Optional[Mapping[str, Any]] = None,
        criteria_id: Optional[str] = None,
        document_id: Optional[str] = None,
        persist: str = "version",
        threshold: Optional[float] = None,
    ) -> RunResult:
        """
        Merge updates into existing criteria and evaluate again.

        Raises:
            NotFoundError: No criteria to start from.
            ValidationError: Bad persist mode or invalid merged criteria.
        """
        if persist not in PERSIST_MODES:
            raise ValidationError(f"persist must be one of {PERSIST_MODES}, got {persist!r}")

        if criteria_id:
            base = self.criteria_store.require(criteria_id)
        else:
            base = self.criteria_store.get_latest(session_id)
            if base is None:
                raise NotFoundError(f"No criteria stored for session {session_id}")

        updates = dict(criteria_updates or {})
        merged = deep_merge(base.criteria, updates)
        changed = bool(updates) or threshold is not None

        if not changed:
            working = base
        elif persist == "version":
            working = self.criteria_store.store(
                session_id,
                merged,
                base.description,
                base.threshold if threshold is None else threshold,
            )
        elif persist == "update":
            working = self.criteria_store.update(base.id, merged, threshold=threshold)
        else:
            working = CriteriaSet(
                id=base.id,
                session_id=base.session_id,
                criteria=validate_criteria_map(merged),
                description=base.description,
                threshold=base.threshold if threshold is None else normalize_threshold(threshold),
            )

        logger.info(
            f"Re-evaluating session {session_id} with criteria {working.id} "
            f"(updated keys: {sorted(updates) or 'none'}, persist={persist})"
        )
        return await self.run(working, document_id, stored_criteria_id=base.id if persist == "none" else None)
