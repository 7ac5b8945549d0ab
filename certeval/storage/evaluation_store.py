"""
Evaluation store.

Evaluations are append-only: save() inserts a new immutable record that
references one criteria version and snapshots its mapping. History is
listed newest first.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional

from certeval.criteria.merge import changed_keys
from certeval.storage.backend import StorageBackend
from certeval.storage.criteria_store import CriteriaStore
from certeval.storage.records import CheckChange, Comparison, CriterionCheck, Evaluation
from certeval.storage.records import new_id as new_record_id
from utils.exceptions import NotFoundError
from utils.logging_config import log_performance

logger = logging.getLogger(__name__)

TABLE = "evaluations"


class EvaluationStore:
    """Persistence, history and diffing for evaluation runs."""

    def __init__(self, backend: StorageBackend, criteria: CriteriaStore):
        self.backend = backend
        self.criteria = criteria

    def save(
        self,
        session_id: str,
        criteria_id: str,
        checks: Iterable[CriterionCheck],
        score: float,
        passed: bool,
        document_id: Optional[str] = None,
        evidence: Iterable[str] = (),
        criteria_snapshot: Optional[Mapping[str, Any]] = None,
        threshold: Optional[float] = None,
    ) -> Evaluation:
        """
        Persist a scoring run.

        criteria_snapshot/threshold default to the stored criteria version;
        pass them when the run used an unpersisted merge of that version.

        Raises:
            NotFoundError: criteria_id does not resolve.
        """
        criteria_set = self.criteria.require(criteria_id)
        evaluation = Evaluation(
            id=new_record_id(),
            session_id=session_id,
            criteria_id=criteria_id,
            document_id=document_id,
            checks=tuple(checks),
            score=float(score),
            passed=bool(passed),
            threshold=criteria_set.threshold if threshold is None else float(threshold),
            criteria_snapshot=dict(criteria_set.criteria if criteria_snapshot is None else criteria_snapshot),
            evidence=tuple(evidence),
        )
        saved = Evaluation.from_dict(self.backend.insert(TABLE, evaluation.to_dict()))
        logger.info(
            f"Saved evaluation {saved.id} for session {session_id}: "
            f"score {saved.score:.2f}, {'PASSED' if saved.passed else 'FAILED'}"
        )
        return saved

    def get_by_id(self, evaluation_id: str) -> Optional[Evaluation]:
        data = self.backend.get(TABLE, evaluation_id)
        return Evaluation.from_dict(data) if data else None

    def require(self, evaluation_id: str) -> Evaluation:
        found = self.get_by_id(evaluation_id)
        if found is None:
            raise NotFoundError(f"Evaluation {evaluation_id} not found")
        return found

    def get_history(self, session_id: str, document_id: Optional[str] = None) -> List[Evaluation]:
        """Evaluations for a session (optionally one document), newest first."""

        def matches(row) -> bool:
            if row["session_id"] != session_id:
                return False
            return document_id is None or row.get("document_id") == document_id

        rows = self.backend.scan(TABLE, matches)
        return [Evaluation.from_dict(r) for r in sorted(rows, key=lambda r: r["sequence"], reverse=True)]

    def get_latest(self, session_id: str, document_id: Optional[str] = None) -> Optional[Evaluation]:
        history = self.get_history(session_id, document_id)
        return history[0] if history else None

    @log_performance()
    def compare(self, old_id: str, new_id: str) -> Comparison:
        """
        Diff two evaluations.

        criteria_modified comes from the criteria snapshots; check changes
        are aligned by position, not by name.

        Raises:
            NotFoundError: Either id is unknown.
        """
        old = self.require(old_id)
        new = self.require(new_id)

        check_changes = tuple(
            CheckChange(
                criterion=new_check.criterion,
                passed_changed=old_check.passed != new_check.passed,
                previous_passed=old_check.passed,
                new_passed=new_check.passed,
            )
            for old_check, new_check in zip(old.checks, new.checks)
        )

        return Comparison(
            old_id=old.id,
            new_id=new.id,
            criteria_modified=tuple(changed_keys(old.criteria_snapshot, new.criteria_snapshot)),
            score_delta=round(new.score - old.score, 2),
            status_changed=old.passed != new.passed,
            previous_passed=old.passed,
            new_passed=new.passed,
            check_changes=check_changes,
        )
