"""
Criteria store.

store() always creates a new version; update() rewrites one version in
place and is reserved for re-evaluations that explicitly ask for it. The
latest version for a session is the most recently created one.
"""

import logging
from typing import Any, List, Mapping, Optional

from certeval.criteria.schema import DEFAULT_THRESHOLD, normalize_threshold, validate_criteria_map
from certeval.storage.backend import StorageBackend
from certeval.storage.records import CriteriaSet, new_id, utc_now
from certeval.storage.sessions import SessionStore
from utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)

TABLE = "criteria"


class CriteriaStore:
    """Versioned criteria sets addressed by session."""

    def __init__(
        self,
        backend: StorageBackend,
        sessions: SessionStore,
        default_threshold: float = DEFAULT_THRESHOLD,
    ):
        self.backend = backend
        self.sessions = sessions
        self.default_threshold = normalize_threshold(default_threshold)

    def store(
        self,
        session_id: str,
        criteria: Mapping[str, Any],
        description: str = "",
        threshold: Optional[float] = None,
    ) -> CriteriaSet:
        """
        Create a new criteria version for a session.

        Raises:
            ValidationError: criteria is not a mapping of objects with valid weights.
        """
        criteria = validate_criteria_map(criteria)
        threshold = self.default_threshold if threshold is None else normalize_threshold(threshold)
        self.sessions.ensure(session_id)

        record = CriteriaSet(
            id=new_id(),
            session_id=session_id,
            criteria=criteria,
            description=description or "",
            threshold=threshold,
        )
        stored = CriteriaSet.from_dict(self.backend.insert(TABLE, record.to_dict()))
        logger.info(
            f"Stored criteria {stored.id} for session {session_id} "
            f"({len(criteria)} criteria, threshold {threshold:g})"
        )
        return stored

    def get_latest(self, session_id: str) -> Optional[CriteriaSet]:
        history = self.list_history(session_id)
        return history[0] if history else None

    def get_by_id(self, criteria_id: str) -> Optional[CriteriaSet]:
        data = self.backend.get(TABLE, criteria_id)
        return CriteriaSet.from_dict(data) if data else None

    def require(self, criteria_id: str) -> CriteriaSet:
        found = self.get_by_id(criteria_id)
        if found is None:
            raise NotFoundError(f"Criteria {criteria_id} not found")
        return found

    def update(
        self,
        criteria_id: str,
        criteria: Mapping[str, Any],
        description: Optional[str] = None,
        threshold: Optional[float] = None,
        expected_version: Optional[int] = None,
    ) -> CriteriaSet:
        """
        Overwrite an existing version in place.

        description/threshold left as None keep their stored values.
        expected_version defaults to the version read here, so a concurrent
        write between read and replace raises ConflictError.

        Raises:
            NotFoundError: Unknown criteria id.
            ValidationError: Invalid criteria map or threshold.
            ConflictError: The record changed since it was read.
        """
        current = self.require(criteria_id)
        criteria = validate_criteria_map(criteria)
        new_threshold = current.threshold if threshold is None else normalize_threshold(threshold)
        self.sessions.ensure(current.session_id)

        current.criteria = criteria
        if description is not None:
            current.description = description
        current.threshold = new_threshold
        current.updated_at = utc_now()

        version = current.version if expected_version is None else expected_version
        updated = CriteriaSet.from_dict(
            self.backend.replace(TABLE, current.to_dict(), expected_version=version)
        )
        logger.info(f"Updated criteria {criteria_id} in place (version {updated.version})")
        return updated

    def list_history(self, session_id: str) -> List[CriteriaSet]:
        """All versions for a session, newest first."""
        rows = self.backend.scan(TABLE, lambda r: r["session_id"] == session_id)
        return [CriteriaSet.from_dict(r) for r in sorted(rows, key=lambda r: r["sequence"], reverse=True)]

    def delete(self, criteria_id: str, expected_version: Optional[int] = None) -> CriteriaSet:
        """
        Remove a criteria version.

        Raises:
            NotFoundError: Unknown criteria id.
            ConflictError: expected_version given and stale.
        """
        removed = CriteriaSet.from_dict(self.backend.delete(TABLE, criteria_id, expected_version))
        logger.info(f"Deleted criteria {criteria_id}")
        return removed
