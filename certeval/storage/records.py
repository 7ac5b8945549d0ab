"""
Persisted record types.

Every record round-trips through to_dict()/from_dict() as plain JSON
values. `version` guards compare-and-set writes and `sequence` gives the
insertion order used for newest-first listings; both are assigned by the
storage backend.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def _parse_time(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else utc_now()


@dataclass
class Turn:
    """One message in a session transcript."""

    role: str  # "user" or "assistant"
    text: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "text": self.text, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        return cls(role=data["role"], text=data.get("text", ""), timestamp=_parse_time(data.get("timestamp")))


@dataclass
class Document:
    """An uploaded artifact. `index` is 1-based and never reused within a session."""

    id: str
    session_id: str
    name: str
    index: int
    mime_type: str = "application/octet-stream"
    uploaded_at: datetime = field(default_factory=utc_now)
    text_ref: Optional[str] = None
    removed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "index": self.index,
            "mime_type": self.mime_type,
            "uploaded_at": self.uploaded_at.isoformat(),
            "text_ref": self.text_ref,
            "removed": self.removed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            name=data.get("name", ""),
            index=int(data["index"]),
            mime_type=data.get("mime_type", "application/octet-stream"),
            uploaded_at=_parse_time(data.get("uploaded_at")),
            text_ref=data.get("text_ref"),
            removed=bool(data.get("removed", False)),
        )


@dataclass
class Session:
    """
    One user's ongoing interaction.

    `status` holds the conversation status value as a string so the storage
    layer stays independent of the conversation package.
    """

    id: str
    status: str = "awaiting_upload"
    turns: List[Turn] = field(default_factory=list)
    documents: List[Document] = field(default_factory=list)
    next_document_index: int = 1
    current_document_id: Optional[str] = None
    criteria_id: Optional[str] = None
    evaluation_id: Optional[str] = None
    extracted_fields: Dict[str, Any] = field(default_factory=dict)
    should_continue: bool = True
    transitions: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 0
    sequence: int = 0

    def recent_turns(self, window: int) -> List[Turn]:
        if window <= 0:
            return []
        return self.turns[-window:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "turns": [t.to_dict() for t in self.turns],
            "documents": [d.to_dict() for d in self.documents],
            "next_document_index": self.next_document_index,
            "current_document_id": self.current_document_id,
            "criteria_id": self.criteria_id,
            "evaluation_id": self.evaluation_id,
            "extracted_fields": dict(self.extracted_fields),
            "should_continue": self.should_continue,
            "transitions": list(self.transitions),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data["id"],
            status=data.get("status", "awaiting_upload"),
            turns=[Turn.from_dict(t) for t in data.get("turns", [])],
            documents=[Document.from_dict(d) for d in data.get("documents", [])],
            next_document_index=int(data.get("next_document_index", 1)),
            current_document_id=data.get("current_document_id"),
            criteria_id=data.get("criteria_id"),
            evaluation_id=data.get("evaluation_id"),
            extracted_fields=dict(data.get("extracted_fields", {})),
            should_continue=bool(data.get("should_continue", True)),
            transitions=list(data.get("transitions", [])),
            created_at=_parse_time(data.get("created_at")),
            updated_at=_parse_time(data.get("updated_at")),
            version=int(data.get("version", 0)),
            sequence=int(data.get("sequence", 0)),
        )


@dataclass
class CriteriaSet:
    """A versioned set of named criteria with a pass threshold."""

    id: str
    session_id: str
    criteria: Dict[str, Any]
    description: str = ""
    threshold: float = 70.0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 0
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "criteria": self.criteria,
            "description": self.description,
            "threshold": self.threshold,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CriteriaSet":
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            criteria=data.get("criteria", {}),
            description=data.get("description", ""),
            threshold=float(data.get("threshold", 70.0)),
            created_at=_parse_time(data.get("created_at")),
            updated_at=_parse_time(data.get("updated_at")),
            version=int(data.get("version", 0)),
            sequence=int(data.get("sequence", 0)),
        )


@dataclass(frozen=True)
class CriterionCheck:
    """The judged outcome of one criterion against document evidence."""

    criterion: str
    passed: bool
    expected: Any = None
    found: Any = None
    weight: Optional[float] = None
    required: Optional[bool] = None
    confidence: Optional[float] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criterion": self.criterion,
            "expected": self.expected,
            "found": self.found,
            "passed": self.passed,
            "weight": self.weight,
            "required": self.required,
            "confidence": self.confidence,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CriterionCheck":
        return cls(
            criterion=str(data["criterion"]),
            passed=bool(data.get("passed", False)),
            expected=data.get("expected"),
            found=data.get("found"),
            weight=data.get("weight"),
            required=data.get("required"),
            confidence=data.get("confidence"),
            reason=data.get("reason", "") or "",
        )


@dataclass(frozen=True)
class Evaluation:
    """
    One immutable scoring run.

    `criteria_snapshot` is the criteria mapping the run was scored against,
    kept so comparisons stay correct if the referenced version is later
    updated in place.
    """

    id: str
    session_id: str
    criteria_id: str
    checks: Tuple[CriterionCheck, ...]
    score: float
    passed: bool
    document_id: Optional[str] = None
    threshold: float = 70.0
    criteria_snapshot: Dict[str, Any] = field(default_factory=dict)
    evidence: Tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    version: int = 0
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "criteria_id": self.criteria_id,
            "document_id": self.document_id,
            "checks": [c.to_dict() for c in self.checks],
            "score": self.score,
            "passed": self.passed,
            "threshold": self.threshold,
            "criteria_snapshot": self.criteria_snapshot,
            "evidence": list(self.evidence),
            "created_at": self.created_at.isoformat(),
            "version": self.version,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Evaluation":
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            criteria_id=data["criteria_id"],
            document_id=data.get("document_id"),
            checks=tuple(CriterionCheck.from_dict(c) for c in data.get("checks", [])),
            score=float(data.get("score", 0.0)),
            passed=bool(data.get("passed", False)),
            threshold=float(data.get("threshold", 70.0)),
            criteria_snapshot=data.get("criteria_snapshot", {}),
            evidence=tuple(data.get("evidence", [])),
            created_at=_parse_time(data.get("created_at")),
            version=int(data.get("version", 0)),
            sequence=int(data.get("sequence", 0)),
        )


@dataclass(frozen=True)
class CheckChange:
    """Pass/fail movement of one criterion between two evaluations."""

    criterion: str
    passed_changed: bool
    previous_passed: Optional[bool]
    new_passed: Optional[bool]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criterion": self.criterion,
            "passed_changed": self.passed_changed,
            "previous_passed": self.previous_passed,
            "new_passed": self.new_passed,
        }


@dataclass(frozen=True)
class Comparison:
    """Difference between an older and a newer evaluation."""

    old_id: str
    new_id: str
    criteria_modified: Tuple[str, ...]
    score_delta: float
    status_changed: bool
    previous_passed: bool
    new_passed: bool
    check_changes: Tuple[CheckChange, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "old_id": self.old_id,
            "new_id": self.new_id,
            "criteria_modified": list(self.criteria_modified),
            "score_delta": self.score_delta,
            "status_changed": self.status_changed,
            "previous_passed": self.previous_passed,
            "new_passed": self.new_passed,
            "check_changes": [c.to_dict() for c in self.check_changes],
        }
