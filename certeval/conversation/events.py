"""
Events fed into the transition function, and the effects it emits.

Events are what the orchestrator perceived in a turn, after any
collaborator calls (routing, criteria extraction, validation) have run.
Effects are the session mutations and replies the orchestrator applies
afterwards.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from certeval.evaluation.runner import RunResult
from certeval.storage.records import CriteriaSet


# -- Events -------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentReceived:
    document_id: str
    name: str
    index: int


@dataclass(frozen=True)
class DocumentRejected:
    reason: str


@dataclass(frozen=True)
class UserMessage:
    """A text turn the orchestrator did not need to interpret further."""

    text: str


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class RestartRequested:
    pass


@dataclass(frozen=True)
class SmallTalk:
    reply: str


@dataclass(frozen=True)
class CriteriaProposed:
    criteria: Dict[str, Any]
    description: str = ""
    threshold: Optional[float] = None
    source: str = "model"


@dataclass(frozen=True)
class CriteriaGenerated:
    criteria_set: CriteriaSet


@dataclass(frozen=True)
class CriteriaUnclear:
    pass


@dataclass(frozen=True)
class CriteriaRejected:
    message: str


@dataclass(frozen=True)
class CriteriaResetRequested:
    pass


@dataclass(frozen=True)
class ValidationCompleted:
    result: RunResult


@dataclass(frozen=True)
class ReevaluationCompleted:
    result: RunResult


@dataclass(frozen=True)
class ValidationFailed:
    kind: str  # "retry" (collaborator/parse trouble) or "invalid" (criteria unusable)
    message: str = ""


@dataclass(frozen=True)
class ResultsQuestion:
    answer: str


Event = Union[
    DocumentReceived,
    DocumentRejected,
    UserMessage,
    StopRequested,
    RestartRequested,
    SmallTalk,
    CriteriaProposed,
    CriteriaGenerated,
    CriteriaUnclear,
    CriteriaRejected,
    CriteriaResetRequested,
    ValidationCompleted,
    ReevaluationCompleted,
    ValidationFailed,
    ResultsQuestion,
]


# -- Effects ------------------------------------------------------------------


@dataclass(frozen=True)
class Reply:
    key: str
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ClearEvaluation:
    """Forget the last validation result and extracted fields."""


@dataclass(frozen=True)
class DiscardCriteria:
    """Detach the active criteria version (stored versions are kept)."""


@dataclass(frozen=True)
class PersistCriteria:
    criteria: Dict[str, Any]
    description: str = ""
    threshold: Optional[float] = None


@dataclass(frozen=True)
class SetCriteria:
    criteria_id: str


@dataclass(frozen=True)
class AdoptEvaluation:
    evaluation_id: str
    extracted_fields: Dict[str, Any] = field(default_factory=dict)


Effect = Union[Reply, ClearEvaluation, DiscardCriteria, PersistCriteria, SetCriteria, AdoptEvaluation]
