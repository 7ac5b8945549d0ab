"""
Persistence for sessions, criteria versions and evaluations.

Stores sit on an injected StorageBackend so they run the same against the
in-memory backend (tests, one-off CLI runs) and the JSON file backend.
"""

from .backend import InMemoryBackend, JsonFileBackend, StorageBackend
from .criteria_store import CriteriaStore
from .evaluation_store import EvaluationStore
from .records import (
    CheckChange,
    Comparison,
    CriteriaSet,
    CriterionCheck,
    Document,
    Evaluation,
    Session,
    Turn,
)
from .sessions import SessionStore

__all__ = [
    "CheckChange",
    "Comparison",
    "CriteriaSet",
    "CriteriaStore",
    "CriterionCheck",
    "Document",
    "Evaluation",
    "EvaluationStore",
    "InMemoryBackend",
    "JsonFileBackend",
    "Session",
    "SessionStore",
    "StorageBackend",
    "Turn",
]
