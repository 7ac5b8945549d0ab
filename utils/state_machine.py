"""
State Machine

Generic finite state machine guard with transition history. The machine
does not decide where to go; callers compute the next state and the
machine enforces the allowed-transitions table and records what happened.

Usage:
    from enum import Enum

    class Status(Enum):
        IDLE = "idle"
        BUSY = "busy"

    sm = StateMachine(Status.IDLE, allowed_transitions={Status.IDLE: [Status.BUSY]})
    sm.transition_to(Status.BUSY, reason="user request")
    print(sm.state)    # Status.BUSY
    print(sm.history)  # list of StateTransition records
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from utils.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)


@dataclass
class StateTransition(Generic[S]):
    """Records a single state transition."""

    from_state: S
    to_state: S
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], state_type: Type[S]) -> "StateTransition[S]":
        return cls(
            from_state=state_type(data["from"]),
            to_state=state_type(data["to"]),
            reason=data.get("reason", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class StateMachine(Generic[S]):
    """
    Enum-based state machine with transition history.

    Features:
    - Duplicate transitions are no-ops
    - Optional allowed_transitions map for enforcement (violations raise)
    - Rolling history (configurable max size)
    """

    def __init__(
        self,
        initial_state: S,
        allowed_transitions: Optional[Dict[S, List[S]]] = None,
        history: Optional[List[StateTransition[S]]] = None,
        max_history: int = 100,
    ):
        """
        Args:
            initial_state: The starting state.
            allowed_transitions: Optional dict mapping each state to its valid
                                 target states. If None, all transitions allowed.
            history: Previously recorded transitions to continue from.
            max_history: Max number of transitions to keep in history.
        """
        self._state: S = initial_state
        self._allowed = allowed_transitions
        self._max_history = max_history
        self._history: List[StateTransition[S]] = list(history or [])

    @property
    def state(self) -> S:
        """Current state."""
        return self._state

    @property
    def history(self) -> List[StateTransition[S]]:
        """Transition history (read-only copy)."""
        return list(self._history)

    def can_transition(self, new_state: S) -> bool:
        """Whether moving to new_state is permitted from the current state."""
        if new_state == self._state or self._allowed is None:
            return True
        return new_state in self._allowed.get(self._state, [])

    def transition_to(self, new_state: S, reason: str = "") -> bool:
        """
        Transition to a new state.

        Returns:
            True if the transition occurred, False if it was a duplicate.

        Raises:
            InvalidTransitionError: If the allowed-transitions table forbids it.
        """
        if new_state == self._state:
            return False

        if not self.can_transition(new_state):
            allowed = self._allowed.get(self._state, []) if self._allowed else []
            raise InvalidTransitionError(
                f"Invalid transition: {self._state.name} -> {new_state.name} "
                f"(allowed: {[s.name for s in allowed]})"
            )

        old_state = self._state
        self._state = new_state
        self._history.append(StateTransition(from_state=old_state, to_state=new_state, reason=reason))

        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        logger.info(f"State: {old_state.name} -> {new_state.name} ({reason})")
        return True
