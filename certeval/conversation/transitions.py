"""
Conversation transition function.

transition(state, event) -> Transition is pure: it decides the next status,
whether the conversation continues, and which effects to apply. It never
performs I/O; the orchestrator has already run any collaborator calls and
encoded their outcome in the event.

Rules, checked in this order:

1. A halted conversation (after "stop") only answers RestartRequested.
2. A document arrival always lands in AWAITING_CRITERIA, clearing the
   previous result, and discarding criteria if a document replaces another.
3. Stop/restart/small talk are answered in place from any status.
4. Without a document nothing else can happen: the user is asked to upload.
5. Status-specific events move along the upload -> criteria -> validation flow.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from certeval.conversation.events import (
    AdoptEvaluation,
    ClearEvaluation,
    CriteriaGenerated,
    CriteriaProposed,
    CriteriaRejected,
    CriteriaResetRequested,
    CriteriaUnclear,
    DiscardCriteria,
    DocumentReceived,
    DocumentRejected,
    Effect,
    Event,
    PersistCriteria,
    ReevaluationCompleted,
    Reply,
    RestartRequested,
    ResultsQuestion,
    SetCriteria,
    SmallTalk,
    StopRequested,
    ValidationCompleted,
    ValidationFailed,
)
from certeval.conversation.status import SessionStatus
from certeval.evaluation.runner import RunResult


@dataclass(frozen=True)
class ConversationState:
    """The slice of a session the transition function reads."""

    status: SessionStatus = SessionStatus.AWAITING_UPLOAD
    should_continue: bool = True
    has_document: bool = False
    has_criteria: bool = False


@dataclass(frozen=True)
class Transition:
    status: SessionStatus
    should_continue: bool
    effects: Tuple[Effect, ...]
    reason: str = ""

    @property
    def replies(self) -> Tuple[Reply, ...]:
        return tuple(e for e in self.effects if isinstance(e, Reply))


def _stay(state: ConversationState, *effects: Effect, reason: str = "") -> Transition:
    return Transition(state.status, state.should_continue, tuple(effects), reason)


def _move(
    state: ConversationState, status: SessionStatus, *effects: Effect, reason: str = ""
) -> Transition:
    return Transition(status, state.should_continue, tuple(effects), reason)


def extracted_fields(result: RunResult) -> Dict[str, Any]:
    return {c.criterion: c.found for c in result.evaluation.checks if c.found is not None}


def transition(state: ConversationState, event: Event) -> Transition:
    """Compute the next status and effects for one perceived turn."""
    if not state.should_continue:
        if isinstance(event, RestartRequested):
            return Transition(
                state.status, True, (Reply("restarted", {"status": state.status.value}),), "restart"
            )
        return _stay(state, Reply("halted"), reason="halted")

    if isinstance(event, DocumentReceived):
        context = {"name": event.name, "index": event.index}
        if state.has_criteria:
            effects = (ClearEvaluation(), DiscardCriteria(), Reply("document_replaced", context))
        else:
            effects = (ClearEvaluation(), Reply("document_received", context))
        return Transition(SessionStatus.AWAITING_CRITERIA, True, effects, "document uploaded")

    if isinstance(event, DocumentRejected):
        return _stay(state, Reply("document_rejected", {"reason": event.reason}), reason="upload failed")

    if isinstance(event, StopRequested):
        return Transition(state.status, False, (Reply("goodbye"),), "stop requested")

    if isinstance(event, RestartRequested):
        return _stay(state, Reply("restarted", {"status": state.status.value}), reason="restart")

    if isinstance(event, SmallTalk):
        return _stay(state, Reply("general", {"text": event.reply}), reason="small talk")

    if state.status == SessionStatus.AWAITING_UPLOAD or not state.has_document:
        return _stay(state, Reply("upload_required"), reason="no document")

    if state.status == SessionStatus.AWAITING_CRITERIA:
        if isinstance(event, CriteriaProposed):
            return _move(
                state,
                SessionStatus.READY_TO_VALIDATE,
                PersistCriteria(event.criteria, event.description, event.threshold),
                Reply(
                    "criteria_accepted",
                    {
                        "criteria": event.criteria,
                        "description": event.description,
                        "threshold": event.threshold,
                        "source": event.source,
                    },
                ),
                reason=f"criteria from {event.source}",
            )
        if isinstance(event, CriteriaGenerated):
            return _move(
                state,
                SessionStatus.READY_TO_VALIDATE,
                SetCriteria(event.criteria_set.id),
                Reply("criteria_generated", {"criteria_set": event.criteria_set}),
                reason="criteria generated",
            )
        if isinstance(event, CriteriaUnclear):
            return _stay(state, Reply("criteria_unclear"), reason="criteria unclear")
        if isinstance(event, CriteriaRejected):
            return _stay(state, Reply("criteria_invalid", {"message": event.message}), reason="criteria invalid")

    if state.status == SessionStatus.READY_TO_VALIDATE:
        if isinstance(event, ValidationCompleted):
            return _move(
                state,
                SessionStatus.VALIDATED,
                AdoptEvaluation(event.result.evaluation.id, extracted_fields(event.result)),
                Reply("results", {"result": event.result}),
                reason="validation completed",
            )
        if isinstance(event, ValidationFailed):
            if event.kind == "invalid":
                return _move(
                    state,
                    SessionStatus.AWAITING_CRITERIA,
                    DiscardCriteria(),
                    Reply("criteria_invalid", {"message": event.message}),
                    reason="criteria unusable",
                )
            return _stay(state, Reply("validation_retry", {"message": event.message}), reason="validation failed")

    if state.status == SessionStatus.VALIDATED:
        if isinstance(event, ResultsQuestion):
            return _stay(state, Reply("results_answer", {"text": event.answer}), reason="results question")
        if isinstance(event, CriteriaResetRequested):
            return _move(
                state,
                SessionStatus.AWAITING_CRITERIA,
                DiscardCriteria(),
                ClearEvaluation(),
                Reply("criteria_reset"),
                reason="new criteria requested",
            )
        if isinstance(event, ReevaluationCompleted):
            return _stay(
                state,
                SetCriteria(event.result.criteria_set.id),
                AdoptEvaluation(event.result.evaluation.id, extracted_fields(event.result)),
                Reply("reevaluation", {"result": event.result}),
                reason="re-evaluated",
            )
        if isinstance(event, ValidationFailed):
            key = "criteria_invalid" if event.kind == "invalid" else "validation_retry"
            return _stay(state, Reply(key, {"message": event.message}), reason="re-evaluation failed")

    return _stay(state, Reply("not_now", {"status": state.status.value}), reason="event not applicable")
