"""
Conversation orchestrator.

Advances a session by one user turn:

1. perceive: run whatever collaborator calls the turn needs (extraction,
   intent routing, criteria interpretation, validation) and reduce the
   outcome to an Event
2. decide: transition(state, event) picks the next status and effects
3. apply: enforce the move against ALLOWED_TRANSITIONS, apply the effects,
   append the transcript and save the session with compare-and-set

Turns for one session are serialised with a per-session asyncio.Lock;
different sessions run concurrently. All session state lives in the
SessionStore, so several orchestrators may share the same stores.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from certeval.collaborators.extraction import TextExtractor, guess_mime_type
from certeval.collaborators.retrieval import Retriever
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
    Event,
    PersistCriteria,
    ReevaluationCompleted,
    Reply,
    RestartRequested,
    ResultsQuestion,
    SetCriteria,
    SmallTalk,
    StopRequested,
    UserMessage,
    ValidationCompleted,
    ValidationFailed,
)
from certeval.conversation.intents import Intent, IntentRouter, RoutedIntent, is_restart, is_stop
from certeval.conversation.rendering import ReplyRenderer
from certeval.conversation.responder import Responder
from certeval.conversation.status import ALLOWED_TRANSITIONS, SessionStatus
from certeval.conversation.transitions import ConversationState, Transition, transition
from certeval.criteria.generator import CriteriaGenerator
from certeval.criteria.interpreter import CriteriaInterpreter
from certeval.criteria.schema import normalize_threshold, validate_criteria_map
from certeval.evaluation.runner import EvaluationRunner, RunResult
from certeval.storage.criteria_store import CriteriaStore
from certeval.storage.evaluation_store import EvaluationStore
from certeval.storage.records import CriteriaSet, Session, Turn
from certeval.storage.sessions import SessionStore
from utils.exceptions import (
    CollaboratorError,
    ConflictError,
    ExtractionError,
    NotFoundError,
    ParseError,
    ValidationError,
)
from utils.logging_config import LogContext
from utils.state_machine import StateMachine, StateTransition

logger = logging.getLogger(__name__)

_SAVE_ATTEMPTS = 3


@dataclass
class UploadedFile:
    """A document reference submitted with a turn."""

    path: Path
    name: Optional[str] = None
    mime_type: Optional[str] = None

    def __post_init__(self):
        self.path = Path(self.path)
        self.name = self.name or self.path.name
        self.mime_type = self.mime_type or guess_mime_type(self.path)


@dataclass
class TurnResult:
    """What one turn produced."""

    session_id: str
    status: SessionStatus
    should_continue: bool
    messages: List[str] = field(default_factory=list)
    transition: Optional[Transition] = None
    run: Optional[RunResult] = None

    @property
    def reply(self) -> str:
        return "\n\n".join(self.messages)


class Orchestrator:
    """
    Drive certificate-evaluation conversations.

    Usage:
        orchestrator = Orchestrator(sessions, criteria_store, evaluation_store, runner,
                                    interpreter, generator, router, responder,
                                    retriever, extractor)
        first = await orchestrator.handle_turn(None, upload=UploadedFile(Path("cert.pdf")))
        result = await orchestrator.handle_turn(first.session_id, "check the expiry date")
    """

    def __init__(
        self,
        sessions: SessionStore,
        criteria_store: CriteriaStore,
        evaluation_store: EvaluationStore,
        runner: EvaluationRunner,
        interpreter: CriteriaInterpreter,
        generator: CriteriaGenerator,
        router: IntentRouter,
        responder: Responder,
        retriever: Retriever,
        extractor: Optional[TextExtractor] = None,
        renderer: Optional[ReplyRenderer] = None,
        history_window: int = 20,
        reevaluate_persist: str = "version",
    ):
        self.sessions = sessions
        self.criteria_store = criteria_store
        self.evaluation_store = evaluation_store
        self.runner = runner
        self.interpreter = interpreter
        self.generator = generator
        self.router = router
        self.responder = responder
        self.retriever = retriever
        self.extractor = extractor or TextExtractor()
        self.renderer = renderer or ReplyRenderer()
        self.history_window = history_window
        self.reevaluate_persist = reevaluate_persist
        # Entries vanish once no turn holds or awaits the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def handle_turn(
        self,
        session_id: Optional[str],
        text: str = "",
        upload: Optional[Union[UploadedFile, Path, str]] = None,
    ) -> TurnResult:
        """
        Process one user turn, creating the session when session_id is new or None.

        Raises:
            ConflictError: The session kept changing underneath this turn.
        """
        if upload is not None and not isinstance(upload, UploadedFile):
            upload = UploadedFile(Path(upload))

        session = self.sessions.get_or_create(session_id)
        async with self._lock_for(session.id):
            with LogContext(session_id=session.id):
                return await self._handle(session.id, text or "", upload)

    async def _handle(self, session_id: str, text: str, upload: Optional[UploadedFile]) -> TurnResult:
        session = self.sessions.require(session_id)
        state = self._state_of(session)
        event = await self._perceive(session, state, text, upload)
        decided = transition(state, event)
        logger.debug(f"{type(event).__name__} in {state.status.value}: {decided.reason}")

        run = getattr(event, "result", None)
        persisted = self._persist_criteria(session_id, decided)
        criteria_id = persisted.id if persisted else None
        messages = self._replies(decided, persisted)
        user_text = text or (f"[uploaded {upload.name}]" if upload else "")

        for _ in range(_SAVE_ATTEMPTS):
            session = self.sessions.require(session_id)
            self._apply(session, decided, criteria_id)
            if user_text:
                session.turns.append(Turn("user", user_text))
            session.turns.extend(Turn("assistant", m) for m in messages)
            try:
                saved = self.sessions.save(session)
            except ConflictError:
                logger.warning(f"Session {session_id} changed during the turn; re-applying")
                continue
            return TurnResult(
                session_id=saved.id,
                status=SessionStatus(saved.status),
                should_continue=saved.should_continue,
                messages=messages,
                transition=decided,
                run=run,
            )
        raise ConflictError(f"Could not save session {session_id}: too much contention")

    @staticmethod
    def _state_of(session: Session) -> ConversationState:
        return ConversationState(
            status=SessionStatus(session.status),
            should_continue=session.should_continue,
            has_document=session.current_document_id is not None,
            has_criteria=session.criteria_id is not None,
        )

    # -- Perception -----------------------------------------------------------

    async def _perceive(
        self,
        session: Session,
        state: ConversationState,
        text: str,
        upload: Optional[UploadedFile],
    ) -> Event:
        if not state.should_continue:
            # Only an explicit restart resumes; uploads are not registered meanwhile
            if upload is None and is_restart(text):
                return RestartRequested()
            return UserMessage(text)

        if upload is not None:
            return await self._receive_document(session, upload)
        if is_stop(text):
            return StopRequested()

        # "continue" and friends only mean restart while halted; here they answer the proceed prompt
        status = state.status
        if status == SessionStatus.READY_TO_VALIDATE:
            return await self._validate(session)

        history = session.recent_turns(self.history_window)
        routed = await self.router.route(text, status, history)
        if routed.intent == Intent.STOP:
            return StopRequested()
        if routed.intent == Intent.RESTART:
            return RestartRequested()
        if routed.intent == Intent.GENERAL:
            return SmallTalk(await self.responder.general(text, history, status.value))

        if status == SessionStatus.AWAITING_UPLOAD or not state.has_document:
            return UserMessage(text)

        if status == SessionStatus.AWAITING_CRITERIA:
            if routed.intent == Intent.GENERATE_CRITERIA:
                return await self._generate(session)
            return await self._interpret(text)

        if status == SessionStatus.VALIDATED:
            if routed.intent in (Intent.NEW_CRITERIA, Intent.GENERATE_CRITERIA):
                return CriteriaResetRequested()
            if routed.intent == Intent.REEVALUATE:
                return await self._reevaluate(session, routed)
            evaluation = self.evaluation_store.get_by_id(session.evaluation_id) if session.evaluation_id else None
            criteria_set = self.criteria_store.get_by_id(session.criteria_id) if session.criteria_id else None
            return ResultsQuestion(
                await self.responder.answer_results(text, history, evaluation, criteria_set)
            )

        return UserMessage(text)

    async def _receive_document(self, session: Session, upload: UploadedFile) -> Event:
        try:
            text = await self.extractor.extract_text(upload.path, upload.mime_type)
        except ExtractionError as e:
            logger.warning(f"Could not extract {upload.name!r}: {e}")
            return DocumentRejected(str(e))

        document = self.sessions.add_document(session.id, upload.name, upload.mime_type)
        try:
            chunks = await self.retriever.index_document(
                session.id,
                document.id,
                text,
                {"document_name": document.name, "document_index": document.index},
            )
        except CollaboratorError as e:
            logger.warning(f"Indexing {upload.name!r} failed: {e}")
            self.sessions.remove_document(session.id, document.id)
            return DocumentRejected("the document could not be indexed")

        logger.info(f"Indexed document #{document.index} ({chunks} chunks)")
        return DocumentReceived(document.id, document.name, document.index)

    async def _interpret(self, text: str) -> Event:
        proposed = await self.interpreter.interpret(text)
        if proposed is None:
            return CriteriaUnclear()
        try:
            criteria = validate_criteria_map(proposed.criteria)
            threshold = normalize_threshold(proposed.threshold) if proposed.threshold is not None else None
        except ValidationError as e:
            return CriteriaRejected(str(e))
        return CriteriaProposed(criteria, proposed.description, threshold, proposed.source)

    async def _generate(self, session: Session) -> Event:
        try:
            criteria_set = await self.generator.generate(session.id, session.current_document_id)
        except (NotFoundError, ValidationError) as e:
            return CriteriaRejected(str(e))
        except (ParseError, CollaboratorError) as e:
            logger.warning(f"Criteria generation failed: {e}")
            return CriteriaRejected("I couldn't generate criteria from the document right now")
        return CriteriaGenerated(criteria_set)

    async def _validate(self, session: Session) -> Event:
        criteria_set = self.criteria_store.get_by_id(session.criteria_id) if session.criteria_id else None
        if criteria_set is None:
            return ValidationFailed("invalid", "no criteria are set")
        try:
            result = await self.runner.run(criteria_set, session.current_document_id)
        except ValidationError as e:
            return ValidationFailed("invalid", str(e))
        except ParseError as e:
            logger.warning(f"Validation answer could not be parsed: {e}")
            return ValidationFailed("retry", "the validation answer could not be read")
        except CollaboratorError as e:
            return ValidationFailed("retry", str(e))
        return ValidationCompleted(result)

    async def _reevaluate(self, session: Session, routed: RoutedIntent) -> Event:
        try:
            result = await self.runner.reevaluate(
                session.id,
                routed.criteria_updates,
                criteria_id=session.criteria_id,
                document_id=session.current_document_id,
                persist=self.reevaluate_persist,
                threshold=routed.threshold,
            )
        except (ValidationError, NotFoundError) as e:
            return ValidationFailed("invalid", str(e))
        except ParseError as e:
            logger.warning(f"Re-evaluation answer could not be parsed: {e}")
            return ValidationFailed("retry", "the validation answer could not be read")
        except CollaboratorError as e:
            return ValidationFailed("retry", str(e))
        return ReevaluationCompleted(result)

    # -- Effects --------------------------------------------------------------

    def _persist_criteria(self, session_id: str, decided: Transition) -> Optional[CriteriaSet]:
        for effect in decided.effects:
            if isinstance(effect, PersistCriteria):
                return self.criteria_store.store(
                    session_id, effect.criteria, effect.description, effect.threshold
                )
        return None

    def _replies(self, decided: Transition, persisted: Optional[CriteriaSet] = None) -> List[str]:
        messages = []
        for reply in decided.replies:
            if persisted is not None and reply.key == "criteria_accepted":
                # Show what was stored, including the default threshold
                reply = Reply(reply.key, {**reply.context, "criteria_set": persisted})
            messages.append(self.renderer.render(reply))
        return messages

    def _apply(self, session: Session, decided: Transition, persisted_criteria_id: Optional[str]) -> None:
        machine = StateMachine(
            SessionStatus(session.status),
            ALLOWED_TRANSITIONS,
            history=[StateTransition.from_dict(t, SessionStatus) for t in session.transitions],
        )
        machine.transition_to(decided.status, decided.reason)
        session.status = machine.state.value
        session.transitions = [t.to_dict() for t in machine.history]
        session.should_continue = decided.should_continue

        for effect in decided.effects:
            if isinstance(effect, ClearEvaluation):
                session.evaluation_id = None
                session.extracted_fields = {}
            elif isinstance(effect, DiscardCriteria):
                session.criteria_id = None
            elif isinstance(effect, PersistCriteria):
                session.criteria_id = persisted_criteria_id
            elif isinstance(effect, SetCriteria):
                session.criteria_id = effect.criteria_id
            elif isinstance(effect, AdoptEvaluation):
                session.evaluation_id = effect.evaluation_id
                session.extracted_fields = dict(effect.extracted_fields)
            elif not isinstance(effect, Reply):
                raise TypeError(f"Unhandled effect: {effect!r}")

    def get_session(self, session_id: str) -> Session:
        return self.sessions.require(session_id)
