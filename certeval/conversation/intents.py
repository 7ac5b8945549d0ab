"""
Intent routing for user turns.

Stop and restart wording is matched deterministically before any model
call. Everything else is classified by the language model into one of the
Intent values; when that call fails a small keyword scan decides instead.

For re-evaluation requests the model is also asked for the partial
criteria update and threshold the user stated, e.g.

    "make expiryDate weigh 0.6 and run it again"
    -> {"intent": "reevaluate", "criteria_updates": {"expiryDate": {"weight": 0.6}}}
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from numbers import Real
from typing import Any, Dict, List, Optional

from certeval.collaborators.language_model import LanguageModel
from certeval.conversation.status import SessionStatus
from certeval.criteria.interpreter import normalize_structured
from certeval.storage.records import Turn
from utils.exceptions import CollaboratorError, ParseError

logger = logging.getLogger(__name__)


class Intent(Enum):
    STOP = "stop"
    RESTART = "restart"
    NEW_CRITERIA = "new_criteria"
    REEVALUATE = "reevaluate"
    RESULTS_QUESTION = "results_question"
    GENERATE_CRITERIA = "generate_criteria"
    GENERAL = "general"
    TASK = "task"


_POLITE = r"(?:(?:ok(?:ay)?|thanks|thank you|great|cool|alright|no)[\s,.!]*)*"

STOP_PATTERN = re.compile(
    rf"^\s*{_POLITE}(?:stop|quit|exit|bye|good\s?bye|see you|that'?s all|that is all|"
    r"i'?m done|i am done|i'?m finished|end (?:the )?(?:chat|conversation|session)|no more)"
    r"[\s.!]*(?:thanks|thank you)?[\s.!]*$",
    re.IGNORECASE,
)

RESTART_PATTERN = re.compile(
    r"^\s*(?:please\s+)?(?:restart|resume|start over|start again|continue|let'?s continue|"
    r"let'?s go again|i'?m back)[\s.!]*(?:please)?[\s.!]*$",
    re.IGNORECASE,
)

_NEW_CRITERIA_RE = re.compile(
    r"\b(new|different|other|change|replace|reset)\b.*\bcriteri", re.IGNORECASE
)
_GENERATE_RE = re.compile(
    r"\b(suggest|generate|propose|recommend)\b.*\bcriteri|\bcriteri\w*\b.*\b(for me|automatically)\b",
    re.IGNORECASE,
)
_REEVALUATE_RE = re.compile(
    r"\b(re-?evaluate|re-?run|re-?validate|run (it )?again|evaluate again|validate again|re-?score)\b",
    re.IGNORECASE,
)
_QUESTION_RE = re.compile(
    r"\b(why|how come|explain|score|result|fail(ed)?|pass(ed)?|found)\b|\?\s*$", re.IGNORECASE
)
_TASK_RE = re.compile(
    r"\b(certificate|validat\w*|evaluat\w*|criteri\w*|expir\w*|agency|upload\w*|document|check)\b",
    re.IGNORECASE,
)

INTENT_ROUTING_PROMPT = """You route messages in a certificate evaluation chat.

The assistant helps a user upload a certificate, define evaluation criteria,
validate the certificate against them and discuss the results.

Classify the latest user message into exactly one intent:
- "stop": the user wants to end the conversation
- "restart": the user wants to resume after having stopped
- "new_criteria": the user wants to replace the criteria with new or different ones
- "reevaluate": the user wants to run the evaluation again, possibly changing weights, values or the threshold of existing criteria
- "results_question": the user asks about the latest validation results
- "generate_criteria": the user asks the assistant to suggest or generate criteria from the document
- "general": greetings, questions about the assistant, or anything unrelated to the certificate task
- "task": anything else about the certificate task (stating criteria, asking to validate, uploading)

Return a JSON object:
{"intent": "<one of the intents>", "criteria_updates": <object or null>, "threshold": <number 0-100 or null>}

Only fill "criteria_updates" for "reevaluate": an object keyed by criterion name containing only
what the user asked to change, e.g. {"expiryDate": {"weight": 0.6}} or {"agencyName": {"value": "ABC Agency"}}.
Only fill "threshold" when the user stated a new pass mark.

Only return valid JSON, no other text."""


@dataclass
class RoutedIntent:
    """Classification of one user message."""

    intent: Intent
    criteria_updates: Dict[str, Any] = field(default_factory=dict)
    threshold: Optional[float] = None
    source: str = "model"  # "model", "keywords" or "pattern"


def is_stop(text: Optional[str]) -> bool:
    return bool(text) and STOP_PATTERN.match(text) is not None


def is_restart(text: Optional[str]) -> bool:
    return bool(text) and RESTART_PATTERN.match(text) is not None


def keyword_intent(text: str, status: SessionStatus) -> Intent:
    """Best-effort classification used when the routing call fails."""
    text = text or ""
    if is_stop(text):
        return Intent.STOP
    if is_restart(text):
        return Intent.RESTART
    if _GENERATE_RE.search(text):
        return Intent.GENERATE_CRITERIA
    if status == SessionStatus.VALIDATED:
        if _NEW_CRITERIA_RE.search(text):
            return Intent.NEW_CRITERIA
        if _REEVALUATE_RE.search(text):
            return Intent.REEVALUATE
        if _QUESTION_RE.search(text):
            return Intent.RESULTS_QUESTION
    if _TASK_RE.search(text):
        return Intent.TASK
    return Intent.GENERAL


def _format_history(turns: List[Turn]) -> str:
    if not turns:
        return "(no earlier messages)"
    return "\n".join(f"{t.role}: {t.text}" for t in turns)


class IntentRouter:
    """
    Classify user turns.

    Usage:
        router = IntentRouter(llm)
        routed = await router.route("why did it fail?", SessionStatus.VALIDATED, turns)
    """

    def __init__(self, llm: LanguageModel, history_window: int = 6):
        self.llm = llm
        self.history_window = history_window

    async def route(
        self, text: str, status: SessionStatus, history: Optional[List[Turn]] = None
    ) -> RoutedIntent:
        if is_stop(text):
            return RoutedIntent(Intent.STOP, source="pattern")
        if is_restart(text):
            return RoutedIntent(Intent.RESTART, source="pattern")

        recent = list(history or [])[-self.history_window:] if self.history_window > 0 else []
        prompt = (
            f"Conversation status: {status.value}\n\n"
            f"Recent conversation:\n{_format_history(recent)}\n\n"
            f"Latest user message: {text}"
        )
        try:
            data = await self.llm.interpret(INTENT_ROUTING_PROMPT, prompt)
        except (ParseError, CollaboratorError) as e:
            logger.warning(f"Intent routing failed ({e}); using keyword routing")
            return RoutedIntent(keyword_intent(text, status), source="keywords")

        try:
            intent = Intent(str(data.get("intent", "")).strip().lower())
        except ValueError:
            logger.warning(f"Unknown intent {data.get('intent')!r}; using keyword routing")
            return RoutedIntent(keyword_intent(text, status), source="keywords")

        updates: Dict[str, Any] = {}
        threshold = None
        if intent == Intent.REEVALUATE:
            updates = normalize_structured(data.get("criteria_updates"))
            raw = data.get("threshold")
            if isinstance(raw, Real) and not isinstance(raw, bool):
                threshold = float(raw)

        logger.debug(f"Routed message as {intent.value}")
        return RoutedIntent(intent, updates, threshold)
