"""
Conversational replies that need the language model: small talk and
questions about the latest validation results. Both are answered from the
recent transcript without changing the session status.
"""

import json
import logging
from typing import List, Optional

from certeval.collaborators.language_model import LanguageModel
from certeval.providers.base import Message
from certeval.storage.records import CriteriaSet, Evaluation, Turn
from utils.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

GENERAL_SYSTEM_PROMPT = """You are a helpful assistant inside a certificate evaluation tool.
The tool lets the user upload a certificate document, describe evaluation criteria in plain
language (or ask for suggested criteria), validate the certificate against them with a weighted
score and pass threshold, ask about the results and re-evaluate with changed criteria.

Current conversation status: {status}.
Answer the user's latest message briefly and conversationally. You may refer back to earlier
messages in the conversation. Do not claim to have validated anything yourself."""

RESULTS_SYSTEM_PROMPT = """You answer questions about a certificate validation that has already run.
Use only the results below; do not re-validate and do not invent evidence.

Criteria:
{criteria}

Score: {score}/100 (threshold {threshold}) - {verdict}

Checks:
{checks}"""

FALLBACK_GENERAL_REPLY = (
    "I'm here to help you evaluate certificates: upload a document, tell me what to check, "
    "and I'll validate and score it."
)
FALLBACK_RESULTS_REPLY = (
    "I couldn't look into that just now. The full results are shown above; "
    "feel free to ask again."
)


def _as_messages(turns: List[Turn], text: str) -> List[Message]:
    messages = [Message(role=t.role, content=t.text) for t in turns if t.text]
    messages.append(Message(role="user", content=text))
    return messages


def _format_checks(evaluation: Evaluation) -> str:
    lines = []
    for check in evaluation.checks:
        verdict = "passed" if check.passed else "failed"
        line = f"- {check.criterion}: {verdict} (expected {check.expected!r}, found {check.found!r})"
        if check.reason:
            line += f" - {check.reason}"
        lines.append(line)
    return "\n".join(lines) or "- (no checks)"


class Responder:
    """
    Free-text replies for turns that do not advance the conversation.

    Collaborator failures degrade to a canned reply rather than an error.
    """

    def __init__(self, llm: LanguageModel, history_window: int = 20):
        self.llm = llm
        self.history_window = history_window

    def _history(self, turns: Optional[List[Turn]]) -> List[Turn]:
        if self.history_window <= 0:
            return []
        return list(turns or [])[-self.history_window:]

    async def general(self, text: str, turns: Optional[List[Turn]], status: str) -> str:
        system = GENERAL_SYSTEM_PROMPT.format(status=status.replace("_", " "))
        try:
            reply = await self.llm.generate(_as_messages(self._history(turns), text), system=system)
        except CollaboratorError as e:
            logger.warning(f"General reply failed: {e}")
            return FALLBACK_GENERAL_REPLY
        return reply or FALLBACK_GENERAL_REPLY

    async def answer_results(
        self,
        text: str,
        turns: Optional[List[Turn]],
        evaluation: Optional[Evaluation],
        criteria_set: Optional[CriteriaSet] = None,
    ) -> str:
        if evaluation is None:
            return "There are no validation results yet."

        criteria = evaluation.criteria_snapshot or (criteria_set.criteria if criteria_set else {})
        system = RESULTS_SYSTEM_PROMPT.format(
            criteria=json.dumps(criteria, indent=2, default=str),
            score=evaluation.score,
            threshold=evaluation.threshold,
            verdict="PASSED" if evaluation.passed else "FAILED",
            checks=_format_checks(evaluation),
        )
        try:
            reply = await self.llm.generate(_as_messages(self._history(turns), text), system=system)
        except CollaboratorError as e:
            logger.warning(f"Results answer failed: {e}")
            return FALLBACK_RESULTS_REPLY
        return reply or FALLBACK_RESULTS_REPLY
