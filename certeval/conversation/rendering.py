"""
Reply rendering.

Structured replies (criteria confirmations, validation results,
re-evaluation comparisons) are rendered from the Jinja2 templates in
./templates; the short conversational replies are inline templates keyed
by the same Reply keys the transition function emits.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from jinja2 import Environment, FileSystemLoader

from certeval.conversation.events import Reply
from certeval.criteria.schema import DEFAULT_THRESHOLD
from certeval.evaluation.runner import RunResult
from certeval.storage.records import CriteriaSet

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

STATUS_HINTS = {
    "awaiting_upload": "Please upload a certificate document to begin.",
    "awaiting_criteria": "Tell me how you would like the certificate evaluated, or ask me to suggest criteria.",
    "ready_to_validate": "Send any message and I'll run the validation.",
    "validated": "Ask me about the results, request different criteria, or ask me to re-evaluate with changes.",
}

SIMPLE_REPLIES = {
    "upload_required": (
        "Please upload a certificate document first before we can proceed with evaluation."
    ),
    "document_received": (
        "Thank you for uploading {{ name }} (document #{{ index }}). How would you like me to "
        "evaluate your certificate? For example, you can specify criteria like agency name and "
        "expiry date, or ask me to suggest criteria from the document."
    ),
    "document_replaced": (
        "I've received a new certificate document, {{ name }} (document #{{ index }}). The previous "
        "criteria and results were cleared. Please specify how you would like me to evaluate this "
        "certificate. For example, you can specify criteria like agency name and expiry date."
    ),
    "document_rejected": (
        "I encountered an error processing your document{{ ' (' ~ reason ~ ')' if reason else '' }}. "
        "Please try uploading again."
    ),
    "goodbye": 'Thanks for using the certificate evaluator. Goodbye! Say "restart" whenever you want to continue.',
    "halted": 'This conversation has ended. Say "restart" to pick up where we left off.',
    "restarted": "Welcome back! {{ hint }}",
    "general": "{{ text }}",
    "results_answer": "{{ text }}",
    "criteria_unclear": (
        "I need you to specify the evaluation criteria. For example: \"Validate that this "
        "certificate is still valid based on its expiry date\" or \"Check that it covers ISO 27001 "
        "and was issued by XYZ Corp\". What criteria would you like me to check?"
    ),
    "criteria_invalid": (
        "I couldn't use those criteria{{ ': ' ~ message if message else '' }}. "
        "Could you restate how you would like the certificate evaluated?"
    ),
    "criteria_reset": (
        "Sure, let's set new criteria. How would you like me to evaluate the certificate this time?"
    ),
    "validation_retry": (
        "I couldn't complete the validation just now{{ ' (' ~ message ~ ')' if message else '' }}. "
        "Please send another message to try again."
    ),
    "not_now": "I can't do that right now. {{ hint }}",
}


def display(value: Any, default: str = "not specified") -> str:
    """Human-readable rendering of a criterion or check value."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def describe_criterion(entry: Any) -> str:
    if not isinstance(entry, Mapping):
        return display(entry, "any valid value")
    text = display(entry.get("value"), "any valid value")
    notes = []
    if entry.get("weight") is not None:
        notes.append(f"weight {display(entry.get('weight'))}")
    if entry.get("required") is False:
        notes.append("optional")
    elif entry.get("weight") is not None:
        notes.append("required")
    return f"{text} ({', '.join(notes)})" if notes else text


class ReplyRenderer:
    """
    Turn Reply effects into user-facing markdown.

    Usage:
        renderer = ReplyRenderer()
        text = renderer.render(Reply("upload_required"))
    """

    def __init__(self, template_dir: Optional[Path] = None):
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        self._env.filters["display"] = display
        self._env.filters["criterion"] = describe_criterion
        self._simple = {key: self._env.from_string(source) for key, source in SIMPLE_REPLIES.items()}

    def render(self, reply: Reply) -> str:
        context = dict(reply.context)
        if reply.key in ("results", "reevaluation"):
            return self._render_result(reply.key, context["result"])
        if reply.key in ("criteria_accepted", "criteria_generated"):
            return self._render_criteria(reply.key, context)

        template = self._simple.get(reply.key)
        if template is None:
            logger.error(f"No reply template for key {reply.key!r}")
            return "Sorry, something went wrong on my side. Please try again."
        if "status" in context:
            context.setdefault("hint", STATUS_HINTS.get(context["status"], ""))
        return template.render(**context).strip()

    def _render_criteria(self, key: str, context: Dict[str, Any]) -> str:
        criteria_set: Optional[CriteriaSet] = context.get("criteria_set")
        if criteria_set is not None:
            values = {
                "criteria": criteria_set.criteria,
                "description": criteria_set.description,
                "threshold": criteria_set.threshold,
            }
        else:
            values = {
                "criteria": context.get("criteria", {}),
                "description": context.get("description", ""),
                "threshold": context.get("threshold") if context.get("threshold") is not None else DEFAULT_THRESHOLD,
            }
        template = self._env.get_template("criteria.md.j2")
        return template.render(
            generated=key == "criteria_generated", source=context.get("source", "model"), **values
        ).strip()

    def _render_result(self, key: str, result: RunResult) -> str:
        template_name = "reevaluation.md.j2" if key == "reevaluation" else "results.md.j2"
        title = "Re-evaluation Results" if key == "reevaluation" else "Certificate Validation Results"
        template = self._env.get_template(template_name)
        return template.render(
            title=title,
            score=result.score,
            description=result.criteria_set.description,
            criteria=result.criteria_set.criteria,
            checks=result.evaluation.checks,
            comparison=result.comparison,
        ).strip()
