"""
Criteria interpreter.

Turns a free-text user message into a criteria map plus a description.
The language model is asked for {"structured": {...}, "description": "..."};
its structured values are normalised into criterion records:

    true / null          -> {"value": None}     (check the field exists and is valid)
    "ISO 27001"          -> {"value": "ISO 27001"}
    {"weight": 0.5, ...} -> kept as given
    false                -> dropped

When the model call fails outright (provider error or undecodable
output), a narrow keyword scan for expiry and agency wording is tried
before giving up. An empty but well-formed answer is not salvaged: the
caller asks the user for clarification instead.
"""

import logging
import re
from dataclasses import dataclass
from numbers import Real
from typing import Any, Dict, Mapping, Optional

from certeval.collaborators.language_model import LanguageModel
from utils.exceptions import CollaboratorError, ParseError

logger = logging.getLogger(__name__)

RECORD_KEYS = {"weight", "required", "value"}

# Criterion used when the user only described what to check in prose
DESCRIPTION_CRITERION = "requirement"

FALLBACK_DESCRIPTION = "Validate the certificate using the mentioned expiry/agency-related criteria."

_EXPIRY_PATTERN = re.compile(r"expir|valid till|valid until")
_AGENCY_PATTERN = re.compile(r"agency")

CRITERIA_EXTRACTION_PROMPT = """You extract certificate evaluation criteria from user messages.

The user can specify:
1. The TYPES of criteria to check (e.g. "agency name", "expiry date", or any custom business rule)
2. The VALUES or CONDITIONS to validate against (e.g. "agency name should be ABC Agency", "expiry date after 2025-12-31")

Return a JSON object with:
- "structured": an object whose keys are criterion names (camelCase, e.g. agencyName, expiryDate, standard, scope).
  Each value is either the expected value, true when no value was given, or an object
  {"value": ..., "weight": <number 0-1>, "required": <true|false>} when the user stated weights or optionality.
- "description": a concise natural-language description of how the certificate should be validated.
- "threshold": the pass mark (0-100) if the user stated one, otherwise null.

Rules:
- Never invent criteria that the user did not imply.
- If the user only describes criteria in prose, keep "structured" minimal and put the explanation in "description".
- If the message contains no evaluation criteria at all, return {"structured": {}, "description": ""}.

Examples:
User: "I want to validate based on agency name and expiry date"
{"structured": {"agencyName": true, "expiryDate": true}, "description": "Confirm the issuing agency name and check that the expiry date is valid.", "threshold": null}

User: "Check that it covers ISO 27001 (weight 0.7, must pass) and the agency is XYZ Corp (weight 0.3)"
{"structured": {"standard": {"value": "ISO 27001", "weight": 0.7, "required": true}, "agencyName": {"value": "XYZ Corp", "weight": 0.3}}, "description": "Confirm ISO 27001 coverage and that XYZ Corp issued the certificate.", "threshold": null}

Only return valid JSON, no other text."""


@dataclass
class InterpretedCriteria:
    """Criteria proposed from one user message."""

    criteria: Dict[str, Any]
    description: str
    threshold: Optional[float] = None
    source: str = "model"  # "model" or "keywords"


def normalize_structured(structured: Any) -> Dict[str, Any]:
    """Map loosely-typed model output onto criterion records."""
    if not isinstance(structured, Mapping):
        return {}

    criteria: Dict[str, Any] = {}
    for name, value in structured.items():
        name = str(name).strip()
        if not name or value is False:
            continue
        if isinstance(value, Mapping) and RECORD_KEYS & set(value):
            criteria[name] = dict(value)
        elif value is True or value is None:
            criteria[name] = {"value": None}
        else:
            criteria[name] = {"value": value}
    return criteria


def keyword_fallback(text: str) -> Optional[InterpretedCriteria]:
    """Expiry/agency keyword scan used only when the model call fails."""
    normalized = (text or "").lower()
    criteria: Dict[str, Any] = {}
    if _EXPIRY_PATTERN.search(normalized):
        criteria["expiryDate"] = {"value": None}
    if _AGENCY_PATTERN.search(normalized):
        criteria["agencyName"] = {"value": None}
    if not criteria:
        return None
    return InterpretedCriteria(criteria=criteria, description=FALLBACK_DESCRIPTION, source="keywords")


def _threshold(value: Any) -> Optional[float]:
    if isinstance(value, Real) and not isinstance(value, bool):
        return float(value)
    return None


class CriteriaInterpreter:
    """
    Extract criteria from free text.

    Usage:
        interpreter = CriteriaInterpreter(llm)
        result = await interpreter.interpret("check the expiry date and agency")
        if result is None:
            ...  # ask the user to clarify
    """

    def __init__(self, llm: LanguageModel):
        self.llm = llm

    async def interpret(self, text: str) -> Optional[InterpretedCriteria]:
        """Return proposed criteria, or None when nothing usable was stated."""
        try:
            data = await self.llm.interpret(CRITERIA_EXTRACTION_PROMPT, f"User message: {text}")
        except (ParseError, CollaboratorError) as e:
            logger.warning(f"Criteria extraction failed ({e}); trying keyword fallback")
            return keyword_fallback(text)

        criteria = normalize_structured(data.get("structured"))
        description = data.get("description")
        description = description.strip() if isinstance(description, str) else ""

        if not criteria and not description:
            return None
        if not criteria:
            criteria = {DESCRIPTION_CRITERION: {"value": description}}

        return InterpretedCriteria(
            criteria=criteria,
            description=description,
            threshold=_threshold(data.get("threshold")),
        )
