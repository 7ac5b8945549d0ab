"""
Validation executor.

Judges each criterion of a criteria set against retrieved document text:

1. One retrieval query per criterion ("Find information about <name>: <value>"),
   run concurrently and deduplicated.
2. No context at all -> every criterion fails with "no information found";
   the model is not called.
3. Otherwise the model judges each criterion strictly from the context and
   returns {"checks": [...], "evidence": [...]}.
4. Judgments are aligned to the criteria (case-insensitive name match),
   weight/required metadata attached, and the overall pre-score signal is
   "every required criterion passed".
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from certeval.collaborators.language_model import LanguageModel
from certeval.collaborators.retrieval import Retriever, SearchFilters, SearchHit, group_by_document
from certeval.criteria.schema import (
    criterion_required,
    criterion_value,
    criterion_weight,
    ensure_not_empty,
)
from certeval.storage.records import CriteriaSet, CriterionCheck
from utils.exceptions import ParseError

logger = logging.getLogger(__name__)

NO_INFORMATION_REASON = "no information found"
NOT_JUDGED_REASON = "criterion was not judged by the model"

VALIDATION_SYSTEM_PROMPT = """You are a certificate validation agent.

You receive:
- Certificate content retrieved from the uploaded documents
- The criteria to validate, each marked required or optional

For each criterion, decide whether the certificate content satisfies it.

Return ONLY valid JSON with this shape:
{
  "checks": [
    {
      "criterion": "<criterion name exactly as given>",
      "expected": "<expected value or condition>",
      "found": "<what the document actually says, or null>",
      "passed": true,
      "confidence": 0.9,
      "reason": "<short explanation>"
    }
  ],
  "evidence": ["<relevant excerpts from the content>"]
}

Rules:
- Return exactly one check per criterion.
- Judge ONLY from the provided content. Never use general knowledge.
- If the information is missing, set passed=false and explain in "found" and "reason".
- confidence is between 0.0 (uncertain) and 1.0 (certain)."""

VALIDATION_PROMPT = """Certificate content:
{context}

Criteria to validate:
{criteria}

Overall intent: {description}

For each criterion, determine whether it passes or fails based on the certificate content."""


@dataclass
class ValidationOutcome:
    """Per-criterion checks plus the evidence they were judged on."""

    passed: bool  # every required criterion passed
    checks: List[CriterionCheck]
    evidence: List[str] = field(default_factory=list)
    document_ids: List[str] = field(default_factory=list)
    context_found: bool = True


def normalize_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return min(1.0, max(0.0, float(value)))
    if isinstance(value, str):
        try:
            return min(1.0, max(0.0, float(value)))
        except ValueError:
            mapping = {"low": 0.3, "medium": 0.5, "high": 0.8, "very high": 0.9}
            return mapping.get(value.lower().strip(), 0.5)
    return 0.5


def coerce_passed(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "pass", "passed")
    return False


def _display(value: Any) -> str:
    if value is None:
        return "(present and valid)"
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def build_queries(criteria: Mapping[str, Any]) -> List[str]:
    return [
        f"Find information about {name}: {_display(criterion_value(entry))}"
        for name, entry in criteria.items()
    ]


def describe_criteria(criteria: Mapping[str, Any]) -> str:
    lines = []
    for name, entry in criteria.items():
        kind = "required" if criterion_required(entry) else "optional"
        lines.append(f"- {name}: {_display(criterion_value(entry))} ({kind})")
    return "\n".join(lines)


def dedupe_hits(batches: List[List[SearchHit]]) -> List[SearchHit]:
    seen = set()
    hits = []
    for batch in batches:
        for hit in batch:
            key = hit.chunk_id or hit.text
            if key in seen:
                continue
            seen.add(key)
            hits.append(hit)
    return hits


def format_context(hits: List[SearchHit]) -> str:
    """Join hit text, labelling each document when the hits span several."""
    groups = group_by_document(hits)
    if len(groups) < 2:
        return "\n\n".join(hit.text for hit in hits)
    sections = [
        f"[Document #{g.document_index}: {g.document_name}]\n" + "\n\n".join(h.text for h in g.chunks)
        for g in groups
    ]
    sections.extend(hit.text for hit in hits if not hit.document_id)
    return "\n\n".join(sections)


class ValidationExecutor:
    """
    Judge a criteria set against a session's (or one document's) content.

    Usage:
        executor = ValidationExecutor(llm, retriever)
        outcome = await executor.evaluate(criteria_set, document_id)
    """

    def __init__(self, llm: LanguageModel, retriever: Retriever, top_k: int = 10):
        self.llm = llm
        self.retriever = retriever
        self.top_k = top_k

    async def retrieve(self, criteria_set: CriteriaSet, document_id: Optional[str] = None) -> List[SearchHit]:
        filters = SearchFilters(
            session_id=criteria_set.session_id, document_id=document_id, top_k=self.top_k
        )
        batches = await asyncio.gather(
            *(self.retriever.search(query, filters) for query in build_queries(criteria_set.criteria))
        )
        return dedupe_hits(list(batches))

    async def evaluate(self, criteria_set: CriteriaSet, document_id: Optional[str] = None) -> ValidationOutcome:
        """
        Produce one check per criterion, in criteria order.

        Raises:
            ValidationError: The criteria set is empty.
            CollaboratorError: Retrieval or the model failed after retries.
            ParseError: The model's judgment could not be decoded.
        """
        criteria = criteria_set.criteria
        ensure_not_empty(criteria)

        hits = await self.retrieve(criteria_set, document_id)
        if not hits:
            logger.info(f"No context found for criteria {criteria_set.id}; failing all checks")
            checks = [
                CriterionCheck(
                    criterion=name,
                    passed=False,
                    expected=criterion_value(entry),
                    found=None,
                    weight=criterion_weight(entry),
                    required=criterion_required(entry),
                    confidence=0.0,
                    reason=NO_INFORMATION_REASON,
                )
                for name, entry in criteria.items()
            ]
            return ValidationOutcome(
                passed=self._required_passed(checks), checks=checks, context_found=False
            )

        prompt = VALIDATION_PROMPT.format(
            context=format_context(hits),
            criteria=describe_criteria(criteria),
            description=criteria_set.description or "(none given)",
        )
        data = await self.llm.interpret(VALIDATION_SYSTEM_PROMPT, prompt)
        checks = self._align_checks(criteria, data)

        evidence = data.get("evidence")
        evidence = [str(e) for e in evidence] if isinstance(evidence, list) else []
        document_ids = [g.document_id for g in group_by_document(hits)]

        outcome = ValidationOutcome(
            passed=self._required_passed(checks),
            checks=checks,
            evidence=evidence,
            document_ids=document_ids,
        )
        logger.info(
            f"Validated criteria {criteria_set.id}: "
            f"{sum(c.passed for c in checks)}/{len(checks)} passed"
        )
        return outcome

    def _align_checks(self, criteria: Mapping[str, Any], data: Dict[str, Any]) -> List[CriterionCheck]:
        raw_checks = data.get("checks")
        if not isinstance(raw_checks, list):
            raise ParseError("Validation response has no 'checks' list", raw_text=json.dumps(data, default=str))

        judgments: Dict[str, Dict[str, Any]] = {}
        for raw in raw_checks:
            if not isinstance(raw, dict) or not raw.get("criterion"):
                continue
            judgments.setdefault(str(raw["criterion"]).strip().lower(), raw)

        names = {name.lower() for name in criteria}
        extras = sorted(set(judgments) - names)
        if extras:
            logger.warning(f"Ignoring judgments for unknown criteria: {extras}")

        checks = []
        for name, entry in criteria.items():
            raw = judgments.get(name.lower())
            if raw is None:
                checks.append(
                    CriterionCheck(
                        criterion=name,
                        passed=False,
                        expected=criterion_value(entry),
                        weight=criterion_weight(entry),
                        required=criterion_required(entry),
                        confidence=0.0,
                        reason=NOT_JUDGED_REASON,
                    )
                )
                continue
            checks.append(
                CriterionCheck(
                    criterion=name,
                    passed=coerce_passed(raw.get("passed")),
                    expected=raw.get("expected", criterion_value(entry)),
                    found=raw.get("found"),
                    weight=criterion_weight(entry),
                    required=criterion_required(entry),
                    confidence=normalize_confidence(raw.get("confidence")),
                    reason=str(raw.get("reason") or ""),
                )
            )
        return checks

    @staticmethod
    def _required_passed(checks: List[CriterionCheck]) -> bool:
        return all(c.passed for c in checks if c.required)
