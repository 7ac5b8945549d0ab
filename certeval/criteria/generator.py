"""
Criteria generator.

Proposes a weighted criteria set from the uploaded document(s): a fixed
battery of retrieval queries gathers the passages certificates usually
hinge on, and the language model turns them into criteria with weights,
expected values and a threshold. The proposal is validated and stored as
a new criteria version.
"""

import asyncio
import logging
from typing import List, Optional

from certeval.collaborators.language_model import LanguageModel
from certeval.collaborators.retrieval import Retriever, SearchFilters, SearchHit
from certeval.storage.criteria_store import CriteriaStore
from certeval.storage.records import CriteriaSet
from utils.exceptions import NotFoundError, ParseError

logger = logging.getLogger(__name__)

EXTRACTION_QUERIES = [
    "expiry date expiration valid until",
    "issuing agency organization name",
    "certificate type standard ISO compliance",
    "certificate number serial number",
    "scope coverage domain",
    "requirements conditions",
]

MAX_CONTEXT_CHARS = 8000

GENERATION_SYSTEM_PROMPT = """You are an expert at analyzing certificate documents and generating evaluation criteria.

Generate criteria that:
1. Are relevant to the certificate type and content
2. Include common certificate validation points (expiry dates, issuing agency, certificate numbers, standards, scope)
3. Have weights that sum to at most 1.0
4. Include specific values found in the document when applicable

Return ONLY a JSON object in this exact format:
{
  "criteria": {
    "expiryDate": {"weight": 0.4, "required": true, "value": null},
    "agencyName": {"weight": 0.3, "required": true, "value": "ABC Certification Agency"},
    "certificateNumber": {"weight": 0.2, "required": false, "value": null},
    "standardCompliance": {"weight": 0.1, "required": false, "value": "ISO 27001"}
  },
  "description": "Natural language description of the criteria",
  "threshold": 70
}"""

GENERATION_PROMPT = """Analyze the following certificate document content and generate evaluation criteria with weights.

Document Content:
{context}"""


def build_context(hits: List[SearchHit], max_chars: int = MAX_CONTEXT_CHARS) -> str:
    """Join deduplicated hit text, truncating past max_chars."""
    seen = set()
    parts = []
    for hit in hits:
        key = hit.chunk_id or hit.text
        if key in seen:
            continue
        seen.add(key)
        parts.append(hit.text)
    content = "\n\n".join(parts)
    if len(content) > max_chars:
        return content[:max_chars] + " ...(truncated)"
    return content


class CriteriaGenerator:
    """
    Generate and store criteria from uploaded documents.

    Usage:
        generator = CriteriaGenerator(llm, retriever, criteria_store)
        criteria_set = await generator.generate(session_id)
    """

    def __init__(
        self,
        llm: LanguageModel,
        retriever: Retriever,
        criteria_store: CriteriaStore,
        top_k: int = 5,
        max_context_chars: int = MAX_CONTEXT_CHARS,
    ):
        self.llm = llm
        self.retriever = retriever
        self.criteria_store = criteria_store
        self.top_k = top_k
        self.max_context_chars = max_context_chars

    async def collect_context(self, session_id: str, document_id: Optional[str] = None) -> str:
        filters = SearchFilters(session_id=session_id, document_id=document_id, top_k=self.top_k)
        results = await asyncio.gather(
            *(self.retriever.search(query, filters) for query in EXTRACTION_QUERIES)
        )
        hits = [hit for batch in results for hit in batch]
        return build_context(hits, self.max_context_chars)

    async def generate(self, session_id: str, document_id: Optional[str] = None) -> CriteriaSet:
        """
        Propose and store a criteria set.

        Raises:
            NotFoundError: No document content is indexed for the session.
            ParseError: The model did not return a criteria object.
            ValidationError: The proposed criteria are malformed.
            CollaboratorError: Retrieval or the model failed.
        """
        context = await self.collect_context(session_id, document_id)
        if not context.strip():
            raise NotFoundError("No document content found. Please ensure documents are uploaded.")

        data = await self.llm.interpret(
            GENERATION_SYSTEM_PROMPT, GENERATION_PROMPT.format(context=context)
        )
        criteria = data.get("criteria")
        if not isinstance(criteria, dict) or not criteria:
            raise ParseError("Generated response has no criteria object", raw_text=str(data))

        description = data.get("description") if isinstance(data.get("description"), str) else ""
        threshold = data.get("threshold")
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            threshold = None

        stored = self.criteria_store.store(session_id, criteria, description, threshold)
        logger.info(f"Generated criteria {stored.id} with {len(criteria)} criteria for session {session_id}")
        return stored
