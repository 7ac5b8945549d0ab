"""
External collaborators consumed by the orchestrator: the language model,
document retrieval and text extraction.
"""

from .extraction import TextExtractor, guess_mime_type
from .language_model import LanguageModel, decode_json_object, extract_json
from .retrieval import (
    ChromaRetriever,
    DocumentHits,
    GuardedRetriever,
    InMemoryRetriever,
    Retriever,
    SearchFilters,
    SearchHit,
    chunk_text,
    group_by_document,
)

__all__ = [
    "ChromaRetriever",
    "DocumentHits",
    "GuardedRetriever",
    "InMemoryRetriever",
    "LanguageModel",
    "Retriever",
    "SearchFilters",
    "SearchHit",
    "TextExtractor",
    "chunk_text",
    "decode_json_object",
    "extract_json",
    "group_by_document",
    "guess_mime_type",
]
