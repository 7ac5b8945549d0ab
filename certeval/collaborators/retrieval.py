"""
Retrieval collaborator.

Semantic search over uploaded document text, filtered by session and/or
document. Two backends:

- InMemoryRetriever: fixed-size chunking with term-overlap ranking. No
  external services; used by the CLI default and the tests.
- ChromaRetriever: chromadb collection (optional extra), persistent or
  ephemeral.

GuardedRetriever adds the timeout and retry policy to either of them.
"""

import asyncio
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from utils.exceptions import CollaboratorError
from utils.retry import RetryConfig, RetryStrategies, async_retry_with_backoff, call_with_timeout

logger = logging.getLogger(__name__)

COLLABORATOR_NAME = "retrieval"

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass
class SearchFilters:
    """Filters for a retrieval query."""

    session_id: Optional[str] = None
    document_id: Optional[str] = None
    top_k: int = 10


@dataclass
class SearchHit:
    """One retrieved chunk of document text."""

    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    score: float = 0.0

    @property
    def document_id(self) -> Optional[str]:
        return self.metadata.get("document_id")

    @property
    def chunk_id(self) -> str:
        return str(self.metadata.get("chunk_id", ""))


@dataclass
class DocumentHits:
    """Hits grouped under the document they came from."""

    document_id: str
    document_name: str
    document_index: int
    chunks: List[SearchHit] = field(default_factory=list)


def group_by_document(hits: List[SearchHit]) -> List[DocumentHits]:
    """Group hits by document, preserving first-seen order."""
    grouped: Dict[str, DocumentHits] = {}
    for hit in hits:
        doc_id = hit.document_id
        if not doc_id:
            continue
        if doc_id not in grouped:
            grouped[doc_id] = DocumentHits(
                document_id=doc_id,
                document_name=hit.metadata.get("document_name", "Unknown"),
                document_index=int(hit.metadata.get("document_index", 0) or 0),
            )
        grouped[doc_id].chunks.append(hit)
    return list(grouped.values())


def chunk_text(text: str, chunk_size: int = 800, overlap: int = 100) -> List[str]:
    """Split text into overlapping character windows, breaking on whitespace when possible."""
    text = text.strip()
    if not text:
        return []
    if len(text) <= chunk_size:
        return [text]

    chunks = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        if end < len(text):
            space = text.rfind(" ", start + chunk_size // 2, end)
            if space != -1:
                end = space
        chunks.append(text[start:end].strip())
        if end >= len(text):
            break
        start = max(end - overlap, start + 1)
    return [c for c in chunks if c]


def _tokens(text: str) -> List[str]:
    return _TOKEN_RE.findall(text.lower())


@runtime_checkable
class Retriever(Protocol):
    """Interface the validation executor and criteria generator depend on."""

    async def search(self, query: str, filters: SearchFilters) -> List[SearchHit]:
        ...

    async def index_document(
        self,
        session_id: str,
        document_id: str,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        ...

    async def remove_document(self, document_id: str) -> int:
        ...


class InMemoryRetriever:
    """
    Process-local retriever ranking chunks by query-term overlap.

    Score is the fraction of distinct query terms present in the chunk.
    Chunks sharing no terms with the query are never returned.
    """

    def __init__(self, chunk_size: int = 800, overlap: int = 100):
        self.chunk_size = chunk_size
        self.overlap = overlap
        self._chunks: List[SearchHit] = []
        self._lock = threading.Lock()

    async def index_document(
        self,
        session_id: str,
        document_id: str,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        pieces = chunk_text(text, self.chunk_size, self.overlap)
        with self._lock:
            for i, piece in enumerate(pieces):
                meta = dict(metadata or {})
                meta.update(
                    {
                        "session_id": session_id,
                        "document_id": document_id,
                        "chunk_id": f"{document_id}-{i}",
                        "chunk_index": i,
                    }
                )
                self._chunks.append(SearchHit(text=piece, metadata=meta))
        logger.debug(f"Indexed {len(pieces)} chunks for document {document_id}")
        return len(pieces)

    async def remove_document(self, document_id: str) -> int:
        with self._lock:
            before = len(self._chunks)
            self._chunks = [c for c in self._chunks if c.document_id != document_id]
            return before - len(self._chunks)

    async def search(self, query: str, filters: SearchFilters) -> List[SearchHit]:
        terms = set(_tokens(query))
        if not terms or filters.top_k <= 0:
            return []

        with self._lock:
            candidates = list(self._chunks)

        scored = []
        for position, chunk in enumerate(candidates):
            if filters.session_id and chunk.metadata.get("session_id") != filters.session_id:
                continue
            if filters.document_id and chunk.document_id != filters.document_id:
                continue
            overlap = terms & set(_tokens(chunk.text))
            if not overlap:
                continue
            score = len(overlap) / len(terms)
            scored.append((-score, position, chunk))

        scored.sort(key=lambda item: (item[0], item[1]))
        return [
            SearchHit(text=chunk.text, metadata=dict(chunk.metadata), score=-neg)
            for neg, _, chunk in scored[: filters.top_k]
        ]


class ChromaRetriever:
    """
    chromadb-backed retriever.

    Requires the `chroma` extra. chromadb calls are blocking and run in a
    worker thread.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        collection_name: str = "certeval_chunks",
        chunk_size: int = 800,
        overlap: int = 100,
    ):
        try:
            import chromadb
        except ImportError:
            raise ImportError("chromadb package required: pip install certeval[chroma]")

        if path is not None:
            Path(path).mkdir(parents=True, exist_ok=True)
            self._client = chromadb.PersistentClient(path=str(path))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(name=collection_name)
        self.chunk_size = chunk_size
        self.overlap = overlap

    @staticmethod
    def _filter_metadata(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        allowed_types = (str, int, float, bool)
        return {k: v for k, v in (raw or {}).items() if isinstance(v, allowed_types)}

    @staticmethod
    def _where(filters: SearchFilters) -> Optional[Dict[str, Any]]:
        clauses = []
        if filters.session_id:
            clauses.append({"session_id": {"$eq": filters.session_id}})
        if filters.document_id:
            clauses.append({"document_id": {"$eq": filters.document_id}})
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    async def index_document(
        self,
        session_id: str,
        document_id: str,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        pieces = chunk_text(text, self.chunk_size, self.overlap)
        if not pieces:
            return 0
        base = self._filter_metadata(metadata)
        metadatas = []
        for i in range(len(pieces)):
            meta = dict(base)
            meta.update({"session_id": session_id, "document_id": document_id, "chunk_index": i})
            meta["chunk_id"] = f"{document_id}-{i}"
            metadatas.append(meta)
        ids = [m["chunk_id"] for m in metadatas]
        await asyncio.to_thread(self._collection.upsert, ids=ids, documents=pieces, metadatas=metadatas)
        return len(pieces)

    async def remove_document(self, document_id: str) -> int:
        found = await asyncio.to_thread(self._collection.get, where={"document_id": document_id})
        ids = found.get("ids", [])
        if ids:
            await asyncio.to_thread(self._collection.delete, ids=ids)
        return len(ids)

    async def search(self, query: str, filters: SearchFilters) -> List[SearchHit]:
        count = await asyncio.to_thread(self._collection.count)
        if not count or filters.top_k <= 0:
            return []

        kwargs: Dict[str, Any] = {"query_texts": [query], "n_results": min(filters.top_k, count)}
        where = self._where(filters)
        if where:
            kwargs["where"] = where
        result = await asyncio.to_thread(self._collection.query, **kwargs)

        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]
        hits = []
        for i, text in enumerate(documents):
            distance = distances[i] if i < len(distances) else 0.0
            hits.append(
                SearchHit(
                    text=text or "",
                    metadata=dict(metadatas[i] or {}) if i < len(metadatas) else {},
                    score=1.0 / (1.0 + float(distance)),
                )
            )
        return hits


class GuardedRetriever:
    """
    Applies a per-call timeout and retry policy to another retriever.

    Any backend failure becomes CollaboratorError once retries are exhausted.
    """

    def __init__(
        self,
        inner: Retriever,
        timeout: Optional[float] = 30.0,
        retry: Optional[RetryConfig] = None,
    ):
        self.inner = inner
        self.timeout = timeout
        self.retry = retry or RetryStrategies.collaborator_call()

    async def _search_once(self, query: str, filters: SearchFilters) -> List[SearchHit]:
        try:
            return await call_with_timeout(
                self.inner.search(query, filters), self.timeout, COLLABORATOR_NAME
            )
        except CollaboratorError:
            raise
        except Exception as e:
            raise CollaboratorError(f"Retrieval failed: {e}", collaborator=COLLABORATOR_NAME) from e

    async def search(self, query: str, filters: SearchFilters) -> List[SearchHit]:
        return await async_retry_with_backoff(
            self._search_once, args=(query, filters), config=self.retry
        )

    async def index_document(
        self,
        session_id: str,
        document_id: str,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        try:
            return await self.inner.index_document(session_id, document_id, text, metadata)
        except Exception as e:
            raise CollaboratorError(f"Indexing failed: {e}", collaborator=COLLABORATOR_NAME) from e

    async def remove_document(self, document_id: str) -> int:
        try:
            return await self.inner.remove_document(document_id)
        except Exception as e:
            raise CollaboratorError(f"Removal failed: {e}", collaborator=COLLABORATOR_NAME) from e
