"""Tests for text extraction and the retrieval backends."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from certeval.collaborators.extraction import TextExtractor, guess_mime_type
from certeval.collaborators.retrieval import (
    GuardedRetriever,
    InMemoryRetriever,
    SearchFilters,
    SearchHit,
    chunk_text,
    group_by_document,
)
from utils.exceptions import CollaboratorError, ExtractionError
from utils.retry import RetryConfig


class BrokenRetriever:
    """Retriever whose backend is unreachable."""

    def __init__(self):
        self.searches = 0

    async def search(self, query: str, filters: SearchFilters) -> List[SearchHit]:
        self.searches += 1
        raise RuntimeError("connection refused")

    async def index_document(
        self, session_id: str, document_id: str, text: str, metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        raise RuntimeError("disk full")

    async def remove_document(self, document_id: str) -> int:
        return 0


class TestTextExtractor:
    @pytest.mark.asyncio
    async def test_plain_text(self, certificate_file: Path) -> None:
        text = await TextExtractor().extract_text(certificate_file)

        assert "ABC Agency" in text

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ExtractionError):
            await TextExtractor().extract_text(tmp_path / "missing.txt")

    @pytest.mark.asyncio
    async def test_unsupported_type(self, tmp_path: Path) -> None:
        image = tmp_path / "scan.png"
        image.write_bytes(b"\x89PNG\r\n")

        with pytest.raises(ExtractionError, match="Unsupported"):
            await TextExtractor().extract_text(image)

    @pytest.mark.asyncio
    async def test_blank_file(self, tmp_path: Path) -> None:
        blank = tmp_path / "blank.txt"
        blank.write_text("   \n")

        with pytest.raises(ExtractionError, match="No text"):
            await TextExtractor().extract_text(blank)

    def test_guess_mime_type(self) -> None:
        assert guess_mime_type("cert.pdf") == "application/pdf"
        assert guess_mime_type("notes.txt") == "text/plain"
        assert guess_mime_type("blob") == "application/octet-stream"


class TestChunking:
    def test_short_text_is_one_chunk(self) -> None:
        assert chunk_text("  hello world  ") == ["hello world"]

    def test_empty_text(self) -> None:
        assert chunk_text("   ") == []

    def test_long_text_overlaps(self) -> None:
        text = " ".join(f"word{i}" for i in range(400))

        chunks = chunk_text(text, chunk_size=200, overlap=40)

        assert len(chunks) > 1
        assert all(len(c) <= 200 for c in chunks)
        assert chunks[0].split()[-1] in chunks[1]


class TestInMemoryRetriever:
    @pytest.mark.asyncio
    async def test_ranks_by_term_overlap(self) -> None:
        retriever = InMemoryRetriever(chunk_size=60, overlap=0)
        await retriever.index_document(
            "s1",
            "d1",
            "The certificate expiry date is 2027-05-01. "
            "Issued by ABC Agency under ISO 27001 for software design.",
        )

        hits = await retriever.search("expiry date", SearchFilters(session_id="s1", top_k=5))

        assert hits
        assert "expiry" in hits[0].text
        assert hits[0].score == 1.0
        assert all("expiry" in h.text or "date" in h.text for h in hits)

    @pytest.mark.asyncio
    async def test_filters_by_session_and_document(self) -> None:
        retriever = InMemoryRetriever()
        await retriever.index_document("s1", "d1", "agency ABC", {"document_name": "a.txt", "document_index": 1})
        await retriever.index_document("s1", "d2", "agency XYZ", {"document_name": "b.txt", "document_index": 2})
        await retriever.index_document("s2", "d3", "agency QRS")

        session_hits = await retriever.search("agency", SearchFilters(session_id="s1"))
        doc_hits = await retriever.search("agency", SearchFilters(session_id="s1", document_id="d2"))

        assert {h.document_id for h in session_hits} == {"d1", "d2"}
        assert [h.text for h in doc_hits] == ["agency XYZ"]
        assert doc_hits[0].metadata["document_name"] == "b.txt"

    @pytest.mark.asyncio
    async def test_remove_document(self) -> None:
        retriever = InMemoryRetriever()
        await retriever.index_document("s1", "d1", "agency ABC")

        assert await retriever.remove_document("d1") == 1
        assert await retriever.search("agency", SearchFilters(session_id="s1")) == []

    @pytest.mark.asyncio
    async def test_zero_top_k(self) -> None:
        retriever = InMemoryRetriever()
        await retriever.index_document("s1", "d1", "agency ABC")

        assert await retriever.search("agency", SearchFilters(top_k=0)) == []


class TestGroupByDocument:
    def test_groups_in_first_seen_order(self) -> None:
        hits = [
            SearchHit("a1", {"document_id": "d2", "document_name": "b.pdf", "document_index": 2}),
            SearchHit("b1", {"document_id": "d1", "document_name": "a.pdf", "document_index": 1}),
            SearchHit("a2", {"document_id": "d2", "document_name": "b.pdf", "document_index": 2}),
            SearchHit("orphan", {}),
        ]

        groups = group_by_document(hits)

        assert [g.document_id for g in groups] == ["d2", "d1"]
        assert [h.text for h in groups[0].chunks] == ["a1", "a2"]
        assert groups[1].document_index == 1


class TestGuardedRetriever:
    @pytest.mark.asyncio
    async def test_backend_failure_becomes_collaborator_error(self) -> None:
        inner = BrokenRetriever()
        guarded = GuardedRetriever(inner, retry=RetryConfig(max_attempts=2, initial_delay=0.0, jitter=False))

        with pytest.raises(CollaboratorError) as exc_info:
            await guarded.search("expiry", SearchFilters())

        assert inner.searches == 2
        assert exc_info.value.collaborator == "retrieval"

    @pytest.mark.asyncio
    async def test_index_failure(self) -> None:
        guarded = GuardedRetriever(BrokenRetriever())

        with pytest.raises(CollaboratorError, match="Indexing failed"):
            await guarded.index_document("s1", "d1", "text")

    @pytest.mark.asyncio
    async def test_passes_results_through(self) -> None:
        inner = InMemoryRetriever()
        guarded = GuardedRetriever(inner, timeout=1.0)
        await guarded.index_document("s1", "d1", "agency ABC")

        hits = await guarded.search("agency", SearchFilters(session_id="s1"))

        assert [h.text for h in hits] == ["agency ABC"]
