"""Tests for validation, evaluation runs, re-evaluation and criteria generation."""

import pytest
import pytest_asyncio

from certeval.collaborators.language_model import LanguageModel
from certeval.collaborators.retrieval import InMemoryRetriever, SearchHit
from certeval.criteria.generator import CriteriaGenerator
from certeval.evaluation.executor import (
    NO_INFORMATION_REASON,
    NOT_JUDGED_REASON,
    ValidationExecutor,
    build_queries,
    coerce_passed,
    format_context,
    normalize_confidence,
)
from certeval.evaluation.runner import EvaluationRunner
from certeval.storage import CriteriaStore, EvaluationStore
from conftest import CERTIFICATE_TEXT, ScriptedProvider, judgment
from utils.exceptions import NotFoundError, ParseError, ValidationError

CRITERIA = {
    "expiryDate": {"weight": 0.5, "required": True, "value": "after 2026-01-01"},
    "agencyName": {"weight": 0.5, "required": True, "value": "ABC Agency"},
}


@pytest_asyncio.fixture
async def indexed(retriever: InMemoryRetriever) -> InMemoryRetriever:
    await retriever.index_document("s1", "d1", CERTIFICATE_TEXT, {"document_name": "cert.txt", "document_index": 1})
    return retriever


class TestExecutorHelpers:
    def test_queries_name_each_criterion(self) -> None:
        queries = build_queries({"expiryDate": {"value": None}, "agencyName": {"value": "ABC"}})

        assert queries == [
            "Find information about expiryDate: (present and valid)",
            "Find information about agencyName: ABC",
        ]

    @pytest.mark.parametrize(
        "raw, expected",
        [(True, 1.0), (1.7, 1.0), (-2, 0.0), ("0.4", 0.4), ("high", 0.8), ("who knows", 0.5), (None, 0.5)],
    )
    def test_normalize_confidence(self, raw: object, expected: float) -> None:
        assert normalize_confidence(raw) == expected

    @pytest.mark.parametrize("raw, expected", [(True, True), ("yes", True), ("Passed", True), ("no", False), (1, False)])
    def test_coerce_passed(self, raw: object, expected: bool) -> None:
        assert coerce_passed(raw) is expected

    def test_context_from_one_document_is_unlabelled(self) -> None:
        hits = [SearchHit("a", {"document_id": "d1"}), SearchHit("b", {"document_id": "d1"})]

        assert format_context(hits) == "a\n\nb"

    def test_context_from_several_documents_is_labelled(self) -> None:
        hits = [
            SearchHit("old scope", {"document_id": "d1", "document_name": "old.pdf", "document_index": 1}),
            SearchHit("new scope", {"document_id": "d2", "document_name": "new.pdf", "document_index": 2}),
            SearchHit("old expiry", {"document_id": "d1", "document_name": "old.pdf", "document_index": 1}),
        ]

        assert format_context(hits) == (
            "[Document #1: old.pdf]\nold scope\n\nold expiry\n\n[Document #2: new.pdf]\nnew scope"
        )


class TestValidationExecutor:
    @pytest.mark.asyncio
    async def test_no_context_fails_everything_without_calling_model(
        self, provider: ScriptedProvider, executor: ValidationExecutor, criteria_store: CriteriaStore
    ) -> None:
        cs = criteria_store.store("s1", CRITERIA)

        outcome = await executor.evaluate(cs, "d1")

        assert provider.calls == []
        assert outcome.context_found is False
        assert outcome.passed is False
        assert [c.reason for c in outcome.checks] == [NO_INFORMATION_REASON, NO_INFORMATION_REASON]
        assert all(c.found is None for c in outcome.checks)

    @pytest.mark.asyncio
    async def test_session_wide_validation_labels_each_document(
        self,
        provider: ScriptedProvider,
        executor: ValidationExecutor,
        criteria_store: CriteriaStore,
        indexed: InMemoryRetriever,
    ) -> None:
        await indexed.index_document(
            "s1", "d2", "Renewal notice from ABC Agency.", {"document_name": "renewal.txt", "document_index": 2}
        )
        cs = criteria_store.store("s1", CRITERIA)
        provider.queue({"checks": [judgment("expiryDate", True), judgment("agencyName", True)]})

        outcome = await executor.evaluate(cs)

        prompt = provider.calls[-1][-1].content
        assert "[Document #1: cert.txt]" in prompt
        assert "[Document #2: renewal.txt]" in prompt
        assert sorted(outcome.document_ids) == ["d1", "d2"]

    @pytest.mark.asyncio
    async def test_judgments_are_aligned_with_metadata(
        self,
        provider: ScriptedProvider,
        executor: ValidationExecutor,
        criteria_store: CriteriaStore,
        indexed: InMemoryRetriever,
    ) -> None:
        cs = criteria_store.store("s1", CRITERIA)
        provider.queue(
            {
                "checks": [
                    judgment("AGENCYNAME", True, "ABC Agency", "ABC Agency"),
                    judgment("expiryDate", False, "after 2026-01-01", "2025-05-01"),
                    judgment("colour", True),
                ],
                "evidence": ["issued by ABC Agency"],
            }
        )

        outcome = await executor.evaluate(cs, "d1")

        assert [c.criterion for c in outcome.checks] == ["expiryDate", "agencyName"]
        assert [c.passed for c in outcome.checks] == [False, True]
        assert outcome.checks[1].weight == 0.5
        assert outcome.checks[1].required is True
        assert outcome.checks[1].confidence == 0.9
        assert outcome.evidence == ["issued by ABC Agency"]
        assert outcome.document_ids == ["d1"]
        assert outcome.passed is False

    @pytest.mark.asyncio
    async def test_missing_judgment_is_a_failed_check(
        self,
        provider: ScriptedProvider,
        executor: ValidationExecutor,
        criteria_store: CriteriaStore,
        indexed: InMemoryRetriever,
    ) -> None:
        cs = criteria_store.store("s1", CRITERIA)
        provider.queue({"checks": [judgment("expiryDate", True)]})

        outcome = await executor.evaluate(cs)

        agency = outcome.checks[1]
        assert agency.passed is False
        assert agency.reason == NOT_JUDGED_REASON
        assert agency.expected == "ABC Agency"

    @pytest.mark.asyncio
    async def test_response_without_checks_is_parse_error(
        self,
        provider: ScriptedProvider,
        executor: ValidationExecutor,
        criteria_store: CriteriaStore,
        indexed: InMemoryRetriever,
    ) -> None:
        cs = criteria_store.store("s1", CRITERIA)
        provider.queue({"verdict": "looks fine"})

        with pytest.raises(ParseError):
            await executor.evaluate(cs)

    @pytest.mark.asyncio
    async def test_empty_criteria_rejected(self, executor: ValidationExecutor, criteria_store: CriteriaStore) -> None:
        cs = criteria_store.store("s1", {})

        with pytest.raises(ValidationError):
            await executor.evaluate(cs)


class TestEvaluationRunner:
    @pytest.mark.asyncio
    async def test_run_scores_and_persists(
        self,
        provider: ScriptedProvider,
        runner: EvaluationRunner,
        criteria_store: CriteriaStore,
        evaluation_store: EvaluationStore,
        indexed: InMemoryRetriever,
    ) -> None:
        cs = criteria_store.store("s1", CRITERIA, threshold=70)
        provider.queue({"checks": [judgment("expiryDate", True), judgment("agencyName", False)]})

        result = await runner.run(cs, "d1")

        assert result.score.overall_score == 50
        assert result.evaluation.passed is False
        assert result.previous is None
        assert result.comparison is None
        assert evaluation_store.get_latest("s1", "d1").id == result.evaluation.id

    @pytest.mark.asyncio
    async def test_parse_failure_persists_nothing(
        self,
        provider: ScriptedProvider,
        runner: EvaluationRunner,
        criteria_store: CriteriaStore,
        evaluation_store: EvaluationStore,
        indexed: InMemoryRetriever,
    ) -> None:
        cs = criteria_store.store("s1", CRITERIA)
        provider.queue("definitely passes")

        with pytest.raises(ParseError):
            await runner.run(cs, "d1")

        assert evaluation_store.get_history("s1") == []

    @pytest.mark.asyncio
    async def test_reevaluate_creates_new_version_and_compares(
        self,
        provider: ScriptedProvider,
        runner: EvaluationRunner,
        criteria_store: CriteriaStore,
        evaluation_store: EvaluationStore,
        indexed: InMemoryRetriever,
    ) -> None:
        base = criteria_store.store("s1", CRITERIA)
        provider.queue({"checks": [judgment("expiryDate", True), judgment("agencyName", False)]})
        first = await runner.run(base, "d1")
        provider.queue({"checks": [judgment("expiryDate", True), judgment("agencyName", True)]})

        second = await runner.reevaluate("s1", {"expiryDate": {"weight": 0.6}}, document_id="d1")

        working = second.criteria_set
        assert working.id != base.id
        assert working.criteria["expiryDate"] == {"weight": 0.6, "required": True, "value": "after 2026-01-01"}
        assert working.criteria["agencyName"] == CRITERIA["agencyName"]
        assert criteria_store.require(base.id).criteria == CRITERIA
        assert len(criteria_store.list_history("s1")) == 2

        assert second.previous.id == first.evaluation.id
        assert second.comparison.criteria_modified == ("expiryDate",)
        assert second.comparison.status_changed is True
        assert evaluation_store.require(first.evaluation.id).criteria_snapshot == CRITERIA

    @pytest.mark.asyncio
    async def test_reevaluate_update_in_place(
        self,
        provider: ScriptedProvider,
        runner: EvaluationRunner,
        criteria_store: CriteriaStore,
        evaluation_store: EvaluationStore,
        indexed: InMemoryRetriever,
    ) -> None:
        base = criteria_store.store("s1", CRITERIA)
        provider.queue({"checks": [judgment("expiryDate", True), judgment("agencyName", True)]})
        first = await runner.run(base, "d1")
        provider.queue({"checks": [judgment("expiryDate", True), judgment("agencyName", True)]})

        second = await runner.reevaluate(
            "s1", {"agencyName": {"required": False}}, criteria_id=base.id, document_id="d1", persist="update"
        )

        assert second.criteria_set.id == base.id
        assert second.criteria_set.version == base.version + 1
        assert len(criteria_store.list_history("s1")) == 1
        assert evaluation_store.require(first.evaluation.id).criteria_snapshot == CRITERIA
        assert second.comparison.criteria_modified == ("agencyName",)

    @pytest.mark.asyncio
    async def test_reevaluate_without_persisting(
        self,
        provider: ScriptedProvider,
        runner: EvaluationRunner,
        criteria_store: CriteriaStore,
        indexed: InMemoryRetriever,
    ) -> None:
        base = criteria_store.store("s1", CRITERIA)
        provider.queue({"checks": [judgment("expiryDate", True), judgment("agencyName", True)]})

        result = await runner.reevaluate("s1", {"expiryDate": {"weight": 0.9}}, persist="none", threshold=90)

        assert result.evaluation.criteria_id == base.id
        assert result.evaluation.criteria_snapshot["expiryDate"]["weight"] == 0.9
        assert result.evaluation.threshold == 90
        assert criteria_store.require(base.id).criteria == CRITERIA
        assert len(criteria_store.list_history("s1")) == 1

    @pytest.mark.asyncio
    async def test_reevaluate_without_changes_reuses_version(
        self,
        provider: ScriptedProvider,
        runner: EvaluationRunner,
        criteria_store: CriteriaStore,
        indexed: InMemoryRetriever,
    ) -> None:
        base = criteria_store.store("s1", CRITERIA)
        provider.queue({"checks": [judgment("expiryDate", True), judgment("agencyName", True)]})

        result = await runner.reevaluate("s1")

        assert result.criteria_set.id == base.id
        assert len(criteria_store.list_history("s1")) == 1

    @pytest.mark.asyncio
    async def test_reevaluate_errors(self, runner: EvaluationRunner, criteria_store: CriteriaStore) -> None:
        with pytest.raises(NotFoundError):
            await runner.reevaluate("s1", {"a": {"weight": 1.0}})

        criteria_store.store("s1", CRITERIA)
        with pytest.raises(ValidationError):
            await runner.reevaluate("s1", {"a": {}}, persist="sometimes")


class TestCriteriaGenerator:
    @pytest.mark.asyncio
    async def test_generates_and_stores(
        self,
        provider: ScriptedProvider,
        llm: LanguageModel,
        criteria_store: CriteriaStore,
        indexed: InMemoryRetriever,
    ) -> None:
        provider.queue(
            {
                "criteria": {
                    "expiryDate": {"weight": 0.6, "required": True, "value": "2027-05-01"},
                    "agencyName": {"weight": 0.4, "required": True, "value": "ABC Agency"},
                },
                "description": "Checks expiry and issuer.",
                "threshold": 75,
            }
        )

        stored = await CriteriaGenerator(llm, indexed, criteria_store).generate("s1")

        assert criteria_store.get_latest("s1").id == stored.id
        assert stored.threshold == 75
        assert stored.description == "Checks expiry and issuer."
        assert "ABC Agency" in provider.calls[0][1].content

    @pytest.mark.asyncio
    async def test_non_numeric_threshold_uses_default(
        self, provider: ScriptedProvider, llm: LanguageModel, criteria_store: CriteriaStore, indexed: InMemoryRetriever
    ) -> None:
        provider.queue({"criteria": {"expiryDate": {"weight": 1.0}}, "threshold": "high"})

        stored = await CriteriaGenerator(llm, indexed, criteria_store).generate("s1")

        assert stored.threshold == 70

    @pytest.mark.asyncio
    async def test_no_documents(self, llm: LanguageModel, criteria_store: CriteriaStore, retriever: InMemoryRetriever) -> None:
        with pytest.raises(NotFoundError):
            await CriteriaGenerator(llm, retriever, criteria_store).generate("s1")

    @pytest.mark.asyncio
    async def test_missing_criteria_object(
        self, provider: ScriptedProvider, llm: LanguageModel, criteria_store: CriteriaStore, indexed: InMemoryRetriever
    ) -> None:
        provider.queue({"description": "nothing to see"})

        with pytest.raises(ParseError):
            await CriteriaGenerator(llm, indexed, criteria_store).generate("s1")
