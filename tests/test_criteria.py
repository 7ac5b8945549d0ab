"""Tests for criteria schema checks, deep merge and interpretation."""

import logging
import math

import pytest

from certeval.collaborators.language_model import LanguageModel
from certeval.criteria import (
    CriteriaInterpreter,
    changed_keys,
    deep_merge,
    ensure_not_empty,
    keyword_fallback,
    normalize_structured,
    normalize_threshold,
    validate_criteria_map,
)
from conftest import ScriptedProvider
from utils.exceptions import ValidationError


class TestValidateCriteriaMap:
    def test_accepts_open_mapping_and_keeps_extra_keys(self) -> None:
        criteria = {
            "expiryDate": {"weight": 0.6, "required": True, "value": "after 2025-01-01"},
            "customRule": {"value": "issued in EU", "notes": "from procurement"},
        }

        assert validate_criteria_map(criteria) == criteria

    @pytest.mark.parametrize(
        "criteria",
        [
            ["expiryDate"],
            {"expiryDate": "soon"},
            {"": {"weight": 0.5}},
            {"a": {"weight": -0.1}},
            {"a": {"weight": "heavy"}},
            {"a": {"weight": True}},
            {"a": {"weight": math.inf}},
            {"a": {"required": "yes"}},
        ],
    )
    def test_rejects_malformed_criteria(self, criteria: object) -> None:
        with pytest.raises(ValidationError):
            validate_criteria_map(criteria)

    def test_weight_sum_above_one_is_allowed_but_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="certeval.criteria.schema"):
            validate_criteria_map({"a": {"weight": 0.8}, "b": {"weight": 0.8}})

        assert "sum to 1.600" in caplog.text

    def test_empty_criteria_rejected_for_validation(self) -> None:
        with pytest.raises(ValidationError):
            ensure_not_empty({})


class TestNormalizeThreshold:
    def test_default(self) -> None:
        assert normalize_threshold(None) == 70

    def test_clamps(self) -> None:
        assert normalize_threshold(120) == 100
        assert normalize_threshold(-3) == 0
        assert normalize_threshold(55.5) == 55.5

    @pytest.mark.parametrize("value", ["70", True, float("nan")])
    def test_rejects_non_numbers(self, value: object) -> None:
        with pytest.raises(ValidationError):
            normalize_threshold(value)


class TestDeepMerge:
    def test_merges_only_changed_keys(self) -> None:
        base = {
            "expiryDate": {"weight": 0.5, "required": True, "value": "after 2025"},
            "agencyName": {"weight": 0.5, "value": "ABC Agency"},
        }

        merged = deep_merge(base, {"expiryDate": {"weight": 0.6}})

        assert merged["expiryDate"] == {"weight": 0.6, "required": True, "value": "after 2025"}
        assert merged["agencyName"] == base["agencyName"]

    def test_lists_are_replaced_not_merged(self) -> None:
        base = {"scope": {"value": ["design", "manufacture"]}}

        merged = deep_merge(base, {"scope": {"value": ["installation"]}})

        assert merged["scope"]["value"] == ["installation"]

    def test_inputs_are_not_modified(self) -> None:
        base = {"a": {"weight": 0.5, "tags": ["x"]}}
        updates = {"a": {"weight": 0.7}, "b": {"value": 1}}

        merged = deep_merge(base, updates)
        merged["a"]["tags"].append("y")

        assert base == {"a": {"weight": 0.5, "tags": ["x"]}}
        assert updates == {"a": {"weight": 0.7}, "b": {"value": 1}}

    def test_scalar_replaces_mapping(self) -> None:
        assert deep_merge({"a": {"weight": 1}}, {"a": None}) == {"a": None}


class TestChangedKeys:
    def test_reports_added_removed_and_modified(self) -> None:
        old = {"a": {"weight": 0.5}, "b": {"value": 1}, "c": {"value": 2}}
        new = {"a": {"weight": 0.6}, "b": {"value": 1}, "d": {"value": 3}}

        assert changed_keys(old, new) == ["a", "c", "d"]

    def test_is_symmetric(self) -> None:
        old = {"a": {"weight": 0.5}, "b": {"value": 1}}
        new = {"a": {"weight": 0.5, "required": False}, "c": {}}

        assert changed_keys(old, new) == changed_keys(new, old)

    def test_key_order_is_irrelevant(self) -> None:
        assert changed_keys({"a": {"x": 1, "y": 2}}, {"a": {"y": 2, "x": 1}}) == []


class TestNormalizeStructured:
    def test_maps_loose_values_onto_records(self) -> None:
        structured = {
            "agencyName": True,
            "expiryDate": None,
            "standard": "ISO 27001",
            "scope": {"value": "design", "weight": 0.4},
            "ignored": False,
        }

        assert normalize_structured(structured) == {
            "agencyName": {"value": None},
            "expiryDate": {"value": None},
            "standard": {"value": "ISO 27001"},
            "scope": {"value": "design", "weight": 0.4},
        }

    def test_non_mapping_gives_empty(self) -> None:
        assert normalize_structured(["agencyName"]) == {}


class TestKeywordFallback:
    def test_expiry_and_agency(self) -> None:
        found = keyword_fallback("Check the agency and whether it's valid until next year")

        assert found is not None
        assert set(found.criteria) == {"expiryDate", "agencyName"}
        assert found.source == "keywords"

    def test_no_keywords(self) -> None:
        assert keyword_fallback("make sure it looks official") is None


class TestCriteriaInterpreter:
    @pytest.mark.asyncio
    async def test_structured_answer(self, provider: ScriptedProvider, llm: LanguageModel) -> None:
        provider.queue(
            {
                "structured": {"agencyName": "ABC Agency", "expiryDate": True},
                "description": "Check agency and expiry.",
                "threshold": 80,
            }
        )

        result = await CriteriaInterpreter(llm).interpret("agency ABC Agency and expiry date, pass at 80")

        assert result is not None
        assert result.criteria == {"agencyName": {"value": "ABC Agency"}, "expiryDate": {"value": None}}
        assert result.description == "Check agency and expiry."
        assert result.threshold == 80
        assert result.source == "model"

    @pytest.mark.asyncio
    async def test_empty_answer_asks_for_clarification(
        self, provider: ScriptedProvider, llm: LanguageModel
    ) -> None:
        provider.queue({"structured": {}, "description": ""})

        assert await CriteriaInterpreter(llm).interpret("hello there, check the expiry") is None

    @pytest.mark.asyncio
    async def test_description_only_becomes_requirement(
        self, provider: ScriptedProvider, llm: LanguageModel
    ) -> None:
        provider.queue({"structured": {}, "description": "Must be issued to a UK company."})

        result = await CriteriaInterpreter(llm).interpret("it must be issued to a UK company")

        assert result is not None
        assert result.criteria == {"requirement": {"value": "Must be issued to a UK company."}}

    @pytest.mark.asyncio
    async def test_unparseable_answer_uses_keywords(self, provider: ScriptedProvider, llm: LanguageModel) -> None:
        provider.queue("I think you want the expiry date checked.")

        result = await CriteriaInterpreter(llm).interpret("please check the expiry date")

        assert result is not None
        assert result.criteria == {"expiryDate": {"value": None}}
        assert result.source == "keywords"

    @pytest.mark.asyncio
    async def test_provider_failure_without_keywords(self, llm: LanguageModel) -> None:
        # Nothing queued: the provider reports an error
        assert await CriteriaInterpreter(llm).interpret("make it look nice") is None
