"""Tests for the scoring engine."""

import pytest

from certeval.scoring import Normalization, score
from certeval.storage.records import CriterionCheck


class TestScoreScenarios:
    def test_single_required_criterion_passing(self) -> None:
        criteria = {"expiryDate": {"weight": 1.0, "required": True}}
        checks = [{"criterion": "expiryDate", "passed": True}]

        result = score(checks, criteria, threshold=70)

        assert result.overall_score == 100
        assert result.passed is True

    def test_failed_required_criterion_fails_overall(self) -> None:
        criteria = {
            "a": {"weight": 0.5, "required": True},
            "b": {"weight": 0.5, "required": False},
        }
        checks = [
            {"criterion": "a", "passed": False},
            {"criterion": "b", "passed": True},
        ]

        result = score(checks, criteria, threshold=70)

        assert result.overall_score == 50
        assert result.passed is False
        assert result.failed_required == ["a"]

    def test_required_failure_overrides_high_score(self) -> None:
        criteria = {
            "main": {"weight": 0.9, "required": False},
            "gate": {"weight": 0.1, "required": True},
        }
        checks = [
            CriterionCheck(criterion="main", passed=True),
            CriterionCheck(criterion="gate", passed=False),
        ]

        result = score(checks, criteria, threshold=50)

        assert result.overall_score == 90
        assert result.threshold_passed is True
        assert result.required_passed is False
        assert result.passed is False


class TestScoreNormalization:
    def test_unit_weight_all_pass_is_100(self) -> None:
        criteria = {"a": {"weight": 0.25}, "b": {"weight": 0.75}}
        checks = [{"criterion": "a", "passed": True}, {"criterion": "b", "passed": True}]

        result = score(checks, criteria)

        assert result.overall_score == 100
        assert result.normalization == Normalization.WEIGHTED

    def test_unit_weight_none_pass_is_0(self) -> None:
        criteria = {"a": {"weight": 0.4}, "b": {"weight": 0.6}}
        checks = [{"criterion": "a", "passed": False}, {"criterion": "b", "passed": False}]

        assert score(checks, criteria).overall_score == 0

    def test_partial_weights_are_not_rescaled(self) -> None:
        criteria = {"a": {"weight": 0.3}, "b": {"weight": 0.3}}
        checks = [{"criterion": "a", "passed": True}, {"criterion": "b", "passed": True}]

        assert score(checks, criteria).overall_score == 60

    def test_overweight_sum_is_normalized(self) -> None:
        criteria = {"a": {"weight": 2.0}, "b": {"weight": 1.0}, "c": {"weight": 1.0}}
        checks = [
            {"criterion": "a", "passed": True},
            {"criterion": "b", "passed": False},
            {"criterion": "c", "passed": True},
        ]

        result = score(checks, criteria)

        assert result.normalization == Normalization.PROPORTIONAL
        assert result.overall_score == 75
        assert 0 <= result.overall_score <= 100

    @pytest.mark.parametrize("weights", [[1.5, 1.5], [10.0, 0.1, 3.3], [0.9, 0.9, 0.9, 0.9]])
    def test_overweight_stays_in_range(self, weights: list) -> None:
        criteria = {f"c{i}": {"weight": w} for i, w in enumerate(weights)}
        checks = [{"criterion": f"c{i}", "passed": i % 2 == 0} for i in range(len(weights))]

        result = score(checks, criteria)

        assert 0 <= result.overall_score <= 100

    def test_zero_weights_fall_back_to_pass_ratio(self) -> None:
        checks = [
            {"criterion": "a", "passed": True},
            {"criterion": "b", "passed": False},
            {"criterion": "c", "passed": True},
            {"criterion": "d", "passed": True},
        ]

        result = score(checks, {})

        assert result.normalization == Normalization.UNWEIGHTED
        assert result.overall_score == 75

    def test_no_checks_scores_zero(self) -> None:
        result = score([], {})

        assert result.overall_score == 0
        assert result.normalization == Normalization.EMPTY
        assert result.passed is False

    def test_check_weight_overrides_criteria_weight(self) -> None:
        criteria = {"a": {"weight": 0.1}}
        checks = [CriterionCheck(criterion="a", passed=True, weight=1.0)]

        assert score(checks, criteria).overall_score == 100

    def test_score_is_rounded_to_two_decimals(self) -> None:
        criteria = {"a": {"weight": 1.0}, "b": {"weight": 1.0}, "c": {"weight": 1.0}}
        checks = [
            {"criterion": "a", "passed": True},
            {"criterion": "b", "passed": False},
            {"criterion": "c", "passed": False},
        ]

        assert score(checks, criteria).overall_score == 33.33


class TestScoreThreshold:
    def test_default_threshold_is_70(self) -> None:
        checks = [{"criterion": "a", "passed": True}, {"criterion": "b", "passed": False}]
        criteria = {"a": {"weight": 0.7, "required": False}, "b": {"weight": 0.3, "required": False}}

        result = score(checks, criteria)

        assert result.threshold == 70
        assert result.passed is True

    def test_threshold_is_clamped(self) -> None:
        checks = [{"criterion": "a", "passed": True}]

        assert score(checks, {"a": {"weight": 1.0}}, threshold=250).threshold == 100
        assert score(checks, {"a": {"weight": 1.0}}, threshold=-5).threshold == 0

    def test_none_threshold_uses_default(self) -> None:
        result = score([{"criterion": "a", "passed": True}], {"a": {"weight": 1.0}}, threshold=None)

        assert result.threshold == 70


class TestScoreDeterminism:
    def test_identical_inputs_give_identical_results(self) -> None:
        criteria = {"a": {"weight": 0.6, "required": True}, "b": {"weight": 0.9, "required": False}}
        checks = [{"criterion": "a", "passed": True}, {"criterion": "b", "passed": False}]

        first = score(checks, criteria, threshold=40)
        for _ in range(5):
            again = score(checks, criteria, threshold=40)
            assert again.overall_score == first.overall_score
            assert again.passed == first.passed
            assert again.to_dict() == first.to_dict()


class TestScoreResultSummary:
    def test_message_mentions_score_and_threshold(self) -> None:
        result = score([{"criterion": "a", "passed": True}], {"a": {"weight": 1.0}}, threshold=80)

        assert "Overall Score: 100.00/100 (Threshold: 80)" in result.message
        assert "1 of 1 criteria passed" in result.message

    def test_message_notes_required_failure(self) -> None:
        result = score(
            [{"criterion": "a", "passed": False}], {"a": {"weight": 1.0, "required": True}}
        )

        assert "Some required criteria failed" in result.message

    def test_breakdown_contributions(self) -> None:
        criteria = {"a": {"weight": 0.4}, "b": {"weight": 0.6}}
        checks = [{"criterion": "a", "passed": True}, {"criterion": "b", "passed": False}]

        breakdown = {b.criterion: b for b in score(checks, criteria).breakdown}

        assert breakdown["a"].contribution == 0.4
        assert breakdown["a"].sub_score == 40
        assert breakdown["b"].contribution == 0
        assert breakdown["b"].sub_score == 0
