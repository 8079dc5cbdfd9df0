"""Tests for automatic and suggested refinement."""

import re
import pytest
from unittest.mock import Mock

from src.pattern_engine.config.config_manager import EngineSettings
from src.pattern_engine.exceptions import (
    ExpressionCompileError,
    InvalidInputError,
    RefinementConflictError,
)
from src.pattern_engine.pattern_learning.expression_learner import learn
from src.pattern_engine.pattern_learning.models import (
    AccuracyMetrics,
    FeedbackRecord,
    FeedbackType,
    Pattern,
    PatternCategory,
    RefinementSuggestions,
)
from src.pattern_engine.pattern_learning.refinement_engine import RefinementEngine


def records(pattern_id, texts, feedback_type):
    return [
        FeedbackRecord(pattern_id=pattern_id, matched_text=t, feedback_type=feedback_type)
        for t in texts
    ]


@pytest.fixture
def pattern():
    """SSN pattern learned from two examples."""
    examples = ["123-45-6789", "987-65-4321"]
    return Pattern(
        label="SSN",
        expression=learn(examples).expression,
        category=PatternCategory.PII,
        examples=examples,
    )


@pytest.fixture
def mock_store(pattern):
    """Create a mock store serving one pattern."""
    store = Mock()
    store.require_pattern.return_value = pattern
    store.find_feedback.return_value = []
    return store


@pytest.fixture
def refinement_engine(mock_store):
    """Create a refinement engine on the mock store."""
    return RefinementEngine(mock_store, settings=EngineSettings())


def serve_feedback(store, negatives=(), positives=()):
    """Make the mock store return the given feedback by type."""
    def find_feedback(pattern_id, feedback_type=None, **kwargs):
        if feedback_type == FeedbackType.NEGATIVE:
            return records(pattern_id, negatives, FeedbackType.NEGATIVE)
        if feedback_type == FeedbackType.POSITIVE:
            return records(pattern_id, positives, FeedbackType.POSITIVE)
        return []
    store.find_feedback.side_effect = find_feedback


class TestAutoRefine:
    """Tests for RefinementEngine.auto_refine."""

    def test_excludes_at_threshold(self, refinement_engine, pattern):
        metrics = AccuracyMetrics(precision=0.9, total_feedback=3)

        assert refinement_engine.auto_refine(pattern, "555-12-3456", 3, metrics)
        assert pattern.excluded_examples == ["555-12-3456"]
        assert pattern.last_refined_at is not None

    def test_no_exclusion_below_threshold(self, refinement_engine, pattern):
        metrics = AccuracyMetrics(precision=0.9, total_feedback=2)

        assert not refinement_engine.auto_refine(pattern, "555-12-3456", 2, metrics)
        assert pattern.excluded_examples == []
        assert pattern.last_refined_at is None

    def test_already_excluded(self, refinement_engine, pattern):
        pattern.excluded_examples = ["555-12-3456"]
        metrics = AccuracyMetrics(precision=0.9, total_feedback=4)

        assert not refinement_engine.auto_refine(pattern, "555-12-3456", 4, metrics)
        assert pattern.excluded_examples == ["555-12-3456"]

    def test_pattern_threshold_is_used(self, refinement_engine, pattern):
        pattern.auto_refine_threshold = 5
        metrics = AccuracyMetrics(precision=0.9, total_feedback=4)

        assert not refinement_engine.auto_refine(pattern, "555-12-3456", 4, metrics)

    @pytest.mark.parametrize("total,precision,current,expected", [
        (1, 0.0, 0.7, 0.8),
        (5, 0.4, 0.7, 0.8),
        (5, 0.5, 0.7, 0.7),
        (3, 0.6, 0.7, 0.7),
        (10, 0.1, 0.9, 0.95),
        (10, 0.1, 0.95, 0.95),
    ])
    def test_threshold_raise(self, refinement_engine, pattern, total, precision, current, expected):
        pattern.confidence_threshold = current
        metrics = AccuracyMetrics(precision=precision, total_feedback=total)

        refinement_engine.auto_refine(pattern, "555-12-3456", 1, metrics)

        assert pattern.confidence_threshold == pytest.approx(expected)


class TestSuggest:
    """Tests for RefinementEngine.suggest."""

    def test_no_feedback(self, refinement_engine, pattern):
        suggestions = refinement_engine.suggest(pattern.id)

        assert suggestions.is_empty
        assert suggestions.base_expression == pattern.expression
        assert suggestions.reasoning == []

    def test_frequent_false_positives_are_suggested(self, refinement_engine, mock_store, pattern):
        serve_feedback(mock_store, negatives=["555-12-3456"] * 3 + ["555-00-1111"] * 2)

        suggestions = refinement_engine.suggest(pattern.id)

        assert suggestions.excluded_examples == ["555-12-3456"]
        assert any("555-12-3456" in line for line in suggestions.reasoning)

    def test_existing_exclusions_are_not_suggested(self, refinement_engine, mock_store, pattern):
        pattern.excluded_examples = ["555-12-3456"]
        serve_feedback(mock_store, negatives=["555-12-3456"] * 4)

        assert refinement_engine.suggest(pattern.id).excluded_examples == []

    def test_recent_window_is_requested(self, refinement_engine, mock_store, pattern):
        refinement_engine.suggest(pattern.id)

        mock_store.find_feedback.assert_any_call(
            pattern.id,
            feedback_type=FeedbackType.NEGATIVE,
            limit=50,
            newest_first=True,
        )

    def test_improved_expression_drops_excluded_format(self, refinement_engine, mock_store, pattern):
        pattern.examples = ["123-45-6789", "123456789", "987654321"]
        pattern.expression = learn(pattern.examples).expression
        pattern.excluded_examples = ["123456789"]
        serve_feedback(mock_store, negatives=["987654321"] * 3)

        suggestions = refinement_engine.suggest(pattern.id)

        assert suggestions.improved_expression is not None
        assert re.fullmatch(suggestions.improved_expression, "555-12-3456")
        assert not re.fullmatch(suggestions.improved_expression, "555123456")
        assert suggestions.alternative_expressions == []

    def test_unchanged_expression_is_not_suggested(self, refinement_engine, mock_store, pattern):
        serve_feedback(mock_store, positives=["555-12-3456"])

        assert refinement_engine.suggest(pattern.id).improved_expression is None

    def test_confirmed_positives_extend_examples(self, refinement_engine, mock_store, pattern):
        serve_feedback(mock_store, positives=["123456789"])

        suggestions = refinement_engine.suggest(pattern.id)

        assert suggestions.improved_expression == pattern.expression
        assert len(suggestions.alternative_expressions) == 1
        assert re.fullmatch(suggestions.alternative_expressions[0], "555123456")

    def test_validation_rules_from_false_positive_shapes(self, refinement_engine, mock_store, pattern):
        serve_feedback(mock_store, negatives=["111-11-1111", "222-22-2222", "333-33-3333"])

        suggestions = refinement_engine.suggest(pattern.id)

        assert suggestions.validation_rules == ["reject_repeated_digits"]
        assert any("reject_repeated_digits" in line for line in suggestions.reasoning)

    def test_rules_never_reject_accepted_examples(self, refinement_engine, mock_store, pattern):
        pattern.examples = ["012-34-5678"]
        pattern.expression = learn(pattern.examples).expression
        serve_feedback(mock_store, negatives=["000-12-3456", "011-22-3344"])

        assert "reject_leading_zeros" not in refinement_engine.suggest(pattern.id).validation_rules

    def test_rules_need_two_false_positives(self, refinement_engine, mock_store, pattern):
        serve_feedback(mock_store, negatives=["111-11-1111"])

        assert refinement_engine.suggest(pattern.id).validation_rules == []

    def test_applied_rules_are_not_suggested_again(self, refinement_engine, mock_store, pattern):
        pattern.validation_rules = ["reject_repeated_digits"]
        serve_feedback(mock_store, negatives=["111-11-1111", "222-22-2222"])

        assert refinement_engine.suggest(pattern.id).validation_rules == []

    def test_threshold_suggestion_on_low_precision(self, refinement_engine, pattern):
        pattern.accuracy_metrics = AccuracyMetrics(precision=0.6, total_feedback=5)

        assert refinement_engine.suggest(pattern.id).confidence_threshold == pytest.approx(0.8)

    def test_no_threshold_suggestion_on_good_precision(self, refinement_engine, pattern):
        pattern.accuracy_metrics = AccuracyMetrics(precision=0.9, total_feedback=5)

        assert refinement_engine.suggest(pattern.id).confidence_threshold is None


class TestApply:
    """Tests for applying suggestions to stored patterns."""

    def test_apply_exclusions(self, engine, ssn_pattern):
        suggestions = RefinementSuggestions(
            pattern_id=ssn_pattern.id,
            base_expression=ssn_pattern.expression,
            excluded_examples=["555-12-3456"],
        )

        updated = engine.apply_refinements(ssn_pattern.id, suggestions)

        assert updated.excluded_examples == ["555-12-3456"]
        assert updated.last_refined_at is not None
        result = engine.scan("555-12-3456 and 123-45-6789")
        assert [m.matched_text for m in result] == ["123-45-6789"]

    def test_apply_is_idempotent(self, engine, ssn_pattern):
        suggestions = RefinementSuggestions(
            pattern_id=ssn_pattern.id,
            base_expression=ssn_pattern.expression,
            excluded_examples=["555-12-3456", "000-00-0000"],
            improved_expression=r"\b\d{3}-\d{2}-\d{4}\b",
            validation_rules=["reject_repeated_digits"],
            confidence_threshold=0.8,
        )

        once = engine.apply_refinements(ssn_pattern.id, suggestions)
        twice = engine.apply_refinements(ssn_pattern.id, suggestions)

        assert set(twice.excluded_examples) == set(once.excluded_examples)
        assert len(twice.excluded_examples) == 2
        assert twice.validation_rules == ["reject_repeated_digits"]
        assert twice.expression == r"\b\d{3}-\d{2}-\d{4}\b"
        assert twice.confidence_threshold == pytest.approx(0.8)

    def test_threshold_is_never_lowered(self, engine, ssn_pattern):
        engine.apply_refinements(ssn_pattern.id, RefinementSuggestions(
            pattern_id=ssn_pattern.id,
            base_expression=ssn_pattern.expression,
            confidence_threshold=0.9,
        ))
        updated = engine.apply_refinements(ssn_pattern.id, RefinementSuggestions(
            pattern_id=ssn_pattern.id,
            base_expression=ssn_pattern.expression,
            confidence_threshold=0.75,
        ))

        assert updated.confidence_threshold == pytest.approx(0.9)

    def test_threshold_is_capped(self, engine, ssn_pattern):
        updated = engine.apply_refinements(ssn_pattern.id, RefinementSuggestions(
            pattern_id=ssn_pattern.id,
            base_expression=ssn_pattern.expression,
            confidence_threshold=0.99,
        ))

        assert updated.confidence_threshold == pytest.approx(0.95)

    def test_stale_suggestions_conflict(self, engine, ssn_pattern):
        engine.apply_refinements(ssn_pattern.id, RefinementSuggestions(
            pattern_id=ssn_pattern.id,
            base_expression=ssn_pattern.expression,
            improved_expression=r"\b\d{3}-\d{2}-\d{4}\b",
        ))
        stale = RefinementSuggestions(
            pattern_id=ssn_pattern.id,
            base_expression=ssn_pattern.expression,
            improved_expression=r"\b\d{3} \d{2} \d{4}\b",
        )

        with pytest.raises(RefinementConflictError):
            engine.apply_refinements(ssn_pattern.id, stale)

    def test_invalid_improved_expression(self, engine, ssn_pattern):
        suggestions = RefinementSuggestions(
            pattern_id=ssn_pattern.id,
            base_expression=ssn_pattern.expression,
            excluded_examples=["555-12-3456"],
            improved_expression="(unclosed",
        )

        with pytest.raises(ExpressionCompileError):
            engine.apply_refinements(ssn_pattern.id, suggestions)

        pattern = engine.get_pattern(ssn_pattern.id)
        assert pattern.expression == ssn_pattern.expression
        assert pattern.excluded_examples == []

    def test_suggestions_for_another_pattern(self, engine, ssn_pattern):
        other = engine.create_pattern_from_examples("MRN", ["MRN-12345"])
        suggestions = RefinementSuggestions(pattern_id=other.id, base_expression=other.expression)

        with pytest.raises(InvalidInputError):
            engine.apply_refinements(ssn_pattern.id, suggestions)

    def test_unknown_rule(self, engine, ssn_pattern):
        suggestions = RefinementSuggestions(
            pattern_id=ssn_pattern.id,
            base_expression=ssn_pattern.expression,
            validation_rules=["no_such_rule"],
        )

        with pytest.raises(InvalidInputError):
            engine.apply_refinements(ssn_pattern.id, suggestions)

    def test_suggest_and_apply_round(self, engine, ssn_pattern):
        for _ in range(3):
            engine.record_feedback(ssn_pattern.id, "123-45-6789", "positive")
        for text in ["111-11-1111", "222-22-2222", "333-33-3333"]:
            engine.record_feedback(ssn_pattern.id, text, "negative")
        assert engine.get_pattern(ssn_pattern.id).confidence_threshold == pytest.approx(0.7)

        suggestions = engine.suggest_refinements(ssn_pattern.id)
        assert "reject_repeated_digits" in suggestions.validation_rules
        assert suggestions.confidence_threshold == pytest.approx(0.8)

        engine.apply_refinements(ssn_pattern.id, suggestions)

        # Threshold 0.8 still admits a well-delimited primary match
        result = engine.scan("444-44-4444 and 987-65-4321")
        assert [m.matched_text for m in result] == ["987-65-4321"]
