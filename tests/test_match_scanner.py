"""Tests for document scanning."""

import pytest
from dataclasses import replace

from src.pattern_engine.config.config_manager import EngineSettings
from src.pattern_engine.pattern_learning.match_scanner import MatchScanner, scan
from src.pattern_engine.pattern_learning.models import Pattern, PatternCategory
from src.pattern_engine.pattern_learning.refined_view import RefinedPatternView, build_views


@pytest.fixture
def scanner():
    """Create a match scanner instance."""
    return MatchScanner(EngineSettings())


class TestMatchScanner:
    """Tests for the MatchScanner class."""

    def test_single_match(self, scanner, ssn_view):
        result = scanner.scan("SSN: 123-45-6789", [ssn_view])

        assert len(result) == 1
        match = result[0]
        assert match.matched_text == "123-45-6789"
        assert match.start == 5
        assert match.end == 16
        assert match.pattern_label == "SSN"
        assert match.category == PatternCategory.PII
        assert not match.is_context_clue
        assert match.confidence.value == pytest.approx(0.9)

    def test_excluded_examples_are_skipped(self, scanner, ssn_view):
        view = replace(ssn_view, excluded_examples=frozenset(["555-12-3456"]))
        result = scanner.scan("555-12-3456 and 123-45-6789", [view])

        assert [m.matched_text for m in result] == ["123-45-6789"]

    def test_exclusion_is_case_sensitive(self, scanner):
        view = RefinedPatternView(
            pattern_id="33333333-3333-4333-8333-333333333333",
            label="Code",
            category=PatternCategory.CUSTOM,
            expression=r"(?i)\bcode-\d{3}\b",
            excluded_examples=frozenset(["code-123"]),
        )
        result = scanner.scan("code-123 CODE-123", [view])

        assert [m.matched_text for m in result] == ["CODE-123"]

    def test_alternates_are_unioned(self, scanner, ssn_view):
        view = replace(ssn_view, alternative_expressions=(r"\b\d{9}\b",))
        result = scanner.scan("123-45-6789 or 987654321", [view])

        assert [m.matched_text for m in result] == ["123-45-6789", "987654321"]
        assert [m.expression_index for m in result] == [0, 1]
        assert result[1].confidence.value == pytest.approx(0.85)

    def test_duplicate_spans_keep_primary(self, scanner, ssn_view):
        view = replace(ssn_view, alternative_expressions=(r"\d{3}-\d{2}-\d{4}",))
        result = scanner.scan("123-45-6789", [view])

        assert len(result) == 1
        assert result[0].expression_index == 0

    def test_overlaps_between_patterns_are_kept(self, scanner, ssn_view):
        digits = RefinedPatternView(
            pattern_id="44444444-4444-4444-8444-444444444444",
            label="Digits",
            category=PatternCategory.CUSTOM,
            expression=r"\b\d{4}\b",
        )
        result = scanner.scan("123-45-6789", [ssn_view, digits])

        assert [(m.pattern_label, m.matched_text) for m in result] == [
            ("SSN", "123-45-6789"), ("Digits", "6789")
        ]

    def test_context_clue_flags(self, scanner, ssn_view, clue_view):
        result = scanner.scan("Social Security: 123-45-6789", [ssn_view, clue_view])

        clue_matches = [m for m in result if m.pattern_id == clue_view.pattern_id]
        ssn_matches = [m for m in result if m.pattern_id == ssn_view.pattern_id]
        assert len(clue_matches) == 1
        assert all(m.is_context_clue for m in clue_matches)
        assert all(not m.is_context_clue for m in ssn_matches)
        assert result[0].matched_text == "Social Security:"

    def test_context_clue_boosts_nearby_match(self, scanner, ssn_view, clue_view):
        result = scanner.scan("Social Security: 123-45-6789", [ssn_view, clue_view])
        ssn = next(m for m in result if not m.is_context_clue)

        assert ssn.confidence.value == pytest.approx(1.0)
        assert ssn.confidence.factors["context_clue"] == pytest.approx(0.1)

    def test_distant_context_clue_does_not_boost(self, scanner, ssn_view, clue_view):
        text = "Social Security:" + " " * 60 + "123-45-6789"
        result = scanner.scan(text, [ssn_view, clue_view])
        ssn = next(m for m in result if not m.is_context_clue)

        assert ssn.confidence.value == pytest.approx(0.9)
        assert "context_clue" not in ssn.confidence.factors

    def test_confidence_threshold_filters(self, scanner, clue_view):
        loose = RefinedPatternView(
            pattern_id="55555555-5555-4555-8555-555555555555",
            label="SSN",
            category=PatternCategory.PII,
            expression=r"\d{3}-\d{2}-\d{4}",
            confidence_threshold=0.85,
        )

        assert [m.matched_text for m in scanner.scan("ID 123-45-6789", [loose])] == ["123-45-6789"]
        assert len(scanner.scan("ID123-45-6789", [loose])) == 0
        result = scanner.scan("Social Security: ID123-45-6789", [loose, clue_view])
        assert [m.matched_text for m in result if not m.is_context_clue] == ["123-45-6789"]

    def test_highest_threshold_keeps_delimited_matches(self, scanner, ssn_view):
        strict = replace(
            ssn_view,
            confidence_threshold=0.95,
            alternative_expressions=(r"\b\d{9}\b",),
        )

        result = scanner.scan("SSN 123-45-6789 or 123456789", [strict])

        assert [m.matched_text for m in result] == ["123-45-6789", "123456789"]

    def test_default_threshold_keeps_undelimited_alternate(self, scanner):
        view = RefinedPatternView(
            pattern_id="66666666-6666-4666-8666-666666666666",
            label="Phone",
            category=PatternCategory.PII,
            expression=r"\b\d{3}-\d{3}-\d{4}\b",
            alternative_expressions=(r"\(\d{3}\) \d{3}-\d{4}",),
        )

        result = scanner.scan("tel(555) 123-4567", [view])

        assert [m.matched_text for m in result] == ["(555) 123-4567"]
        assert result[0].confidence.value == pytest.approx(0.68)

    def test_compiled_expressions_are_bounded(self, ssn_view):
        scanner = MatchScanner(EngineSettings(), regex_cache_size=4)

        for i in range(10):
            scanner.scan("MRN-12345", [replace(ssn_view, expression=rf"\bMRN-{i}\d{{4}}\b")])

        info = scanner._compile.cache_info()
        assert info.maxsize == 4
        assert info.currsize == 4

    def test_boundary_factor(self, scanner):
        view = RefinedPatternView(
            pattern_id="55555555-5555-4555-8555-555555555555",
            label="SSN",
            category=PatternCategory.PII,
            expression=r"\d{3}-\d{2}-\d{4}",
        )
        result = scanner.scan("ID123-45-6789", [view])

        assert result[0].confidence.factors["boundary_match"] == pytest.approx(0.8)
        assert result[0].confidence.value == pytest.approx(0.72)

    def test_validation_rules(self, scanner, ssn_view):
        view = replace(ssn_view, validation_rules=("reject_repeated_digits",))
        result = scanner.scan("111-11-1111 and 123-45-6789", [view])

        assert [m.matched_text for m in result] == ["123-45-6789"]

    def test_unknown_validation_rules_are_ignored(self, scanner, ssn_view):
        view = replace(ssn_view, validation_rules=("no_such_rule",))
        assert len(scanner.scan("123-45-6789", [view])) == 1

    def test_broken_expression_is_isolated(self, scanner, ssn_view):
        broken = RefinedPatternView(
            pattern_id="66666666-6666-4666-8666-666666666666",
            label="Broken",
            category=PatternCategory.CUSTOM,
            expression="(unclosed",
        )
        result = scanner.scan("123-45-6789", [broken, ssn_view])

        assert [m.matched_text for m in result] == ["123-45-6789"]
        assert result.has_errors
        assert result.errors[0].pattern_id == broken.pattern_id
        assert result.errors[0].expression == "(unclosed"

    def test_broken_alternate_skips_whole_pattern(self, scanner, ssn_view):
        view = replace(ssn_view, alternative_expressions=("[",))
        result = scanner.scan("123-45-6789", [view])

        assert len(result) == 0
        assert len(result.errors) == 1

    def test_matches_are_ordered(self, scanner, ssn_view):
        result = scanner.scan("987-65-4321 then 123-45-6789", [ssn_view])
        assert [m.start for m in result] == sorted(m.start for m in result)

    @pytest.mark.parametrize("text", ["", None])
    def test_empty_text(self, scanner, ssn_view, text):
        result = scanner.scan(text, [ssn_view])
        assert len(result) == 0
        assert not result.has_errors

    def test_no_patterns(self, scanner):
        assert len(scanner.scan("123-45-6789", [])) == 0

    def test_scan_documents_keeps_order(self, scanner, ssn_view):
        documents = ["nothing here", "123-45-6789", "111-22-3333 and 444-55-6666"]
        results = scanner.scan_documents(documents, [ssn_view], max_workers=2)

        assert [len(r) for r in results] == [0, 1, 2]

    def test_match_to_dict(self, scanner, ssn_view):
        data = scanner.scan("123-45-6789", [ssn_view])[0].to_dict()

        assert data["matched_text"] == "123-45-6789"
        assert data["category"] == "PII"
        assert data["confidence"]["factors"]["boundary_match"] == 1.0


def test_module_level_scan(ssn_view):
    assert len(scan("123-45-6789", [ssn_view])) == 1


def test_build_views_skips_inactive():
    active = Pattern(label="A", expression=r"\d+")
    inactive = Pattern(label="B", expression=r"\d+", is_active=False)

    views = build_views([active, inactive])

    assert [v.pattern_id for v in views] == [active.id]
    assert not hasattr(views[0], "examples")
