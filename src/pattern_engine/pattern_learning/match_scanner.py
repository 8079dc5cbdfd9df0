"""Scans documents for occurrences of refined patterns."""

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Tuple

from ..config.config_manager import EngineSettings
from ..exceptions import ExpressionCompileError
from .models import ConfidenceScore, Match, ScanError, ScanResult
from .pattern_validator import PatternValidator
from .refined_view import RefinedPatternView
from .validation_rules import get_rules, passes_rules

logger = logging.getLogger(__name__)

REGEX_CACHE_SIZE = 512


class MatchScanner:
    """
    Applies refined patterns to text.

    Features:
    - Primary and alternate expressions, unioned
    - Exclusion of confirmed false positives
    - Validation rules
    - Confidence scoring with context clue proximity
    - Confidence threshold relative to the expression weight
    - Per-pattern error isolation
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        pattern_validator: Optional[PatternValidator] = None,
        regex_cache_size: int = REGEX_CACHE_SIZE
    ):
        """
        Initialize match scanner.

        Args:
            settings: Engine settings for confidence weights and the context window
            pattern_validator: Optional validator used to compile expressions
            regex_cache_size: Most compiled expressions kept, least recently used dropped first
        """
        self.settings = settings or EngineSettings()
        self.pattern_validator = pattern_validator or PatternValidator()
        self._compile = lru_cache(maxsize=regex_cache_size)(self.pattern_validator.compile)

    def _boundary_factor(self, text: str, start: int, end: int) -> float:
        """1.0 when the span is delimited by non-alphanumerics, else 0.8."""
        left = start == 0 or not text[start - 1].isalnum()
        right = end == len(text) or not text[end].isalnum()
        return 1.0 if left and right else 0.8

    def _scan_pattern(self, text: str, view: RefinedPatternView) -> List[Match]:
        """Find candidates for one pattern. Raises ExpressionCompileError before matching anything."""
        regexes = [self._compile(expr, view.pattern_id) for expr in view.expressions]
        rules = get_rules(view.validation_rules)

        found: Dict[Tuple[int, int], Match] = {}
        for index, regex in enumerate(regexes):
            base = self.settings.primary_confidence if index == 0 else self.settings.alternate_confidence
            for m in regex.finditer(text):
                matched = m.group()
                if not matched:
                    continue
                span = (m.start(), m.end())
                if span in found:
                    continue
                if matched in view.excluded_examples:
                    logger.debug(f"Skipping excluded text {matched!r} for pattern {view.pattern_id}")
                    continue
                if not passes_rules(matched, rules):
                    logger.debug(f"Validation rules rejected {matched!r} for pattern {view.pattern_id}")
                    continue

                boundary = self._boundary_factor(text, *span)
                found[span] = Match(
                    pattern_id=view.pattern_id,
                    pattern_label=view.label,
                    matched_text=matched,
                    start=span[0],
                    end=span[1],
                    is_context_clue=view.is_context_clue,
                    category=view.category,
                    confidence=ConfidenceScore(
                        value=round(base * boundary, 4),
                        factors={"expression": base, "boundary_match": boundary},
                    ),
                    expression_index=index,
                )
        return list(found.values())

    def _passes_threshold(self, match: Match, threshold: float) -> bool:
        """
        Compare the threshold with the confidence relative to the expression weight.

        A well-delimited match of any expression passes every threshold up to 1.0.
        Raised thresholds drop boundary-penalized matches unless a context clue lifts them.
        """
        relative = match.confidence.value / match.confidence.factors["expression"]
        return round(relative, 4) >= round(threshold, 4)

    def _apply_context_clues(self, matches: List[Match]) -> None:
        """Boost sensitive matches that have a context clue close by."""
        clues = [m for m in matches if m.is_context_clue]
        if not clues:
            return

        window = self.settings.context_window
        boost = self.settings.context_clue_boost
        for match in matches:
            if match.is_context_clue:
                continue
            near = any(
                0 <= match.start - clue.end <= window or 0 <= clue.start - match.end <= window
                for clue in clues
            )
            if near:
                match.confidence.factors["context_clue"] = boost
                match.confidence.value = round(min(1.0, match.confidence.value + boost), 4)

    def scan(self, text: str, patterns: Sequence[RefinedPatternView]) -> ScanResult:
        """
        Find all occurrences of the patterns in text.

        Args:
            text: Text to search in
            patterns: Refined views of the patterns to apply

        Returns:
            ScanResult with matches ordered by start offset and per-pattern errors
        """
        result = ScanResult()
        if not text or not patterns:
            return result

        candidates: List[Match] = []
        thresholds: Dict[str, float] = {}
        order: Dict[str, int] = {}
        seen = set()
        for position, view in enumerate(patterns):
            try:
                found = self._scan_pattern(text, view)
            except ExpressionCompileError as e:
                logger.warning(f"Skipping pattern {view.label} ({view.pattern_id}): {e.reason}")
                result.errors.append(ScanError(
                    pattern_id=view.pattern_id,
                    pattern_label=view.label,
                    expression=e.expression,
                    message=str(e),
                ))
                continue
            for match in found:
                key = (match.pattern_id, match.start, match.end)
                if key not in seen:
                    seen.add(key)
                    candidates.append(match)
            thresholds[view.pattern_id] = view.confidence_threshold
            order.setdefault(view.pattern_id, position)

        self._apply_context_clues(candidates)

        result.matches = sorted(
            (m for m in candidates if self._passes_threshold(m, thresholds[m.pattern_id])),
            key=lambda m: (m.start, m.end, order[m.pattern_id])
        )
        logger.debug(
            f"Scan found {len(result.matches)} match(es) from {len(candidates)} candidate(s) "
            f"over {len(patterns)} pattern(s)"
        )
        return result

    def scan_documents(
        self,
        documents: Sequence[str],
        patterns: Sequence[RefinedPatternView],
        max_workers: Optional[int] = None
    ) -> List[ScanResult]:
        """Scan many documents in parallel; results are in document order."""
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(lambda doc: self.scan(doc, patterns), documents))


_default_scanner = MatchScanner()


def scan(text: str, patterns: Sequence[RefinedPatternView]) -> ScanResult:
    """Scan text with the default scanner."""
    return _default_scanner.scan(text, patterns)
