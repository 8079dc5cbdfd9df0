"""Detection engine combining pattern learning, scanning, feedback and refinement."""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import logging

from .config.config_manager import EngineSettings, get_settings
from .exceptions import InvalidInputError
from .pattern_learning.accuracy_analyzer import AccuracyAnalyzer
from .pattern_learning.expression_learner import ExpressionLearner
from .pattern_learning.feedback_ledger import FeedbackLedger
from .pattern_learning.match_scanner import MatchScanner
from .pattern_learning.models import (
    AccuracyReport,
    FeedbackContext,
    FeedbackMetadata,
    FeedbackRecord,
    FeedbackStatistics,
    FeedbackType,
    LearnedExpression,
    Pattern,
    PatternCategory,
    RefinementSuggestions,
    ScanResult,
)
from .pattern_learning.pattern_store import PatternStore
from .pattern_learning.pattern_validator import PatternValidator
from .pattern_learning.refined_view import RefinedPatternView
from .pattern_learning.refinement_engine import RefinementEngine

logger = logging.getLogger(__name__)

PatternLike = Union[Pattern, RefinedPatternView]


class DetectionEngine:
    """Library entry point for learning, scanning and refining sensitive data patterns."""

    def __init__(
        self,
        pattern_store: Optional[PatternStore] = None,
        settings: Optional[EngineSettings] = None
    ):
        """
        Initialize the detection engine.

        Args:
            pattern_store: Store for patterns and feedback. Defaults to the configured database.
            settings: Engine settings. Defaults to the packaged defaults plus environment overrides.
        """
        self.settings = settings or get_settings()
        self.pattern_store = pattern_store or PatternStore()
        self.pattern_validator = PatternValidator()
        self.learner = ExpressionLearner(self.pattern_validator)
        self.scanner = MatchScanner(self.settings, self.pattern_validator)
        self.analyzer = AccuracyAnalyzer(self.pattern_store, self.settings)
        self.refinement_engine = RefinementEngine(
            self.pattern_store,
            self.analyzer,
            self.learner,
            self.settings,
            self.pattern_validator,
        )
        self.ledger = FeedbackLedger(self.pattern_store, self.analyzer, self.refinement_engine)

    def learn(self, examples: Sequence[str], is_context_clue: bool = False) -> LearnedExpression:
        """Learn an expression from examples without storing a pattern."""
        return self.learner.learn(examples, is_context_clue=is_context_clue)

    def _check_label(self, label: str) -> str:
        if not isinstance(label, str) or not label.strip():
            raise InvalidInputError("Pattern label must be a non-empty string")
        return label.strip()

    def create_pattern_from_examples(
        self,
        label: str,
        examples: Sequence[str],
        category: Union[PatternCategory, str] = PatternCategory.CUSTOM,
        is_context_clue: bool = False
    ) -> Pattern:
        """
        Learn and store a pattern.

        Args:
            label: Human name of the pattern
            examples: Example strings
            category: Pattern category
            is_context_clue: True for label patterns that signal nearby sensitive data

        Returns:
            The stored Pattern
        """
        label = self._check_label(label)
        learned = self.learner.learn(examples, is_context_clue=is_context_clue, label=label)
        pattern = Pattern(
            label=label,
            expression=learned.expression,
            category=self._category(category),
            is_context_clue=is_context_clue,
            examples=list(dict.fromkeys(s for s in (str(ex).strip() for ex in examples if ex is not None) if s)),
            alternative_expressions=learned.alternative_expressions,
            confidence_threshold=self.settings.default_confidence_threshold,
            auto_refine_threshold=self.settings.auto_refine_threshold,
            format_name=learned.format_name,
            context_keywords=learned.context_keywords,
        )
        self.pattern_store.add_pattern(pattern)
        logger.info(
            f"Created pattern {pattern.label} ({pattern.id}) with expression {pattern.expression!r}"
        )
        return pattern

    def create_pattern(
        self,
        label: str,
        expression: str,
        category: Union[PatternCategory, str] = PatternCategory.CUSTOM,
        is_context_clue: bool = False,
        alternative_expressions: Sequence[str] = (),
        examples: Sequence[str] = ()
    ) -> Pattern:
        """
        Store a pattern with a hand-written expression.

        Raises:
            ExpressionCompileError: If an expression does not compile
            InvalidInputError: If an expression matches nearly anything
        """
        label = self._check_label(label)
        for expr in [expression, *alternative_expressions]:
            self.pattern_validator.compile(expr)
            issues = self.pattern_validator.find_issues(expr)
            if issues:
                raise InvalidInputError(f"Expression {expr!r} rejected: {'; '.join(issues)}")

        pattern = Pattern(
            label=label,
            expression=expression,
            category=self._category(category),
            is_context_clue=is_context_clue,
            examples=list(examples),
            alternative_expressions=list(alternative_expressions),
            confidence_threshold=self.settings.default_confidence_threshold,
            auto_refine_threshold=self.settings.auto_refine_threshold,
        )
        self.pattern_store.add_pattern(pattern)
        logger.info(f"Created pattern {pattern.label} ({pattern.id}) from a manual expression")
        return pattern

    def _category(self, category: Union[PatternCategory, str]) -> PatternCategory:
        if isinstance(category, PatternCategory):
            return category
        try:
            return PatternCategory(str(category).upper())
        except ValueError:
            raise InvalidInputError(f"Unknown pattern category {category!r}")

    def get_pattern(self, pattern_id: str) -> Pattern:
        return self.pattern_store.require_pattern(pattern_id)

    def deactivate_pattern(self, pattern_id: str) -> Pattern:
        """Stop scanning with a pattern. Its feedback is kept."""
        return self.pattern_store.deactivate_pattern(pattern_id)

    def _views(self, patterns: Optional[Sequence[PatternLike]]) -> List[RefinedPatternView]:
        if patterns is None:
            return self.pattern_store.active_views()
        return [
            p if isinstance(p, RefinedPatternView) else RefinedPatternView.from_pattern(p)
            for p in patterns
        ]

    def scan(self, text: str, patterns: Optional[Sequence[PatternLike]] = None) -> ScanResult:
        """
        Scan text for pattern matches.

        Args:
            text: Text to scan
            patterns: Patterns or views to apply. Defaults to all active patterns.
        """
        return self.scanner.scan(text, self._views(patterns))

    def scan_documents(
        self,
        documents: Sequence[str],
        patterns: Optional[Sequence[PatternLike]] = None,
        max_workers: Optional[int] = None
    ) -> List[ScanResult]:
        """Scan many documents in parallel; results are in document order."""
        return self.scanner.scan_documents(documents, self._views(patterns), max_workers)

    def record_feedback(
        self,
        pattern_id: str,
        matched_text: str,
        feedback_type: Union[FeedbackType, str],
        user_id: str = "system",
        session_id: Optional[str] = None,
        *,
        context: Union[FeedbackContext, str] = FeedbackContext.DETECTION,
        surrounding_context: Optional[str] = None,
        original_confidence: Optional[float] = None,
        user_comment: Optional[str] = None,
        data_source_id: Optional[str] = None,
        metadata: Union[FeedbackMetadata, Dict[str, Any], None] = None
    ) -> FeedbackRecord:
        """Record feedback on a match. See FeedbackLedger.record."""
        return self.ledger.record(
            pattern_id,
            matched_text,
            feedback_type,
            user_id,
            session_id,
            context=context,
            surrounding_context=surrounding_context,
            original_confidence=original_confidence,
            user_comment=user_comment,
            data_source_id=data_source_id,
            metadata=metadata,
        )

    def get_accuracy(self, pattern_id: str) -> AccuracyReport:
        return self.analyzer.analyze(pattern_id)

    def suggest_refinements(self, pattern_id: str) -> RefinementSuggestions:
        return self.refinement_engine.suggest(pattern_id)

    def apply_refinements(self, pattern_id: str, suggestions: RefinementSuggestions) -> Pattern:
        return self.refinement_engine.apply(pattern_id, suggestions)

    def feedback_history(
        self,
        pattern_id: str,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[FeedbackRecord], int]:
        return self.ledger.history(pattern_id, limit, offset)

    def feedback_statistics(self) -> FeedbackStatistics:
        return self.ledger.statistics()

    def excluded_examples(self, pattern_id: str) -> List[str]:
        return self.ledger.excluded_examples(pattern_id)

    def patterns_needing_refinement(self, threshold: Optional[float] = None) -> List[Pattern]:
        return self.analyzer.patterns_needing_refinement(threshold)
