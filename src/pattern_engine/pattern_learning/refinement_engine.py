"""Automatic and suggested refinement of patterns from negative feedback."""

import logging
from collections import Counter
from datetime import datetime, UTC
from typing import List, Optional

from ..config.config_manager import EngineSettings
from ..exceptions import InvalidInputError, RefinementConflictError
from .accuracy_analyzer import AccuracyAnalyzer
from .expression_learner import ExpressionLearner
from .models import AccuracyMetrics, FeedbackType, Pattern, RefinementSuggestions
from .pattern_store import PatternStore
from .pattern_validator import PatternValidator
from .validation_rules import RULES_BY_SHAPE, VALIDATION_RULES, count_shapes

logger = logging.getLogger(__name__)


class RefinementEngine:
    """
    Refines patterns without hand-editing their expressions.

    Auto-refinement runs inside every negative feedback write. Suggestions are
    computed on demand and only take effect through `apply`.
    """

    def __init__(
        self,
        pattern_store: PatternStore,
        analyzer: Optional[AccuracyAnalyzer] = None,
        learner: Optional[ExpressionLearner] = None,
        settings: Optional[EngineSettings] = None,
        pattern_validator: Optional[PatternValidator] = None
    ):
        """
        Initialize the refinement engine.

        Args:
            pattern_store: Store used to read and persist patterns
            analyzer: Analyzer used to refresh metrics
            learner: Learner used to derive improved expressions
            settings: Engine settings
            pattern_validator: Validator used to compile suggested expressions
        """
        self.settings = settings or EngineSettings()
        self.pattern_store = pattern_store
        self.analyzer = analyzer or AccuracyAnalyzer(pattern_store, self.settings)
        self.pattern_validator = pattern_validator or PatternValidator()
        self.learner = learner or ExpressionLearner(self.pattern_validator)

    def _next_threshold(self, current: float) -> float:
        return min(round(current + self.settings.confidence_step, 4), self.settings.max_confidence_threshold)

    def auto_refine(
        self,
        pattern: Pattern,
        matched_text: str,
        negative_count: int,
        metrics: AccuracyMetrics
    ) -> bool:
        """
        Apply automatic refinement after a negative feedback write.

        Mutates the pattern in place; the caller persists it.

        Args:
            pattern: Pattern that received the feedback
            matched_text: Text that was marked as a false positive
            negative_count: Negative feedback count for this text, including the new record
            metrics: Metrics recomputed after the new record

        Returns:
            True if the pattern changed
        """
        changed = False

        if negative_count >= pattern.auto_refine_threshold and pattern.add_exclusion(matched_text):
            logger.info(
                f"Excluded {matched_text!r} from pattern {pattern.id} "
                f"after {negative_count} negative feedback(s)"
            )
            changed = True

        if (
            metrics.precision < self.settings.low_precision_threshold
            and pattern.confidence_threshold < self.settings.max_confidence_threshold
        ):
            old = pattern.confidence_threshold
            if pattern.raise_confidence_threshold(self._next_threshold(old)):
                logger.info(
                    f"Raised confidence threshold of pattern {pattern.id} "
                    f"from {old} to {pattern.confidence_threshold} (precision {metrics.precision})"
                )
                changed = True

        if changed:
            pattern.last_refined_at = datetime.now(UTC)
        return changed

    def _suggest_rules(
        self,
        pattern: Pattern,
        false_positives: List[str],
        accepted: List[str]
    ) -> List[str]:
        """Rules that reject a large share of false positives and none of the accepted texts."""
        if len(false_positives) < 2:
            return []

        counts = count_shapes(false_positives)
        rules = []
        for shape, count in counts.items():
            rule = RULES_BY_SHAPE[shape]
            if not count or rule.name in pattern.validation_rules:
                continue
            share = self.settings.rule_share.get(shape)
            if share is None or count / len(false_positives) < share:
                continue
            if any(rule.rejects(text) for text in accepted):
                logger.debug(f"Rule {rule.name} would reject accepted examples of pattern {pattern.id}")
                continue
            rules.append(rule.name)
        return rules

    def suggest(self, pattern_id: str) -> RefinementSuggestions:
        """
        Compute refinement suggestions for a pattern.

        Args:
            pattern_id: Pattern to analyze

        Returns:
            RefinementSuggestions computed against the current expression

        Raises:
            InvalidInputError: If the ID is malformed
            NotFoundError: If the pattern does not exist
        """
        pattern = self.pattern_store.require_pattern(pattern_id)
        suggestions = RefinementSuggestions(pattern_id=pattern.id, base_expression=pattern.expression)

        negatives = self.pattern_store.find_feedback(
            pattern_id,
            feedback_type=FeedbackType.NEGATIVE,
            limit=self.settings.suggestion_window,
            newest_first=True,
        )
        negative_texts = [r.matched_text for r in negatives]
        for text, count in Counter(negative_texts).most_common():
            if count < pattern.auto_refine_threshold:
                break
            if text not in pattern.excluded_examples:
                suggestions.excluded_examples.append(text)
                suggestions.reasoning.append(
                    f"Exclude {text!r}: marked as a false positive {count} times"
                )

        excluded = set(pattern.excluded_examples) | set(suggestions.excluded_examples)
        positives = [
            r.matched_text
            for r in self.pattern_store.find_feedback(pattern_id, feedback_type=FeedbackType.POSITIVE)
        ]
        accepted = list(dict.fromkeys(
            text for text in [*pattern.examples, *positives] if text not in excluded
        ))

        if accepted:
            learned = self.learner.learn(
                accepted, is_context_clue=pattern.is_context_clue, label=pattern.label
            )
            current = [pattern.expression, *pattern.alternative_expressions]
            if learned.expressions != current:
                suggestions.improved_expression = learned.expression
                suggestions.alternative_expressions = list(learned.alternative_expressions)
                suggestions.reasoning.append(
                    f"Relearn expression from {len(accepted)} accepted example(s)"
                )

        for name in self._suggest_rules(pattern, negative_texts, accepted):
            suggestions.validation_rules.append(name)
            suggestions.reasoning.append(
                f"Apply {name}: {VALIDATION_RULES[name].description}"
            )

        metrics = pattern.accuracy_metrics
        if (
            metrics is not None
            and metrics.total_feedback
            and metrics.precision < self.settings.refinement_precision
            and pattern.confidence_threshold < self.settings.max_confidence_threshold
        ):
            suggestions.confidence_threshold = self._next_threshold(pattern.confidence_threshold)
            suggestions.reasoning.append(
                f"Raise confidence threshold to {suggestions.confidence_threshold}: "
                f"precision is {metrics.precision}"
            )

        logger.debug(f"Computed {len(suggestions.reasoning)} suggestion(s) for pattern {pattern_id}")
        return suggestions

    def apply(self, pattern_id: str, suggestions: RefinementSuggestions) -> Pattern:
        """
        Apply suggestions to a pattern. Applying the same suggestions again changes nothing.

        Raises:
            InvalidInputError: If the ID is malformed or the suggestions belong to another pattern
            NotFoundError: If the pattern does not exist
            RefinementConflictError: If the pattern changed since the suggestions were computed
            ExpressionCompileError: If the improved expression does not compile
        """
        if suggestions.pattern_id != pattern_id:
            raise InvalidInputError(
                f"Suggestions for pattern {suggestions.pattern_id} cannot be applied to {pattern_id}"
            )
        unknown = [name for name in suggestions.validation_rules if name not in VALIDATION_RULES]
        if unknown:
            raise InvalidInputError(f"Unknown validation rules: {unknown}")

        with self.pattern_store.locked(pattern_id), self.pattern_store.transaction():
            pattern = self.pattern_store.lock_pattern(pattern_id)

            if pattern.expression not in (suggestions.base_expression, suggestions.improved_expression):
                raise RefinementConflictError(
                    f"Pattern {pattern_id} changed since suggestions were computed; "
                    f"fetch new suggestions and retry"
                )

            improved = suggestions.improved_expression
            if improved:
                proposed = [improved, *suggestions.alternative_expressions]
                for expression in proposed:
                    self.pattern_validator.compile(expression, pattern_id)
                if proposed != [pattern.expression, *pattern.alternative_expressions]:
                    pattern.expression = improved
                    pattern.alternative_expressions = list(suggestions.alternative_expressions)

            for text in suggestions.excluded_examples:
                pattern.add_exclusion(text)

            for name in suggestions.validation_rules:
                if name not in pattern.validation_rules:
                    pattern.validation_rules = pattern.validation_rules + [name]

            if suggestions.confidence_threshold is not None:
                pattern.raise_confidence_threshold(
                    min(suggestions.confidence_threshold, self.settings.max_confidence_threshold)
                )

            pattern.last_refined_at = datetime.now(UTC)
            self.pattern_store.save_pattern(pattern)

        logger.info(
            f"Applied refinements to pattern {pattern_id}: "
            f"{len(pattern.excluded_examples)} exclusion(s), "
            f"rules {pattern.validation_rules}, threshold {pattern.confidence_threshold}"
        )
        return pattern
