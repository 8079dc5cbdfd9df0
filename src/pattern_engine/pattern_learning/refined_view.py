"""Effective matching configuration of a stored pattern."""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Tuple

from .models import Pattern, PatternCategory


@dataclass(frozen=True)
class RefinedPatternView:
    """
    What the scanner matches against: committed expressions, exclusions and
    thresholds of a pattern. Never carries the raw examples.
    """
    pattern_id: str
    label: str
    category: PatternCategory
    expression: str
    alternative_expressions: Tuple[str, ...] = ()
    excluded_examples: FrozenSet[str] = frozenset()
    is_context_clue: bool = False
    confidence_threshold: float = 0.7
    validation_rules: Tuple[str, ...] = ()

    @property
    def expressions(self) -> List[str]:
        """Expressions in evaluation order, primary first."""
        return [self.expression, *self.alternative_expressions]

    @classmethod
    def from_pattern(cls, pattern: Pattern) -> "RefinedPatternView":
        return cls(
            pattern_id=pattern.id,
            label=pattern.label,
            category=pattern.category,
            expression=pattern.expression,
            alternative_expressions=tuple(pattern.alternative_expressions),
            excluded_examples=frozenset(pattern.excluded_examples),
            is_context_clue=pattern.is_context_clue,
            confidence_threshold=pattern.confidence_threshold,
            validation_rules=tuple(pattern.validation_rules),
        )


def build_views(patterns: Iterable[Pattern]) -> List[RefinedPatternView]:
    """Views for the active patterns, in the given order."""
    return [RefinedPatternView.from_pattern(p) for p in patterns if p.is_active]
