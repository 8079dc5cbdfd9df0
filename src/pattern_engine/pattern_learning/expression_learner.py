"""Learns matching expressions from labeled example strings."""

import re
import logging
from dataclasses import dataclass
from itertools import groupby
from typing import Dict, List, Optional, Sequence, Tuple

from ..exceptions import InvalidInputError
from .models import LearnedExpression
from .pattern_validator import PatternValidator
from .templates import find_matching_template, suggest_context_keywords

logger = logging.getLogger(__name__)

DIGIT = "digit"
LETTER = "letter"
SPACE = "space"
PUNCT = "punct"

# Single examples shorter than this are matched literally
MIN_GENERALIZABLE_LENGTH = 3


@dataclass(frozen=True)
class Token:
    """A run of characters of one kind."""
    kind: str
    text: str

    @property
    def key(self) -> Tuple[str, str]:
        # Punctuation is part of the structure; other runs only by kind
        return (self.kind, self.text if self.kind == PUNCT else "")


def _char_kind(char: str) -> Tuple[str, str]:
    if '0' <= char <= '9':
        return (DIGIT, "")
    if char.isascii() and char.isalpha():
        return (LETTER, "")
    if char.isspace():
        return (SPACE, "")
    return (PUNCT, char)


def tokenize(example: str) -> List[Token]:
    """Split an example into digit, letter, whitespace and punctuation runs."""
    return [
        Token(kind, "".join(chars))
        for (kind, _), chars in groupby(example, key=_char_kind)
    ]


def _quantifier(lengths: Sequence[int]) -> str:
    low, high = min(lengths), max(lengths)
    if low == high:
        return "" if low == 1 else f"{{{low}}}"
    return f"{{{low},{high}}}"


def _letter_class(texts: Sequence[str]) -> str:
    joined = "".join(texts)
    if joined.isupper():
        return "[A-Z]"
    if joined.islower():
        return "[a-z]"
    return "[A-Za-z]"


def _is_word_edge(char: str) -> bool:
    return char.isascii() and char.isalnum()


def literal_expression(example: str) -> str:
    """Escape an example, with word boundaries on alphanumeric edges."""
    prefix = r"\b" if _is_word_edge(example[0]) else ""
    suffix = r"\b" if _is_word_edge(example[-1]) else ""
    return f"{prefix}{re.escape(example)}{suffix}"


def literal_alternation(examples: Sequence[str]) -> str:
    """Literal expression matching any of the examples, longest first."""
    if len(examples) == 1:
        return literal_expression(examples[0])
    ordered = sorted(examples, key=len, reverse=True)
    return "(?:" + "|".join(literal_expression(ex) for ex in ordered) + ")"


class ExpressionLearner:
    """
    Derives a matching expression and alternates from example strings.

    Examples with the same structure (the same sequence of digit, letter,
    whitespace and punctuation runs) are unioned into one expression.
    Structurally different examples become alternate expressions instead of
    being merged into a permissive one.
    """

    def __init__(self, pattern_validator: Optional[PatternValidator] = None):
        """
        Initialize the expression learner.

        Args:
            pattern_validator: Optional validator for generated expressions
        """
        self.pattern_validator = pattern_validator or PatternValidator()

    def learn(
        self,
        examples: Sequence[str],
        is_context_clue: bool = False,
        label: Optional[str] = None
    ) -> LearnedExpression:
        """
        Learn an expression from examples.

        Args:
            examples: Example strings of the same conceptual field
            is_context_clue: Learn a case-insensitive literal label matcher
            label: Optional pattern label used for keyword suggestions

        Returns:
            LearnedExpression with the primary expression first

        Raises:
            InvalidInputError: If no non-empty example is given
        """
        cleaned = self._clean(examples)

        template = find_matching_template(cleaned)
        format_name = template.name if template else None
        keywords = suggest_context_keywords(cleaned, label)

        if is_context_clue:
            return LearnedExpression(
                expression="(?i)" + literal_alternation(cleaned),
                is_literal=True,
                format_name=format_name,
                context_keywords=keywords,
            )

        if len(cleaned) == 1 and self._is_degenerate(cleaned[0]):
            logger.debug(f"Falling back to literal expression for {cleaned[0]!r}")
            return LearnedExpression(
                expression=literal_expression(cleaned[0]),
                is_literal=True,
                format_name=format_name,
                context_keywords=keywords,
            )

        expressions: List[str] = []
        literal_flags: List[bool] = []
        for group in self._group_by_skeleton(cleaned):
            expression, is_literal = self._group_expression(group)
            if expression not in expressions:
                expressions.append(expression)
                literal_flags.append(is_literal)

        logger.debug(
            f"Learned {len(expressions)} expression(s) from {len(cleaned)} example(s): {expressions}"
        )

        return LearnedExpression(
            expression=expressions[0],
            alternative_expressions=expressions[1:],
            is_literal=literal_flags[0],
            format_name=format_name,
            context_keywords=keywords,
        )

    def _clean(self, examples: Sequence[str]) -> List[str]:
        """Strip, drop empty and duplicate examples, keeping order."""
        if isinstance(examples, str):
            raise InvalidInputError("Examples must be a sequence of strings, not a string")
        cleaned = [str(ex).strip() for ex in (examples or []) if ex is not None]
        cleaned = list(dict.fromkeys(ex for ex in cleaned if ex))
        if not cleaned:
            raise InvalidInputError("At least one non-empty example is required")
        return cleaned

    def _is_degenerate(self, example: str) -> bool:
        """True for examples too short or too irregular to generalize safely."""
        if len(example) < MIN_GENERALIZABLE_LENGTH:
            return True
        tokens = tokenize(example)
        if not any(t.kind in (DIGIT, LETTER) for t in tokens):
            return True
        return len(example) > 8 and len(tokens) > len(example) / 2

    def _group_by_skeleton(self, examples: Sequence[str]) -> List[List[List[Token]]]:
        """Group tokenized examples by skeleton, largest group first, ties by first appearance."""
        groups: Dict[Tuple, List[List[Token]]] = {}
        for example in examples:
            tokens = tokenize(example)
            skeleton = tuple(t.key for t in tokens)
            groups.setdefault(skeleton, []).append(tokens)

        # sorted() is stable, so insertion order breaks ties
        return sorted(groups.values(), key=len, reverse=True)

    def _group_expression(self, group: List[List[Token]]) -> Tuple[str, bool]:
        """Union one skeleton group into an expression, falling back to literals."""
        texts = ["".join(t.text for t in tokens) for tokens in group]
        first = group[0]

        if any(not any(t.kind in (DIGIT, LETTER) for t in tokens) for tokens in group):
            return literal_alternation(texts), True

        parts = []
        for position, token in enumerate(first):
            runs = [tokens[position].text for tokens in group]
            lengths = [len(run) for run in runs]
            if token.kind == DIGIT:
                parts.append(r"\d" + _quantifier(lengths))
            elif token.kind == LETTER:
                if len(group) > 1 and len(set(runs)) == 1:
                    # Shared prefixes such as "MRN" stay literal
                    parts.append(re.escape(runs[0]))
                else:
                    parts.append(_letter_class(runs) + _quantifier(lengths))
            elif token.kind == SPACE:
                if len(set(runs)) == 1:
                    parts.append(re.escape(runs[0]))
                else:
                    parts.append(r"\s" + _quantifier(lengths))
            else:
                parts.append(re.escape(token.text))

        prefix = r"\b" if first[0].kind in (DIGIT, LETTER) else ""
        suffix = r"\b" if first[-1].kind in (DIGIT, LETTER) else ""
        expression = prefix + "".join(parts) + suffix

        if self.pattern_validator.validate(expression, texts):
            return expression, False

        logger.debug(f"Generated expression {expression!r} failed validation, using literals")
        return literal_alternation(texts), True


_default_learner = ExpressionLearner()


def learn(
    examples: Sequence[str],
    is_context_clue: bool = False,
    label: Optional[str] = None
) -> LearnedExpression:
    """Learn an expression from examples with the default learner."""
    return _default_learner.learn(examples, is_context_clue=is_context_clue, label=label)
