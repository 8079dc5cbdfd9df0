"""Auxiliary predicates that reject structurally suspicious candidates."""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence

SEPARATORS = set("- ./()")


def _digits(text: str) -> str:
    return re.sub(r"\D", "", text)


def is_repeated_digits(text: str) -> bool:
    digits = _digits(text)
    return len(digits) >= 2 and len(set(digits)) == 1


def is_sequential_digits(text: str) -> bool:
    digits = _digits(text)
    if len(digits) < 4:
        return False
    steps = {(int(b) - int(a)) % 10 for a, b in zip(digits, digits[1:])}
    return steps == {1} or steps == {9}


def has_no_separators(text: str) -> bool:
    return not any(c in SEPARATORS for c in text)


def has_leading_zeros(text: str) -> bool:
    return text.startswith("0")


def is_all_digits(text: str) -> bool:
    return text.isdigit()


# Shape name -> detector, as observed on false positives
SHAPES: Dict[str, Callable[[str], bool]] = {
    "repeated_digits": is_repeated_digits,
    "sequential_digits": is_sequential_digits,
    "no_separators": has_no_separators,
    "leading_zeros": has_leading_zeros,
    "all_digits": is_all_digits,
}


@dataclass(frozen=True)
class ValidationRule:
    """A named predicate; a candidate for which `rejects` is True is not reported."""
    name: str
    shape: str
    description: str

    def rejects(self, text: str) -> bool:
        return SHAPES[self.shape](text)


VALIDATION_RULES: Dict[str, ValidationRule] = {
    rule.name: rule
    for rule in [
        ValidationRule("reject_repeated_digits", "repeated_digits",
                       "Reject runs of a single repeated digit (test or placeholder data)"),
        ValidationRule("reject_sequential_digits", "sequential_digits",
                       "Reject ascending or descending digit sequences such as 123456789"),
        ValidationRule("require_separators", "no_separators",
                       "Require separators such as dashes or spaces"),
        ValidationRule("reject_leading_zeros", "leading_zeros",
                       "Reject values starting with zero"),
        ValidationRule("reject_bare_digits", "all_digits",
                       "Reject unformatted digit-only values"),
    ]
}

RULES_BY_SHAPE: Dict[str, ValidationRule] = {rule.shape: rule for rule in VALIDATION_RULES.values()}


def get_rules(names: Iterable[str]) -> List[ValidationRule]:
    """Resolve rule names, ignoring names this version does not know."""
    return [VALIDATION_RULES[name] for name in names if name in VALIDATION_RULES]


def passes_rules(text: str, rules: Sequence[ValidationRule]) -> bool:
    """True when no rule rejects the text."""
    return not any(rule.rejects(text) for rule in rules)


def count_shapes(texts: Iterable[str]) -> Dict[str, int]:
    """Count how many texts show each suspicious shape."""
    counts = {shape: 0 for shape in SHAPES}
    for text in texts:
        for shape, detector in SHAPES.items():
            if detector(text):
                counts[shape] += 1
    return counts
