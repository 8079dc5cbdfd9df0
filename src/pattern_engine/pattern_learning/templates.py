"""Known formats used to name learned patterns and suggest context keywords."""

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence


@dataclass(frozen=True)
class PatternTemplate:
    """A common data format recognised from examples."""
    name: str
    description: str
    test: Callable[[str], bool]
    context_keywords: List[str] = field(default_factory=list)


def _digits(text: str) -> str:
    return re.sub(r"\D", "", text)


PATTERN_TEMPLATES: List[PatternTemplate] = [
    PatternTemplate(
        name="SSN",
        description="Social Security Numbers",
        test=lambda ex: bool(re.fullmatch(r"\d{3}-\d{2}-\d{4}|\d{9}", ex)),
        context_keywords=["ssn", "social", "security", "tin", "taxpayer", "identification"],
    ),
    PatternTemplate(
        name="Date",
        description="Various date formats",
        test=lambda ex: bool(
            re.fullmatch(r"\d{1,4}[-/]\d{1,2}[-/]\d{1,4}", ex)
            or re.fullmatch(r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+\d{1,2},?\s+\d{2,4}", ex, re.I)
            or re.fullmatch(r"\d{1,2}\s+(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+\d{2,4}", ex, re.I)
        ),
        context_keywords=["date", "birth", "dob", "born", "birthday", "expiry", "expires", "issued", "valid"],
    ),
    PatternTemplate(
        name="Phone",
        description="Phone numbers",
        test=lambda ex: bool(re.fullmatch(r"[\d\s\-()+.]+", ex)) and len(_digits(ex)) >= 10,
        context_keywords=["phone", "mobile", "cell", "telephone", "contact", "number", "tel"],
    ),
    PatternTemplate(
        name="Email",
        description="Email addresses",
        test=lambda ex: bool(re.fullmatch(r"[^\s@]+@[^\s@]+\.[^\s@]+", ex)),
        context_keywords=["email", "e-mail", "mail", "address", "contact"],
    ),
    PatternTemplate(
        name="CreditCard",
        description="Credit card numbers",
        test=lambda ex: bool(re.fullmatch(r"[\d\s-]+", ex)) and 13 <= len(_digits(ex)) <= 19,
        context_keywords=["card", "credit", "debit", "payment", "account", "number"],
    ),
    PatternTemplate(
        name="IPAddress",
        description="IP addresses",
        test=lambda ex: bool(re.fullmatch(r"(\d{1,3}\.){3}\d{1,3}", ex)),
        context_keywords=["ip", "address", "host", "server", "client"],
    ),
    PatternTemplate(
        name="ZipCode",
        description="Postal/ZIP codes",
        test=lambda ex: bool(
            re.fullmatch(r"\d{5}(-\d{4})?", ex)
            or re.fullmatch(r"[A-Z]\d[A-Z]\s?\d[A-Z]\d", ex, re.I)
        ),
        context_keywords=["zip", "postal", "code", "postcode", "address"],
    ),
    PatternTemplate(
        name="Currency",
        description="Currency amounts",
        test=lambda ex: bool(
            re.fullmatch(r"[$€£¥]\s?\d+(,\d{3})*(\.\d{1,2})?", ex)
            or re.fullmatch(r"\d+(,\d{3})*(\.\d{1,2})?\s?[$€£¥]", ex)
        ),
        context_keywords=["amount", "price", "cost", "payment", "salary", "wage", "fee", "balance"],
    ),
    PatternTemplate(
        name="AccountNumber",
        description="Bank account or ID numbers",
        test=lambda ex: bool(re.fullmatch(r"[A-Z0-9]{6,20}", ex, re.I)),
        context_keywords=["account", "number", "id", "identifier", "reference", "code"],
    ),
]

GENERIC_KEYWORDS = ["personal", "private", "confidential", "identification"]

# Label-based fallback when no template matches the examples
LABEL_KEYWORDS = {
    "pii": GENERIC_KEYWORDS,
    "ssn": ["ssn", "social security", "taxpayer", "tin", "social"],
    "social security number": ["ssn", "social security", "taxpayer", "tin", "social"],
    "email": ["email", "e-mail", "contact", "address", "@"],
    "email address": ["email", "e-mail", "contact", "address", "@"],
    "phone": ["phone", "tel", "telephone", "mobile", "cell", "contact"],
    "phone number": ["phone", "tel", "telephone", "mobile", "cell", "contact"],
    "address": ["address", "street", "city", "state", "zip", "postal"],
    "credit card": ["card", "credit", "payment", "visa", "mastercard", "amex"],
    "credit_card": ["card", "credit", "payment", "visa", "mastercard", "amex"],
    "date of birth": ["birth", "dob", "birthdate", "born", "birthday"],
    "medical": ["patient", "medical", "health", "diagnosis", "treatment"],
    "financial": ["account", "bank", "financial", "balance", "transaction"],
}


def find_matching_template(examples: Sequence[str]) -> Optional[PatternTemplate]:
    """
    Find the template matching the most examples, requiring at least half of them.

    Templates are tried in declaration order; on equal counts the earlier one wins.
    """
    if not examples:
        return None

    best = None
    best_count = 0
    for template in PATTERN_TEMPLATES:
        count = sum(1 for ex in examples if template.test(ex))
        if count > best_count:
            best, best_count = template, count

    if best is not None and best_count >= len(examples) * 0.5:
        return best
    return None


def suggest_context_keywords(examples: Sequence[str], label: Optional[str] = None) -> List[str]:
    """Suggest words that usually appear near data like the examples."""
    template = find_matching_template(examples)
    if template and template.context_keywords:
        return list(template.context_keywords)

    if label:
        keywords = LABEL_KEYWORDS.get(label) or LABEL_KEYWORDS.get(label.lower())
        if keywords:
            return list(keywords)

    return list(GENERIC_KEYWORDS)
