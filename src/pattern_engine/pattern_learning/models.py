"""Data models for pattern learning, scanning and feedback."""

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional, Any, Iterator, Set
from datetime import datetime, UTC
from enum import Enum
import uuid


class PatternCategory(Enum):
    """Closed set of categories a pattern can belong to."""
    PII = "PII"
    FINANCIAL = "FINANCIAL"
    MEDICAL = "MEDICAL"
    CLASSIFICATION = "CLASSIFICATION"
    CUSTOM = "CUSTOM"


class FeedbackType(Enum):
    """Human judgment on a single match."""
    POSITIVE = "positive"    # Confirmed sensitive data
    NEGATIVE = "negative"    # False positive


class FeedbackContext(Enum):
    """Where the judgment was made."""
    ANNOTATION = "annotation"
    REDACTION = "redaction"
    DETECTION = "detection"
    PREVIEW = "preview"


class IssueCode(Enum):
    """Failure modes derived from feedback history."""
    OVER_MATCHING = "over_matching"
    UNDER_MATCHING = "under_matching"


@dataclass
class ConfidenceScore:
    """Represents a confidence score with contributing factors."""
    value: float
    factors: Dict[str, float] = field(default_factory=dict)


@dataclass
class AccuracyMetrics:
    """
    Snapshot of a pattern's accuracy computed from its feedback log.

    Attributes:
        precision: positive / total feedback, 0 without feedback
        recall: assumed baseline; there is no ground truth for missed matches
        f1_score: harmonic mean of precision and recall
        common_false_positives: most frequently rejected texts, most frequent first
    """
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    total_feedback: int = 0
    positive_feedback: int = 0
    negative_feedback: int = 0
    common_false_positives: List[str] = field(default_factory=list)
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))
    confidence_threshold: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to a JSON-serializable dictionary."""
        data = asdict(self)
        data["last_updated"] = self.last_updated.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccuracyMetrics":
        """Rebuild metrics from their dictionary form."""
        values = dict(data)
        if isinstance(values.get("last_updated"), str):
            values["last_updated"] = datetime.fromisoformat(values["last_updated"])
        return cls(**values)


@dataclass
class AccuracyReport:
    """Accuracy metrics together with the issues they indicate."""
    pattern_id: str
    metrics: AccuracyMetrics
    issues: Set[IssueCode] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary representation."""
        data = self.metrics.to_dict()
        data["pattern_id"] = self.pattern_id
        data["issues"] = sorted(issue.value for issue in self.issues)
        return data


@dataclass
class Pattern:
    """
    A named detector for a category of sensitive or contextual text.

    Attributes:
        id: Unique pattern identifier (uuid4)
        label: Human name
        category: Pattern category
        is_context_clue: True for label-only patterns such as "Social Security:"
        examples: Example strings the pattern was created from
        expression: Active matching expression
        alternative_expressions: Expressions for other observed formats
        excluded_examples: Texts confirmed as false positives, never matched again
        validation_rules: Names of auxiliary predicates applied to candidates
        confidence_threshold: Minimum match confidence; only ever raised by refinement
        auto_refine_threshold: Identical negative feedback count that triggers exclusion
        accuracy_metrics: Last computed accuracy snapshot
        last_refined_at: Time of the last automatic or applied refinement
        format_name: Format recognised from the examples, e.g. "SSN"
        context_keywords: Words that usually appear near this kind of data
    """
    label: str
    expression: str
    category: PatternCategory = PatternCategory.CUSTOM
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    is_context_clue: bool = False
    examples: List[str] = field(default_factory=list)
    alternative_expressions: List[str] = field(default_factory=list)
    excluded_examples: List[str] = field(default_factory=list)
    validation_rules: List[str] = field(default_factory=list)
    confidence_threshold: float = 0.7
    auto_refine_threshold: int = 3
    feedback_count: int = 0
    positive_count: int = 0
    negative_count: int = 0
    accuracy_metrics: Optional[AccuracyMetrics] = None
    last_refined_at: Optional[datetime] = None
    is_active: bool = True
    format_name: Optional[str] = None
    context_keywords: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self):
        """Normalize the category and drop duplicate exclusions."""
        if isinstance(self.category, str):
            self.category = PatternCategory(self.category.upper())
        self.excluded_examples = list(dict.fromkeys(self.excluded_examples))

    def register_feedback(self, feedback_type: "FeedbackType") -> None:
        """Increment the counters for one feedback event."""
        self.feedback_count += 1
        if feedback_type == FeedbackType.POSITIVE:
            self.positive_count += 1
        else:
            self.negative_count += 1

    def add_exclusion(self, text: str) -> bool:
        """Exclude a text from future matches. Returns False if it was already excluded."""
        if text in self.excluded_examples:
            return False
        self.excluded_examples = self.excluded_examples + [text]
        return True

    def raise_confidence_threshold(self, value: float) -> bool:
        """Raise the threshold to value. The threshold never decreases."""
        if value <= self.confidence_threshold:
            return False
        self.confidence_threshold = round(value, 4)
        return True


@dataclass(frozen=True)
class FeedbackMetadata:
    """Where in a data source the judged match was found."""
    field_name: Optional[str] = None
    record_index: Optional[int] = None
    detection_method: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["FeedbackMetadata"]:
        if not data:
            return None
        return cls(
            field_name=data.get("field_name"),
            record_index=data.get("record_index"),
            detection_method=data.get("detection_method"),
        )


@dataclass
class FeedbackRecord:
    """One human judgment on one observed match. Append-only."""
    pattern_id: str
    matched_text: str
    feedback_type: FeedbackType
    user_id: str = "system"
    session_id: Optional[str] = None
    context: FeedbackContext = FeedbackContext.DETECTION
    surrounding_context: Optional[str] = None
    original_confidence: Optional[float] = None
    user_comment: Optional[str] = None
    data_source_id: Optional[str] = None
    metadata: Optional[FeedbackMetadata] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class LearnedExpression:
    """Output of learning an expression from examples."""
    expression: str
    alternative_expressions: List[str] = field(default_factory=list)
    is_literal: bool = False
    format_name: Optional[str] = None
    context_keywords: List[str] = field(default_factory=list)

    @property
    def expressions(self) -> List[str]:
        """Primary expression followed by the alternates."""
        return [self.expression] + list(self.alternative_expressions)


@dataclass
class Match:
    """
    Represents an occurrence of a pattern found in a document.

    Attributes:
        pattern_id: Pattern that found the match
        pattern_label: Label of that pattern
        matched_text: Matched text
        start: Start offset in source text
        end: End offset in source text
        is_context_clue: True when the match is a label, not sensitive data
        category: Category of the pattern
        confidence: Confidence in this match with contributing factors
        expression_index: 0 for the primary expression, n for the n-th alternate
    """
    pattern_id: str
    pattern_label: str
    matched_text: str
    start: int
    end: int
    is_context_clue: bool
    category: PatternCategory
    confidence: ConfidenceScore = field(default_factory=lambda: ConfidenceScore(1.0))
    expression_index: int = 0

    @property
    def length(self) -> int:
        """Get length of matched text."""
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        """Convert match to dictionary representation."""
        return {
            "pattern_id": self.pattern_id,
            "pattern_label": self.pattern_label,
            "matched_text": self.matched_text,
            "start": self.start,
            "end": self.end,
            "is_context_clue": self.is_context_clue,
            "category": self.category.value,
            "confidence": {
                "value": self.confidence.value,
                "factors": self.confidence.factors
            },
        }


@dataclass
class ScanError:
    """A pattern that could not be applied during a scan."""
    pattern_id: str
    pattern_label: str
    expression: str
    message: str


@dataclass
class ScanResult:
    """Matches from one scan plus per-pattern errors. Behaves as a sequence of matches."""
    matches: List[Match] = field(default_factory=list)
    errors: List[ScanError] = field(default_factory=list)

    def __iter__(self) -> Iterator[Match]:
        return iter(self.matches)

    def __len__(self) -> int:
        return len(self.matches)

    def __getitem__(self, index):
        return self.matches[index]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class RefinementSuggestions:
    """Human-reviewable refinements for one pattern. Only take effect when applied."""
    pattern_id: str
    base_expression: str
    excluded_examples: List[str] = field(default_factory=list)
    improved_expression: Optional[str] = None
    alternative_expressions: List[str] = field(default_factory=list)
    validation_rules: List[str] = field(default_factory=list)
    confidence_threshold: Optional[float] = None
    reasoning: List[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_empty(self) -> bool:
        return not (
            self.excluded_examples
            or self.improved_expression
            or self.validation_rules
            or self.confidence_threshold is not None
        )


@dataclass
class PatternFeedbackStats:
    """Feedback counters for one pattern."""
    pattern_id: str
    pattern_label: str
    feedback_count: int
    positive_count: int
    negative_count: int
    accuracy: float


@dataclass
class FeedbackStatistics:
    """Feedback totals across all patterns."""
    total_feedback: int
    positive_feedback: int
    negative_feedback: int
    pattern_stats: List[PatternFeedbackStats] = field(default_factory=list)
