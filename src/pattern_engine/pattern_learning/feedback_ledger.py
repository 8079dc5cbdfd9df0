"""Append-only feedback log with synchronous accuracy and auto-refinement updates."""

import logging
from dataclasses import fields
from typing import Any, Dict, List, Optional, Tuple, Union

from ..exceptions import InvalidInputError
from .accuracy_analyzer import AccuracyAnalyzer
from .models import (
    FeedbackContext,
    FeedbackMetadata,
    FeedbackRecord,
    FeedbackStatistics,
    FeedbackType,
    PatternFeedbackStats,
)
from .pattern_store import PatternStore, is_valid_pattern_id, validate_pattern_id
from .refinement_engine import RefinementEngine

logger = logging.getLogger(__name__)

METADATA_FIELDS = {f.name for f in fields(FeedbackMetadata)}


def _coerce_enum(enum_cls, value, name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise InvalidInputError(f"Invalid {name} {value!r}; expected one of {allowed}")


def _coerce_metadata(
    metadata: Union[FeedbackMetadata, Dict[str, Any], None]
) -> Optional[FeedbackMetadata]:
    if metadata is None or isinstance(metadata, FeedbackMetadata):
        return metadata
    if not isinstance(metadata, dict):
        raise InvalidInputError("Feedback metadata must be a FeedbackMetadata or a dict")
    unknown = set(metadata) - METADATA_FIELDS
    if unknown:
        raise InvalidInputError(f"Unknown feedback metadata fields: {sorted(unknown)}")
    return FeedbackMetadata(**metadata)


class FeedbackLedger:
    """
    Records human feedback on matches.

    Each write appends the record, updates the pattern counters, recomputes
    its accuracy metrics and, for negative feedback, runs auto-refinement.
    All of it happens under the pattern's lock in one transaction.
    """

    def __init__(
        self,
        pattern_store: PatternStore,
        analyzer: Optional[AccuracyAnalyzer] = None,
        refinement_engine: Optional[RefinementEngine] = None
    ):
        self.pattern_store = pattern_store
        self.analyzer = analyzer or AccuracyAnalyzer(pattern_store)
        self.refinement_engine = refinement_engine or RefinementEngine(
            pattern_store, self.analyzer, settings=self.analyzer.settings
        )

    def record(
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
        """
        Record feedback for one match.

        Args:
            pattern_id: Pattern that produced the match
            matched_text: Text of the match
            feedback_type: positive (confirmed sensitive) or negative (false positive)
            user_id: Who gave the feedback
            session_id: Session the feedback belongs to
            context: Where the judgment was made
            surrounding_context: Text around the match
            original_confidence: Confidence the match was reported with
            user_comment: Free-text comment
            data_source_id: Source the match was found in
            metadata: Location of the match within the data source

        Returns:
            The stored FeedbackRecord

        Raises:
            InvalidInputError: If any value is malformed
            NotFoundError: If the pattern does not exist
        """
        validate_pattern_id(pattern_id)
        if not isinstance(matched_text, str) or not matched_text.strip():
            raise InvalidInputError("matched_text must be a non-empty string")
        feedback_type = _coerce_enum(FeedbackType, feedback_type, "feedback type")
        context = _coerce_enum(FeedbackContext, context, "feedback context")
        if original_confidence is not None and not 0.0 <= original_confidence <= 1.0:
            raise InvalidInputError(f"original_confidence must be within [0, 1], got {original_confidence}")

        record = FeedbackRecord(
            pattern_id=pattern_id,
            matched_text=matched_text,
            feedback_type=feedback_type,
            user_id=user_id or "system",
            session_id=session_id,
            context=context,
            surrounding_context=surrounding_context,
            original_confidence=original_confidence,
            user_comment=user_comment,
            data_source_id=data_source_id,
            metadata=_coerce_metadata(metadata),
        )

        store = self.pattern_store
        with store.locked(pattern_id), store.transaction():
            pattern = store.lock_pattern(pattern_id)
            store.save_feedback(record)
            pattern.register_feedback(feedback_type)

            metrics = self.analyzer.compute(store.find_feedback(pattern_id), pattern.confidence_threshold)
            if feedback_type == FeedbackType.NEGATIVE:
                negative_count = store.count_feedback(pattern_id, FeedbackType.NEGATIVE, matched_text)
                self.refinement_engine.auto_refine(pattern, matched_text, negative_count, metrics)
                metrics.confidence_threshold = pattern.confidence_threshold

            pattern.accuracy_metrics = metrics
            store.save_pattern(pattern)

        logger.info(
            f"Recorded {feedback_type.value} feedback for pattern {pattern_id} "
            f"(precision {metrics.precision}, total {metrics.total_feedback})"
        )
        return record

    def history(
        self,
        pattern_id: str,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[FeedbackRecord], int]:
        """
        Feedback of a pattern, newest first.

        Returns:
            Tuple of (records, total count); empty for malformed IDs
        """
        if limit < 0 or offset < 0:
            raise InvalidInputError("limit and offset must not be negative")
        if not is_valid_pattern_id(pattern_id):
            logger.debug(f"Feedback history requested for malformed pattern ID {pattern_id!r}")
            return [], 0

        records = self.pattern_store.find_feedback(
            pattern_id, limit=limit, offset=offset, newest_first=True
        )
        return records, self.pattern_store.count_feedback(pattern_id)

    def statistics(self) -> FeedbackStatistics:
        """Feedback totals across all patterns, busiest patterns first."""
        store = self.pattern_store
        pattern_stats = [
            PatternFeedbackStats(
                pattern_id=p.id,
                pattern_label=p.label,
                feedback_count=p.feedback_count,
                positive_count=p.positive_count,
                negative_count=p.negative_count,
                accuracy=p.accuracy_metrics.precision if p.accuracy_metrics else 0.0,
            )
            for p in store.get_all_patterns()
            if p.feedback_count
        ]
        pattern_stats.sort(key=lambda s: s.feedback_count, reverse=True)

        return FeedbackStatistics(
            total_feedback=store.count_feedback(),
            positive_feedback=store.count_feedback(feedback_type=FeedbackType.POSITIVE),
            negative_feedback=store.count_feedback(feedback_type=FeedbackType.NEGATIVE),
            pattern_stats=pattern_stats,
        )

    def excluded_examples(self, pattern_id: str) -> List[str]:
        """Texts a pattern no longer matches."""
        return list(self.pattern_store.require_pattern(pattern_id).excluded_examples)
