"""Database service for patterns and feedback."""

from typing import List, Optional
from datetime import datetime, UTC
from sqlalchemy import func, update

from .db_models import PatternRecord, FeedbackEntry
from .models import (
    Pattern,
    FeedbackRecord,
    FeedbackType,
    FeedbackMetadata,
    AccuracyMetrics,
)
from ..config.database import db_session


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored times are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class PatternDBService:
    """
    Service class for database operations.

    Methods flush but never commit; transaction boundaries belong to the caller.
    """

    def __init__(self, session=None):
        """
        Initialize database service.

        Args:
            session: Session or scoped_session to use. Defaults to the thread-local db_session.
        """
        self.db = session if session is not None else db_session

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()

    def close(self):
        """Close database connection."""
        if self.db:
            self.db.close()

    def _apply_to_record(self, pattern: Pattern, record: PatternRecord) -> PatternRecord:
        """Copy domain fields onto a database row. Lists are copied so JSON changes are detected."""
        record.label = pattern.label
        record.category = pattern.category
        record.is_context_clue = pattern.is_context_clue
        record.expression = pattern.expression
        record.examples = list(pattern.examples)
        record.alternative_expressions = list(pattern.alternative_expressions)
        record.excluded_examples = list(pattern.excluded_examples)
        record.validation_rules = list(pattern.validation_rules)
        record.context_keywords = list(pattern.context_keywords)
        record.format_name = pattern.format_name
        record.confidence_threshold = pattern.confidence_threshold
        record.auto_refine_threshold = pattern.auto_refine_threshold
        record.feedback_count = pattern.feedback_count
        record.positive_count = pattern.positive_count
        record.negative_count = pattern.negative_count
        record.accuracy_metrics = (
            pattern.accuracy_metrics.to_dict() if pattern.accuracy_metrics else None
        )
        record.last_refined_at = pattern.last_refined_at
        record.is_active = pattern.is_active
        record.updated_at = pattern.updated_at
        return record

    def _convert_to_pattern(self, record: PatternRecord) -> Pattern:
        """Convert database Pattern model to Pattern model."""
        return Pattern(
            id=record.id,
            label=record.label,
            category=record.category,
            is_context_clue=record.is_context_clue,
            expression=record.expression,
            examples=list(record.examples or []),
            alternative_expressions=list(record.alternative_expressions or []),
            excluded_examples=list(record.excluded_examples or []),
            validation_rules=list(record.validation_rules or []),
            context_keywords=list(record.context_keywords or []),
            format_name=record.format_name,
            confidence_threshold=record.confidence_threshold,
            auto_refine_threshold=record.auto_refine_threshold,
            feedback_count=record.feedback_count,
            positive_count=record.positive_count,
            negative_count=record.negative_count,
            accuracy_metrics=(
                AccuracyMetrics.from_dict(record.accuracy_metrics)
                if record.accuracy_metrics else None
            ),
            last_refined_at=_aware(record.last_refined_at),
            is_active=record.is_active,
            created_at=_aware(record.created_at),
            updated_at=_aware(record.updated_at),
        )

    def _convert_to_feedback(self, entry: FeedbackEntry) -> FeedbackRecord:
        """Convert database feedback row to FeedbackRecord."""
        return FeedbackRecord(
            id=entry.record_id,
            pattern_id=entry.pattern_id,
            matched_text=entry.matched_text,
            feedback_type=entry.feedback_type,
            user_id=entry.user_id,
            session_id=entry.session_id,
            context=entry.context,
            surrounding_context=entry.surrounding_context,
            original_confidence=entry.original_confidence,
            user_comment=entry.user_comment,
            data_source_id=entry.data_source_id,
            metadata=FeedbackMetadata.from_dict(entry.feedback_metadata),
            created_at=_aware(entry.created_at),
        )

    def find_pattern(self, pattern_id: str) -> Optional[Pattern]:
        """Get a pattern by ID, bypassing stale identity-map state."""
        record = self.db.get(PatternRecord, pattern_id, populate_existing=True)
        return self._convert_to_pattern(record) if record else None

    def lock_pattern(self, pattern_id: str) -> bool:
        """
        Take the write lock on a pattern row until the transaction ends.

        Touches the row so every backend locks it: a row lock on PostgreSQL, the
        database write lock on SQLite.

        Returns:
            False if no pattern has this ID
        """
        result = self.db.execute(
            update(PatternRecord)
            .where(PatternRecord.id == pattern_id)
            .values(updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def save_pattern(self, pattern: Pattern) -> Pattern:
        """Insert or update a pattern."""
        pattern.updated_at = datetime.now(UTC)
        record = self.db.get(PatternRecord, pattern.id)
        if record is None:
            record = PatternRecord(id=pattern.id, created_at=pattern.created_at)
            self.db.add(record)
        self._apply_to_record(pattern, record)
        self.db.flush()
        return pattern

    def get_all_patterns(self, active_only: bool = False) -> List[Pattern]:
        """Get all patterns from the database, oldest first."""
        query = self.db.query(PatternRecord).execution_options(populate_existing=True)
        if active_only:
            query = query.filter(PatternRecord.is_active.is_(True))
        records = query.order_by(PatternRecord.created_at, PatternRecord.id).all()
        return [self._convert_to_pattern(r) for r in records]

    def save_feedback(self, feedback: FeedbackRecord) -> FeedbackRecord:
        """Append a feedback record."""
        self.db.add(FeedbackEntry(
            record_id=feedback.id,
            pattern_id=feedback.pattern_id,
            feedback_type=feedback.feedback_type,
            context=feedback.context,
            matched_text=feedback.matched_text,
            surrounding_context=feedback.surrounding_context,
            original_confidence=feedback.original_confidence,
            user_comment=feedback.user_comment,
            data_source_id=feedback.data_source_id,
            session_id=feedback.session_id,
            user_id=feedback.user_id,
            feedback_metadata=feedback.metadata.to_dict() if feedback.metadata else None,
            created_at=feedback.created_at,
        ))
        self.db.flush()
        return feedback

    def _feedback_query(
        self,
        pattern_id: Optional[str] = None,
        feedback_type: Optional[FeedbackType] = None,
        matched_text: Optional[str] = None
    ):
        query = self.db.query(FeedbackEntry)
        if pattern_id is not None:
            query = query.filter(FeedbackEntry.pattern_id == pattern_id)
        if feedback_type is not None:
            query = query.filter(FeedbackEntry.feedback_type == feedback_type)
        if matched_text is not None:
            query = query.filter(FeedbackEntry.matched_text == matched_text)
        return query

    def find_feedback(
        self,
        pattern_id: str,
        feedback_type: Optional[FeedbackType] = None,
        matched_text: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = False
    ) -> List[FeedbackRecord]:
        """Get feedback for a pattern, in insertion order unless newest_first."""
        query = self._feedback_query(pattern_id, feedback_type, matched_text)
        if newest_first:
            query = query.order_by(FeedbackEntry.created_at.desc(), FeedbackEntry.id.desc())
        else:
            query = query.order_by(FeedbackEntry.created_at, FeedbackEntry.id)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [self._convert_to_feedback(e) for e in query.all()]

    def count_feedback(
        self,
        pattern_id: Optional[str] = None,
        feedback_type: Optional[FeedbackType] = None,
        matched_text: Optional[str] = None
    ) -> int:
        """Count feedback records matching the filters."""
        query = self._feedback_query(pattern_id, feedback_type, matched_text)
        return query.with_entities(func.count(FeedbackEntry.id)).scalar() or 0
