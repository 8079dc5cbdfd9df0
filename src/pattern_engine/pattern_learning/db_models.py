"""SQLAlchemy models for patterns and their feedback log."""

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Text, DateTime, ForeignKey, JSON, Index,
    Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
from ..config.database import Base
from .models import PatternCategory, FeedbackType, FeedbackContext


def _utcnow():
    return datetime.now(UTC)


class PatternRecord(Base):
    """SQLAlchemy model for patterns."""
    __tablename__ = 'patterns'

    id = Column(String(36), primary_key=True)
    label = Column(String, nullable=False)
    category = Column(SQLEnum(PatternCategory), nullable=False, default=PatternCategory.CUSTOM)
    is_context_clue = Column(Boolean, nullable=False, default=False)
    expression = Column(String, nullable=False)
    examples = Column(JSON, default=list)
    alternative_expressions = Column(JSON, default=list)
    excluded_examples = Column(JSON, default=list)
    validation_rules = Column(JSON, default=list)
    context_keywords = Column(JSON, default=list)
    format_name = Column(String, nullable=True)
    confidence_threshold = Column(Float, nullable=False, default=0.7)
    auto_refine_threshold = Column(Integer, nullable=False, default=3)
    feedback_count = Column(Integer, nullable=False, default=0)
    positive_count = Column(Integer, nullable=False, default=0)
    negative_count = Column(Integer, nullable=False, default=0)
    accuracy_metrics = Column(JSON, nullable=True)
    last_refined_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Patterns are deactivated, never deleted, so feedback is not cascaded
    feedback = relationship("FeedbackEntry", back_populates="pattern")


class FeedbackEntry(Base):
    """SQLAlchemy model for the append-only feedback log."""
    __tablename__ = 'pattern_feedback'

    id = Column(Integer, primary_key=True)
    record_id = Column(String(36), unique=True, nullable=False)
    pattern_id = Column(String(36), ForeignKey('patterns.id'), nullable=False)
    feedback_type = Column(SQLEnum(FeedbackType), nullable=False)
    context = Column(SQLEnum(FeedbackContext), nullable=False, default=FeedbackContext.DETECTION)
    matched_text = Column(Text, nullable=False)
    surrounding_context = Column(Text, nullable=True)
    original_confidence = Column(Float, nullable=True)
    user_comment = Column(Text, nullable=True)
    data_source_id = Column(String(36), nullable=True)
    session_id = Column(String(255), nullable=True)
    user_id = Column(String(255), nullable=False, default='system')
    feedback_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    pattern = relationship("PatternRecord", back_populates="feedback")

    __table_args__ = (
        Index('idx_pattern_feedback_lookup', 'pattern_id', 'feedback_type', 'matched_text'),
        Index('idx_pattern_feedback_created', 'created_at'),
    )
