"""Accuracy metrics derived from the feedback log."""

import logging
from collections import Counter
from typing import List, Optional, Sequence, Set

from ..config.config_manager import EngineSettings
from .models import (
    AccuracyMetrics,
    AccuracyReport,
    FeedbackRecord,
    FeedbackType,
    IssueCode,
    Pattern,
)
from .pattern_store import PatternStore

logger = logging.getLogger(__name__)


class AccuracyAnalyzer:
    """
    Computes precision, recall proxy and F1 for patterns.

    Recall has no denominator (missed matches are never observed), so it is
    reported as the configured assumed baseline.
    """

    def __init__(self, pattern_store: PatternStore, settings: Optional[EngineSettings] = None):
        """
        Initialize the analyzer.

        Args:
            pattern_store: Store used to read patterns and their feedback
            settings: Engine settings for the recall baseline and issue thresholds
        """
        self.pattern_store = pattern_store
        self.settings = settings or EngineSettings()

    def compute(
        self,
        records: Sequence[FeedbackRecord],
        confidence_threshold: Optional[float] = None
    ) -> AccuracyMetrics:
        """
        Compute metrics from feedback records.

        Args:
            records: Feedback records of one pattern, oldest first
            confidence_threshold: Current threshold of the pattern, kept as a snapshot

        Returns:
            AccuracyMetrics; all zero for an empty log
        """
        total = len(records)
        positives = sum(1 for r in records if r.feedback_type == FeedbackType.POSITIVE)
        negatives = total - positives

        if total == 0:
            return AccuracyMetrics(confidence_threshold=confidence_threshold)

        precision = positives / total
        recall = self.settings.assumed_recall
        f1 = 2 * precision * recall / (precision + recall) if precision > 0 and recall > 0 else 0.0

        # Counter keeps first-seen order for equal counts
        false_positives = Counter(
            r.matched_text for r in records if r.feedback_type == FeedbackType.NEGATIVE
        )
        common = [text for text, _ in false_positives.most_common(self.settings.top_false_positives)]

        return AccuracyMetrics(
            precision=round(precision, 4),
            recall=round(recall, 4),
            f1_score=round(f1, 4),
            total_feedback=total,
            positive_feedback=positives,
            negative_feedback=negatives,
            common_false_positives=common,
            confidence_threshold=confidence_threshold,
        )

    def issues(self, metrics: AccuracyMetrics) -> Set[IssueCode]:
        """Failure modes indicated by a metrics snapshot."""
        issues = set()
        if (
            metrics.precision < self.settings.over_matching_precision
            and metrics.negative_feedback >= self.settings.min_sample_size
        ):
            issues.add(IssueCode.OVER_MATCHING)
        if metrics.total_feedback and metrics.recall < self.settings.under_matching_recall:
            issues.add(IssueCode.UNDER_MATCHING)
        return issues

    def analyze(self, pattern_id: str) -> AccuracyReport:
        """
        Compute current accuracy of a stored pattern.

        Raises:
            InvalidInputError: If the ID is malformed
            NotFoundError: If the pattern does not exist
        """
        pattern = self.pattern_store.require_pattern(pattern_id)
        records = self.pattern_store.find_feedback(pattern_id)
        metrics = self.compute(records, pattern.confidence_threshold)
        report = AccuracyReport(pattern_id=pattern_id, metrics=metrics, issues=self.issues(metrics))
        if report.issues:
            logger.debug(
                f"Pattern {pattern_id} has issues: {sorted(i.value for i in report.issues)}"
            )
        return report

    def patterns_needing_refinement(self, threshold: Optional[float] = None) -> List[Pattern]:
        """Active patterns with feedback whose cached precision or F1 is below threshold."""
        if threshold is None:
            threshold = self.settings.refinement_precision
        result = []
        for pattern in self.pattern_store.get_all_patterns(active_only=True):
            metrics = pattern.accuracy_metrics
            if not pattern.feedback_count or metrics is None:
                continue
            if metrics.precision < threshold or metrics.f1_score < threshold:
                result.append(pattern)
        return result
