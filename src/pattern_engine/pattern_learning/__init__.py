"""
Pattern Learning Module for sensitive data detection.

This module provides pattern learning, scanning and refinement capabilities:
- Expression learning from examples
- Document scanning with context clues
- Feedback recording and accuracy metrics
- Automatic and suggested pattern refinement
"""

from .pattern_store import PatternStore
from .match_scanner import MatchScanner
from .expression_learner import ExpressionLearner
from .feedback_ledger import FeedbackLedger
from .accuracy_analyzer import AccuracyAnalyzer
from .refinement_engine import RefinementEngine
from .refined_view import RefinedPatternView
from .models import (
    Pattern,
    PatternCategory,
    Match,
    ScanResult,
    FeedbackType,
    FeedbackRecord,
    AccuracyReport,
    RefinementSuggestions,
    ConfidenceScore,
)
from .db_models import PatternRecord as DBPattern

__all__ = [
    'PatternStore',
    'MatchScanner',
    'ExpressionLearner',
    'FeedbackLedger',
    'AccuracyAnalyzer',
    'RefinementEngine',
    'RefinedPatternView',
    'Pattern',
    'PatternCategory',
    'Match',
    'ScanResult',
    'FeedbackType',
    'FeedbackRecord',
    'AccuracyReport',
    'RefinementSuggestions',
    'ConfidenceScore',
    'DBPattern'
]
