"""Pattern storage, transactions and per-pattern write serialization."""

import re
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional
import logging

from ..exceptions import InvalidInputError, NotFoundError
from .models import Pattern, FeedbackRecord, FeedbackType
from .db_service import PatternDBService
from .refined_view import RefinedPatternView, build_views

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.I)


def is_valid_pattern_id(pattern_id: str) -> bool:
    return isinstance(pattern_id, str) and bool(UUID_RE.match(pattern_id))


def validate_pattern_id(pattern_id: str) -> None:
    """Raise InvalidInputError for identifiers that are not UUIDs."""
    if not is_valid_pattern_id(pattern_id):
        raise InvalidInputError(f"Invalid UUID format for pattern ID: {pattern_id}")


class PatternStore:
    """
    Manages storage and retrieval of patterns and feedback.

    Features:
    - Transaction scopes (outermost scope commits or rolls back)
    - One lock per pattern ID for read-modify-write sequences, in process and
      on the database row
    - Cached refined views of the active patterns, dropped after each commit
      that changed a pattern
    """

    def __init__(self, db_service: Optional[PatternDBService] = None):
        """
        Initialize pattern store.

        Args:
            db_service: Database service to use. Defaults to one on the thread-local session.
        """
        self._db = db_service or PatternDBService()
        self._local = threading.local()
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._views: Optional[List[RefinedPatternView]] = None
        self._views_version = 0
        self._views_guard = threading.Lock()

    @contextmanager
    def transaction(self) -> Iterator["PatternStore"]:
        """Run a block in one database transaction. Nested scopes join the outer one."""
        depth = getattr(self._local, "depth", 0)
        self._local.depth = depth + 1
        try:
            yield self
            if depth == 0:
                self._db.commit()
                if getattr(self._local, "patterns_changed", False):
                    self._invalidate_views()
        except Exception:
            if depth == 0:
                logger.error("Rolling back pattern store transaction")
                self._db.rollback()
            raise
        finally:
            self._local.depth = depth
            if depth == 0:
                self._local.patterns_changed = False

    @contextmanager
    def locked(self, pattern_id: str) -> Iterator[None]:
        """Serialize writers of one pattern. Writers of other patterns are not blocked."""
        with self._locks_guard:
            lock = self._locks.setdefault(pattern_id, threading.RLock())
        with lock:
            yield

    def _invalidate_views(self) -> None:
        with self._views_guard:
            self._views = None
            self._views_version += 1

    def add_pattern(self, pattern: Pattern) -> Pattern:
        """
        Add a new pattern to the store.

        Args:
            pattern: Pattern to add
        """
        with self.transaction():
            self._db.save_pattern(pattern)
            self._local.patterns_changed = True
        logger.info(f"Added pattern {pattern.id} ({pattern.label})")
        return pattern

    def find_pattern(self, pattern_id: str) -> Optional[Pattern]:
        """
        Retrieve a pattern by ID.

        Returns:
            Pattern if found, None otherwise
        """
        with self.transaction():
            return self._db.find_pattern(pattern_id)

    def require_pattern(self, pattern_id: str) -> Pattern:
        """
        Retrieve a pattern by ID.

        Raises:
            InvalidInputError: If the ID is not a UUID
            NotFoundError: If no pattern has this ID
        """
        validate_pattern_id(pattern_id)
        pattern = self.find_pattern(pattern_id)
        if pattern is None:
            raise NotFoundError(f"Pattern {pattern_id} not found")
        return pattern

    def lock_pattern(self, pattern_id: str) -> Pattern:
        """
        Lock a pattern row for the rest of the enclosing transaction and load it.

        Call inside `transaction()` before reading state that will be written back,
        so writers in other processes cannot interleave.

        Raises:
            InvalidInputError: If the ID is not a UUID
            NotFoundError: If no pattern has this ID
        """
        validate_pattern_id(pattern_id)
        with self.transaction():
            if not self._db.lock_pattern(pattern_id):
                raise NotFoundError(f"Pattern {pattern_id} not found")
            return self._db.find_pattern(pattern_id)

    def save_pattern(self, pattern: Pattern) -> Pattern:
        """Persist changes to a pattern."""
        with self.transaction():
            self._db.save_pattern(pattern)
            self._local.patterns_changed = True
        return pattern

    def deactivate_pattern(self, pattern_id: str) -> Pattern:
        """Soft-delete a pattern. Its feedback history is kept."""
        with self.locked(pattern_id), self.transaction():
            pattern = self.lock_pattern(pattern_id)
            pattern.is_active = False
            self.save_pattern(pattern)
        logger.info(f"Deactivated pattern {pattern_id}")
        return pattern

    def get_all_patterns(self, active_only: bool = False) -> List[Pattern]:
        """Get all patterns, optionally only active ones."""
        with self.transaction():
            return self._db.get_all_patterns(active_only=active_only)

    def active_views(self) -> List[RefinedPatternView]:
        """Refined views of all active patterns, cached until a pattern change is committed."""
        with self._views_guard:
            if self._views is not None:
                return list(self._views)
            version = self._views_version
        views = build_views(self.get_all_patterns(active_only=True))
        with self._views_guard:
            # a commit during the build makes these views stale
            if self._views_version == version:
                self._views = views
        return list(views)

    def save_feedback(self, feedback: FeedbackRecord) -> FeedbackRecord:
        """Append a feedback record."""
        with self.transaction():
            return self._db.save_feedback(feedback)

    def find_feedback(
        self,
        pattern_id: str,
        feedback_type: Optional[FeedbackType] = None,
        matched_text: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = False
    ) -> List[FeedbackRecord]:
        """Get feedback records for a pattern matching the filters."""
        with self.transaction():
            return self._db.find_feedback(
                pattern_id,
                feedback_type=feedback_type,
                matched_text=matched_text,
                limit=limit,
                offset=offset,
                newest_first=newest_first,
            )

    def count_feedback(
        self,
        pattern_id: Optional[str] = None,
        feedback_type: Optional[FeedbackType] = None,
        matched_text: Optional[str] = None
    ) -> int:
        """Count feedback records matching the filters."""
        with self.transaction():
            return self._db.count_feedback(pattern_id, feedback_type, matched_text)

    def close(self):
        """Release the database session."""
        self._db.close()
