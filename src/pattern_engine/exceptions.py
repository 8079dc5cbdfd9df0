class PatternEngineError(Exception):
    """Base exception for pattern engine errors."""
    pass

class InvalidInputError(PatternEngineError):
    """Raised when examples, identifiers or feedback values are malformed."""
    pass

class NotFoundError(PatternEngineError):
    """Raised when a pattern identifier does not reference a stored pattern."""
    pass

class ExpressionCompileError(PatternEngineError):
    """Raised when a stored or suggested expression is not a valid regular expression."""

    def __init__(self, expression: str, reason: str, pattern_id: str = None):
        self.expression = expression
        self.reason = reason
        self.pattern_id = pattern_id
        prefix = f"Pattern {pattern_id}: " if pattern_id else ""
        super().__init__(f"{prefix}invalid expression {expression!r}: {reason}")

class RefinementConflictError(PatternEngineError):
    """Raised when suggestions were computed against a pattern state that has since changed."""
    pass
