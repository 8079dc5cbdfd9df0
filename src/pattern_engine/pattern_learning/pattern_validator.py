"""Expression validation for learned, manual and suggested patterns."""

import re
import logging
from typing import List, Optional, Sequence

from ..exceptions import ExpressionCompileError

logger = logging.getLogger(__name__)

# Expressions that match nearly anything
TOO_PERMISSIVE = {r'.*', r'.+', r'\w+', r'\S+', r'[\s\S]*', r'[\s\S]+'}

# Probe strings no specific detector should match in full
CONTROL_TEXTS = ["", " ", "a", "invalid", "lorem ipsum dolor"]

MAX_EXPRESSION_LENGTH = 2000


class PatternValidator:
    """Validates matching expressions before they are stored or applied."""

    def compile(self, expression: str, pattern_id: Optional[str] = None) -> re.Pattern:
        """
        Compile an expression.

        Raises:
            ExpressionCompileError: If the expression is not a valid regular expression
        """
        if not expression:
            raise ExpressionCompileError(expression, "empty expression", pattern_id)
        try:
            return re.compile(expression)
        except re.error as e:
            raise ExpressionCompileError(expression, str(e), pattern_id)

    def find_issues(self, expression: str) -> List[str]:
        """
        List common problems with an expression.

        Args:
            expression: Pattern string to inspect

        Returns:
            Human-readable issues, empty when none were found
        """
        issues = []
        if expression in TOO_PERMISSIVE:
            issues.append("Expression matches nearly any text")
        if '.*.*' in expression:
            issues.append("Multiple consecutive wildcards")
        if expression.startswith('.*') or expression.endswith('.*'):
            issues.append("Unanchored greedy wildcard")
        if len(expression) > MAX_EXPRESSION_LENGTH:
            issues.append("Expression is too long")
        return issues

    def validate(self, expression: str, examples: Sequence[str] = ()) -> bool:
        """
        Check that an expression compiles, is specific, and matches every example in full.

        Args:
            expression: The expression to validate
            examples: Texts the expression must match

        Returns:
            True if the expression is valid, False otherwise
        """
        try:
            regex = self.compile(expression)
        except ExpressionCompileError as e:
            logger.debug(f"Rejected expression: {e}")
            return False

        issues = self.find_issues(expression)
        if issues:
            logger.debug(f"Rejected expression {expression!r}: {', '.join(issues)}")
            return False

        for example in examples:
            if not regex.fullmatch(example):
                logger.debug(f"Expression {expression!r} does not match example {example!r}")
                return False

        for control in CONTROL_TEXTS:
            if control not in examples and regex.fullmatch(control):
                logger.debug(f"Expression {expression!r} matches control text {control!r}")
                return False

        return True
