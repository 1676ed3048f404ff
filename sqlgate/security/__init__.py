"""
Query safety layer.

Pure functions over SQL strings: no I/O, no hidden state. The same
statement always yields the same ValidationResult.
"""

from sqlgate.security.validator import (
    BLOCKED_FUNCTIONS,
    BLOCKED_KEYWORDS,
    MAX_ROW_LIMIT,
    QueryValidator,
    enforce_row_limit,
    sanitize_identifier,
    validate,
    validate_or_raise,
)

__all__ = [
    "BLOCKED_FUNCTIONS",
    "BLOCKED_KEYWORDS",
    "MAX_ROW_LIMIT",
    "QueryValidator",
    "enforce_row_limit",
    "sanitize_identifier",
    "validate",
    "validate_or_raise",
]
