"""
Read-only SQL validation.

Classifies a SQL statement as safe or unsafe for a read-only gateway,
enforces row caps and checks identifiers used in generated catalog SQL.
All checks run on every call and every violation is collected, so callers
see the full list of reasons rather than only the first one.
"""

from __future__ import annotations

import re

from sqlgate.exceptions import InvalidIdentifierError, QueryValidationError
from sqlgate.models.schema import DatabaseType, RowLimitResult, ValidationResult
from sqlgate.utils.logger import get_logger, preview

logger = get_logger(__name__)

DEFAULT_MAX_QUERY_LENGTH = 50000
MAX_ROW_LIMIT = 10000

ALLOWED_STARTERS = ("SELECT", "WITH", "EXPLAIN")

BLOCKED_KEYWORDS: tuple[str, ...] = (
    # Data modification
    "INSERT", "UPDATE", "DELETE", "TRUNCATE", "MERGE", "UPSERT", "REPLACE", "COPY",
    # Schema modification
    "CREATE", "ALTER", "DROP", "RENAME", "COMMENT",
    # Permissions
    "GRANT", "REVOKE",
    # Transaction control
    "BEGIN", "COMMIT", "ROLLBACK", "SAVEPOINT", "START TRANSACTION",
    # Locking
    "LOCK", "UNLOCK",
    # Maintenance
    "VACUUM", "ANALYZE", "REINDEX", "CLUSTER", "CHECKPOINT",
    # Configuration
    "SET", "RESET",
    # Messaging
    "LISTEN", "NOTIFY", "UNLISTEN",
    # Procedural
    "DO", "CALL", "EXECUTE", "EXEC", "DECLARE",
)

BLOCKED_FUNCTIONS: tuple[str, ...] = (
    # PostgreSQL
    "pg_read_file", "pg_read_binary_file", "pg_execute", "pg_terminate_backend",
    "pg_cancel_backend", "pg_sleep", "pg_reload_conf", "pg_rotate_logfile",
    "pg_ls_dir", "pg_stat_file",
    # SQL Server
    "xp_cmdshell", "sp_executesql", "OPENROWSET", "OPENDATASOURCE", "OPENQUERY",
    "xp_regread", "xp_regwrite", "xp_fileexist",
)


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    body = r"\s+".join(re.escape(part) for part in keyword.split())
    return re.compile(rf"\b{body}\b", re.IGNORECASE)


_STARTER_PATTERN = re.compile(rf"^({'|'.join(ALLOWED_STARTERS)})\b")
_KEYWORD_PATTERNS = tuple((kw, _keyword_pattern(kw)) for kw in BLOCKED_KEYWORDS)
_FUNCTION_PATTERNS = tuple(
    (fn, re.compile(rf"\b{re.escape(fn)}\s*\(", re.IGNORECASE)) for fn in BLOCKED_FUNCTIONS
)

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_PROCEDURAL_MARKERS = ("$$", "$BODY$")

_SIDE_CHANNEL_PATTERNS = (
    (re.compile(r"\bINTO\s+OUTFILE\b", re.IGNORECASE), "INTO OUTFILE is not allowed"),
    (re.compile(r"\bLOAD_FILE\b", re.IGNORECASE), "LOAD_FILE is not allowed"),
)

# Any comment is rejected, benign or not
_INJECTION_PATTERNS = (
    (re.compile(r"'\s*OR\s+'1'\s*=\s*'1", re.IGNORECASE), "' OR '1'='1"),
    (re.compile(r"'\s*OR\s+1\s*=\s*1", re.IGNORECASE), "' OR 1=1"),
    (re.compile(r"--[^\n]*$", re.MULTILINE), "-- comment"),
    (re.compile(r"/\*.*?\*/", re.DOTALL), "/* */ comment"),
    (re.compile(r"\bUNION\s+ALL\s+SELECT\b", re.IGNORECASE), "UNION ALL SELECT"),
    (re.compile(r"'\s*;\s*DROP\b", re.IGNORECASE), "'; DROP"),
)

_LIMIT_CLAUSE = re.compile(r"\bLIMIT\s+(?P<n>\d+)", re.IGNORECASE)
_TOP_CLAUSE = re.compile(r"\bTOP\s*\(?\s*(?P<n>\d+)\s*\)?", re.IGNORECASE)
_LIMIT_ALL = re.compile(r"\bLIMIT\s+ALL\b", re.IGNORECASE)
# FETCH without a literal count (FETCH FIRST ROW ONLY, parameters) is left to the streaming cap
_FETCH_CLAUSE = re.compile(r"\bFETCH\s+(?:FIRST|NEXT)\b(?:\s+(?P<n>\d+))?", re.IGNORECASE)
_HAS_ROW_CAP = re.compile(r"\b(LIMIT\s+\d|TOP\b|FETCH\s+(FIRST|NEXT)\b)", re.IGNORECASE)
_SELECT_STAR = re.compile(r"\bSELECT\s+\*", re.IGNORECASE)
_LEADING_SELECT = re.compile(r"^\s*SELECT(\s+DISTINCT)?\b", re.IGNORECASE)
_TRAILING_TERMINATORS = re.compile(r"[\s;]+\Z")
_IDENTIFIER = re.compile(r"[A-Za-z0-9_.]+")


class QueryValidator:
    """
    Multi-layer SQL validator for read-only access.

    Usage:
        validator = QueryValidator(max_query_length=50000)
        result = validator.validate("SELECT id FROM users LIMIT 10")
        limited = validator.enforce_row_limit(sql, 1000)
    """

    def __init__(
        self,
        max_query_length: int = DEFAULT_MAX_QUERY_LENGTH,
        max_rows: int = MAX_ROW_LIMIT,
    ):
        self.max_query_length = max_query_length
        self.max_rows = max_rows

    def validate(self, sql: str, max_rows: int | None = None) -> ValidationResult:
        """
        Classify a SQL statement.

        Checks, in order: emptiness, length, allowed leading keyword, blocked
        keywords, blocked functions, multiple statements, procedural blocks,
        side-channel and injection patterns. Warnings never affect validity.

        Args:
            sql: Statement exactly as submitted
            max_rows: Row cap the caller will apply, named in the missing-LIMIT
                warning (defaults to the validator's own cap)

        Returns:
            ValidationResult with every error and warning found
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not sql or not sql.strip():
            return ValidationResult(is_valid=False, errors=["Empty query"], warnings=[])

        if len(sql) > self.max_query_length:
            errors.append(
                f"Query exceeds maximum length of {self.max_query_length} characters"
            )

        normalized = sql.strip()
        upper = normalized.upper()

        if not _STARTER_PATTERN.match(upper):
            errors.append("Query must start with SELECT/WITH/EXPLAIN")

        for keyword, pattern in _KEYWORD_PATTERNS:
            if pattern.search(normalized):
                errors.append(f"Blocked keyword detected: {keyword}")

        for function, pattern in _FUNCTION_PATTERNS:
            if pattern.search(normalized):
                errors.append(f"Blocked function detected: {function}")

        if self._has_multiple_statements(normalized):
            errors.append("Multiple statements not allowed")

        if any(marker in upper for marker in _PROCEDURAL_MARKERS):
            errors.append("Procedural code blocks are not allowed")

        for pattern, message in _SIDE_CHANNEL_PATTERNS:
            if pattern.search(normalized):
                errors.append(message)

        for pattern, label in _INJECTION_PATTERNS:
            if pattern.search(normalized):
                errors.append(f"Potential SQL injection pattern detected: {label}")

        if not _HAS_ROW_CAP.search(normalized):
            cap = max_rows or self.max_rows
            warnings.append(f"Query has no LIMIT/TOP clause; results will be capped at {cap} rows")

        if _SELECT_STAR.search(normalized):
            warnings.append("SELECT * returns every column; prefer listing columns explicitly")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def validate_or_raise(self, sql: str) -> ValidationResult:
        """
        Validate and raise if the statement is unsafe.

        Raises:
            QueryValidationError: carrying the full violation list
        """
        result = self.validate(sql)
        if not result.is_valid:
            logger.warning(
                f"Query validation failed ({len(result.errors)} violation(s)): "
                f"{result.errors} | query: {preview(sql)}"
            )
            raise QueryValidationError(result.errors)
        if result.warnings:
            logger.debug(f"Query validation warnings: {result.warnings}")
        return result

    def enforce_row_limit(
        self,
        sql: str,
        max_rows: int,
        dialect: DatabaseType | str = DatabaseType.POSTGRES,
    ) -> RowLimitResult:
        """
        Cap the rows a validated query may return.

        Existing ``LIMIT n`` / ``TOP n`` / ``FETCH FIRST n`` clauses are clamped to
        ``max_rows`` and ``LIMIT ALL`` is replaced by the cap;
        otherwise a cap is added (``LIMIT`` for PostgreSQL, ``TOP`` after the
        leading SELECT for SQL Server). Must only run after validation.
        """
        if max_rows < 1:
            raise ValueError("max_rows must be at least 1")
        dialect = DatabaseType(dialect)

        # LIMIT ALL is unbounded: swap in the cap
        sql, unlimited = _LIMIT_ALL.subn(f"LIMIT {max_rows}", sql)

        if unlimited or any(p.search(sql) for p in (_LIMIT_CLAUSE, _TOP_CLAUSE, _FETCH_CLAUSE)):
            clamped = bool(unlimited)
            for pattern in (_LIMIT_CLAUSE, _TOP_CLAUSE, _FETCH_CLAUSE):
                sql, changed = _clamp(pattern, sql, max_rows)
                clamped = clamped or changed
            return RowLimitResult(sql=sql, limit_applied=clamped)

        stripped = strip_terminators(sql)

        if dialect is DatabaseType.MSSQL:
            match = _LEADING_SELECT.match(stripped)
            if not match:
                # WITH / EXPLAIN on SQL Server: the adapter's streaming cap applies
                return RowLimitResult(sql=sql, limit_applied=False)
            head, tail = stripped[: match.end()], stripped[match.end():]
            return RowLimitResult(sql=f"{head} TOP ({max_rows}){tail}", limit_applied=True)

        return RowLimitResult(sql=f"{stripped} LIMIT {max_rows}", limit_applied=True)

    @staticmethod
    def sanitize_identifier(name: str) -> str:
        """
        Check a database, schema or table name.

        Fails closed: the identifier is returned unchanged when it only uses
        ``[A-Za-z0-9_.]`` and rejected otherwise, never silently rewritten.

        Raises:
            InvalidIdentifierError: if the name is empty or has other characters
        """
        if not name or not name.strip():
            raise InvalidIdentifierError(name or "", "must not be empty")
        if not _IDENTIFIER.fullmatch(name):
            raise InvalidIdentifierError(name)
        return name

    @staticmethod
    def _has_multiple_statements(sql: str) -> bool:
        without_strings = _STRING_LITERAL.sub("", sql)
        count = without_strings.count(";")
        if count > 1:
            return True
        return count == 1 and not without_strings.rstrip().endswith(";")


def strip_terminators(sql: str) -> str:
    """Drop trailing semicolons and whitespace."""
    return _TRAILING_TERMINATORS.sub("", sql)


def _clamp(pattern: re.Pattern[str], sql: str, max_rows: int) -> tuple[str, bool]:
    """Lower every matched row count above ``max_rows``; report if anything changed."""
    clamped = False

    def _replace(match: re.Match[str]) -> str:
        nonlocal clamped
        if match.group("n") is None or int(match.group("n")) <= max_rows:
            return match.group(0)
        clamped = True
        text = match.group(0)
        start, end = match.start("n") - match.start(), match.end("n") - match.start()
        return f"{text[:start]}{max_rows}{text[end:]}"

    return pattern.sub(_replace, sql), clamped


_default_validator = QueryValidator()


def validate(sql: str, max_length: int = DEFAULT_MAX_QUERY_LENGTH) -> ValidationResult:
    """Validate with the default validator (or a one-off length limit)."""
    if max_length == _default_validator.max_query_length:
        return _default_validator.validate(sql)
    return QueryValidator(max_query_length=max_length).validate(sql)


def validate_or_raise(sql: str) -> ValidationResult:
    return _default_validator.validate_or_raise(sql)


def enforce_row_limit(
    sql: str,
    max_rows: int,
    dialect: DatabaseType | str = DatabaseType.POSTGRES,
) -> RowLimitResult:
    return _default_validator.enforce_row_limit(sql, max_rows, dialect)


def sanitize_identifier(name: str) -> str:
    return QueryValidator.sanitize_identifier(name)
