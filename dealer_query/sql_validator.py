"""
SQL safety validation for model-generated statements.

Only a single read-only SELECT (or CTE) may reach the database.  Anything that
fails a check resolves to FALLBACK_SQL, which returns no rows.

Checks run in order:
1. Basic safety: one statement, starts with SELECT/WITH, no DDL/DML keywords.
2. Strict safety: no EXECUTE, comments, xp_cmdshell, sp_ calls, or oversize text.
3. Optional schema check: every identifier is a known table/column, a SQL
   keyword or function, or an alias declared in the statement.
"""

from __future__ import annotations

import re
from typing import Optional, Set

from dealer_query.config import get_config
from dealer_query.models import SchemaSnapshot, ValidationVerdict
from dealer_query.schema_docs import PRIMARY_SALES_TABLE
from dealer_query.telemetry import get_logger

FALLBACK_SQL = f"SELECT TOP (0) * FROM {PRIMARY_SALES_TABLE}"

_FORBIDDEN_KEYWORDS = (
    "insert",
    "update",
    "delete",
    "drop",
    "alter",
    "create",
    "truncate",
    "exec",
    "merge",
    "grant",
    "revoke",
)
_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(_FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)

_STRICT_RULES = (
    (re.compile(r"\bexecute\b", re.IGNORECASE), "EXECUTE is not allowed"),
    (re.compile(r"--"), "SQL comments are not allowed"),
    (re.compile(r"/\*"), "SQL comments are not allowed"),
    (re.compile(r"\bxp_cmdshell\b", re.IGNORECASE), "xp_cmdshell is not allowed"),
    (re.compile(r"\bsp_", re.IGNORECASE), "System procedure calls are not allowed"),
)

_FENCE_RE = re.compile(r"```[ \t]*(?:t?sql|mssql)?[ \t]*\n?(.*?)```", re.IGNORECASE | re.DOTALL)
_LANGUAGE_TAG_RE = re.compile(r"^(?:t?sql|mssql)\s*\n", re.IGNORECASE)
_TRAILING_SEMICOLONS_RE = re.compile(r"\s*;+\s*$")
_STRING_LITERAL_RE = re.compile(r"N?'(?:[^']|'')*'")
_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]+")
_QUOTED_IDENTIFIER_RE = re.compile(r"\[([^\]]*)\]|\"([^\"]*)\"")
_SIMPLE_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*$")

_ALIAS_RE = re.compile(r"\bAS\s+\[?([A-Za-z_][A-Za-z0-9_]*)", re.IGNORECASE)
_CTE_RE = re.compile(
    r"(?:\bWITH|,)\s*([A-Za-z_][A-Za-z0-9_]*)\s*(?:\([^)]*\)\s*)?AS\s*\(",
    re.IGNORECASE,
)
_TABLE_ALIAS_RE = re.compile(
    r"\b(?:FROM|JOIN)\s+[\w.\[\]]+\s+(?:AS\s+)?([A-Za-z_][A-Za-z0-9_]*)",
    re.IGNORECASE,
)
# Alias without AS after a closing parenthesis: SUM(x) TotalGross, ...
_IMPLICIT_ALIAS_RE = re.compile(
    r"\)\s+([A-Za-z_][A-Za-z0-9_]*)\s*"
    r"(?=,|;|\)|$|\b(?:FROM|WHERE|GROUP|ORDER|HAVING|JOIN|ON|UNION)\b)",
    re.IGNORECASE,
)

# SQL keywords, types and T-SQL functions accepted by the schema check.
SQL_ALLOWED_WORDS = frozenset(
    {
        # Clauses and operators
        "SELECT", "FROM", "WHERE", "AND", "OR", "ON", "JOIN", "LEFT", "RIGHT",
        "INNER", "OUTER", "FULL", "CROSS", "APPLY", "GROUP", "ORDER", "BY", "AS",
        "TOP", "WITH", "IS", "NULL", "NOT", "IN", "BETWEEN", "LIKE", "CASE",
        "WHEN", "THEN", "ELSE", "END", "HAVING", "LIMIT", "DISTINCT", "ASC",
        "DESC", "UNION", "ALL", "EXISTS", "OVER", "PARTITION", "OFFSET", "FETCH",
        "NEXT", "ROWS", "ROW", "ONLY", "PERCENT", "TIES", "DBO", "ANY", "SOME",
        # Aggregates and functions
        "SUM", "AVG", "MIN", "MAX", "COUNT", "COUNT_BIG", "CAST", "TRY_CAST",
        "CONVERT", "TRY_CONVERT", "REPLACE", "COALESCE", "ISNULL", "NULLIF",
        "IIF", "ROUND", "ABS", "FLOOR", "CEILING", "UPPER", "LOWER", "LTRIM",
        "RTRIM", "TRIM", "LEN", "LEFT", "RIGHT", "SUBSTRING", "CONCAT", "FORMAT",
        "STRING_AGG", "ROW_NUMBER", "RANK", "DENSE_RANK", "NTILE", "LAG",
        # Date handling
        "DATEPART", "DATEADD", "DATENAME", "DATEDIFF", "DATEFROMPARTS",
        "EOMONTH", "GETDATE", "SYSDATETIME", "CURRENT_TIMESTAMP", "YEAR", "MONTH",
        "DAY", "QUARTER", "WEEK", "WEEKDAY", "DAYOFYEAR", "ISO_WEEK", "YYYY",
        "MM", "DD", "QQ", "WK", "DW",
        # Types
        "DECIMAL", "NUMERIC", "INT", "BIGINT", "SMALLINT", "FLOAT", "REAL",
        "MONEY", "VARCHAR", "NVARCHAR", "CHAR", "NCHAR", "DATE", "DATETIME",
        "DATETIME2", "BIT",
    }
)


def strip_code_fences(text: Optional[str]) -> str:
    """Remove markdown code fences (```sql ... ```) around model output."""
    if not text:
        return ""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # Unterminated fence
    stripped = text.replace("```", "").strip()
    return _LANGUAGE_TAG_RE.sub("", stripped).strip()


class SQLSafetyValidator:
    """Guardrail between model output and the database."""

    FALLBACK_SQL = FALLBACK_SQL

    def __init__(
        self,
        max_sql_length: Optional[int] = None,
        strict: Optional[bool] = None,
        enforce_schema_check: Optional[bool] = None,
    ):
        config = get_config()
        self.logger = get_logger()
        self.max_sql_length = max_sql_length or config.max_sql_length
        self.strict = config.strict_sql_validation if strict is None else strict
        self.enforce_schema_check = (
            config.enforce_schema_check
            if enforce_schema_check is None
            else enforce_schema_check
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    strip_code_fences = staticmethod(strip_code_fences)

    def is_safe(self, text: Optional[str]) -> bool:
        return self._safety_violation(text) is None

    def is_safe_strict(self, text: Optional[str]) -> bool:
        return self._strict_violation(text) is None

    def check_against_schema(
        self, text: Optional[str], snapshot: Optional[SchemaSnapshot]
    ) -> bool:
        """True when every identifier is known; passes when no snapshot exists."""
        return self._unknown_identifiers(text or "", snapshot) == set()

    def inspect(
        self, text: Optional[str], snapshot: Optional[SchemaSnapshot] = None
    ) -> ValidationVerdict:
        """
        Run every enabled check and report the first failing rule.

        Args:
            text: Raw model output (fences allowed)
            snapshot: Known schema for the identifier check (optional)

        Returns:
            ValidationVerdict with cleaned_sql set when the statement is safe
        """
        cleaned = strip_code_fences(text)
        if not cleaned:
            return ValidationVerdict(
                is_safe=False, reason="SQL is empty", failed_check="safety"
            )

        reason = (
            self._strict_violation(cleaned)
            if self.strict
            else self._safety_violation(cleaned)
        )
        if reason:
            return ValidationVerdict(is_safe=False, reason=reason, failed_check="safety")

        if self.enforce_schema_check and snapshot is not None:
            unknown = self._unknown_identifiers(cleaned, snapshot)
            if unknown:
                return ValidationVerdict(
                    is_safe=False,
                    reason=f"Unknown identifiers referenced: {', '.join(sorted(unknown))}",
                    failed_check="schema",
                )

        return ValidationVerdict(
            is_safe=True, cleaned_sql=_TRAILING_SEMICOLONS_RE.sub("", cleaned)
        )

    def validate_and_clean(
        self, text: Optional[str], snapshot: Optional[SchemaSnapshot] = None
    ) -> str:
        """Return cleaned SQL, or FALLBACK_SQL when any check fails."""
        verdict = self.inspect(text, snapshot)
        if not verdict.is_safe:
            self.logger.warning(f"SQL rejected, using fallback: {verdict.reason}")
            return FALLBACK_SQL
        return verdict.cleaned_sql

    # ------------------------------------------------------------------ #
    # Rules
    # ------------------------------------------------------------------ #
    def _safety_violation(self, text: Optional[str]) -> Optional[str]:
        if not text or not text.strip():
            return "SQL is empty"
        stripped = text.strip()

        semicolons = stripped.count(";")
        if semicolons > 1:
            return "Multiple SQL statements detected"
        if semicolons == 1 and not stripped.endswith(";"):
            return "Additional content found after semicolon"

        lowered = stripped.lower()
        if not (lowered.startswith("select") or lowered.startswith("with")):
            return "SQL must start with SELECT or WITH"

        forbidden = _FORBIDDEN_RE.search(stripped)
        if forbidden:
            return f"Disallowed keyword detected: {forbidden.group(1).upper()}"
        return None

    def _strict_violation(self, text: Optional[str]) -> Optional[str]:
        reason = self._safety_violation(text)
        if reason:
            return reason
        for pattern, message in _STRICT_RULES:
            if pattern.search(text):
                return message
        if len(text.strip()) > self.max_sql_length:
            return f"SQL exceeds {self.max_sql_length} characters"
        return None

    def _unknown_identifiers(
        self, text: str, snapshot: Optional[SchemaSnapshot]
    ) -> Set[str]:
        if snapshot is None or not snapshot.tables:
            return set()

        without_literals = _STRING_LITERAL_RE.sub("''", text)
        known = snapshot.known_identifiers()
        known |= {a.upper() for a in _ALIAS_RE.findall(without_literals)}
        known |= {c.upper() for c in _CTE_RE.findall(without_literals)}
        known |= {t.upper() for t in _TABLE_ALIAS_RE.findall(without_literals)}

        scanned = _QUOTED_IDENTIFIER_RE.sub(_unquote_identifier, without_literals)
        known |= {a.upper() for a in _IMPLICIT_ALIAS_RE.findall(scanned)}

        tokens = {t.upper() for t in _IDENTIFIER_RE.findall(scanned)}
        return {t for t in tokens if t not in SQL_ALLOWED_WORDS and t not in known}


def _unquote_identifier(match: re.Match) -> str:
    """[Name] -> Name for plain identifiers; anything else can only be an alias."""
    name = match.group(1) if match.group(1) is not None else match.group(2)
    if _SIMPLE_IDENTIFIER_RE.match(name):
        return name
    return "''"


# Global validator instance
_validator = None


def get_sql_validator() -> SQLSafetyValidator:
    """Get the global SQL safety validator instance."""
    global _validator
    if _validator is None:
        _validator = SQLSafetyValidator()
    return _validator
