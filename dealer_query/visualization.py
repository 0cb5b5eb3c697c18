"""
Chart selection heuristic for query results.
"""

import re
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

EXPLICIT_CHART_PATTERNS = (
    (re.compile(r"\bbar\s*(?:chart|graph)\b", re.IGNORECASE), "bar"),
    (re.compile(r"\bline\s*(?:chart|graph)\b", re.IGNORECASE), "line"),
    (re.compile(r"\bpie\s*(?:chart|graph)\b", re.IGNORECASE), "pie"),
    (re.compile(r"\b(?:table|tabular|data\s*table)\b", re.IGNORECASE), "table"),
)

DEFAULT_VISUALIZATION = "table"

_DATE_LIKE_COLUMN = re.compile(r"date|month|year|time", re.IGNORECASE)
_NUMERIC_TEXT = re.compile(r"^\d+(\.\d+)?$")


def explicit_chart_type(prompt: Optional[str]) -> Optional[str]:
    """Chart kind named in the prompt, if any."""
    if not prompt:
        return None
    for pattern, kind in EXPLICIT_CHART_PATTERNS:
        if pattern.search(prompt):
            return kind
    return None


def is_numeric_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return True
    return bool(_NUMERIC_TEXT.match(str(value)))


def choose_visualization(
    prompt: Optional[str], rows: Sequence[Dict[str, Any]]
) -> str:
    """
    Pick a chart kind for a result set.

    An explicit request in the prompt always wins.  Otherwise the first row
    decides: a date-like column with a numeric value -> line, a numeric value
    with at most three columns -> bar, anything else -> table.
    """
    explicit = explicit_chart_type(prompt)
    if explicit:
        return explicit
    if not rows:
        return DEFAULT_VISUALIZATION

    first = rows[0]
    columns: List[str] = list(first.keys())
    has_date = any(_DATE_LIKE_COLUMN.search(column) for column in columns)
    numeric_columns = [c for c in columns if is_numeric_value(first[c])]

    if has_date and numeric_columns:
        return "line"
    if numeric_columns and len(columns) <= 3:
        return "bar"
    return "table"
