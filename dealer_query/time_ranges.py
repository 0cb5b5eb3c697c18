"""
Time range detection for dealership prompts.

Rules are an ordered tuple of ``(compiled regex, constructor)`` pairs.  The
first rule whose regex matches and whose constructor returns a TimeRange wins;
a constructor may return None (for example an impossible calendar date) and
evaluation continues with the next rule.

Every detected range carries a T-SQL predicate over DATE_REPORTED,
MONTH_REPORTED and YEAR_REPORTED.  Relative ranges are expressed with
GETDATE() arithmetic so the database clock decides, but the resolved
month/year at analysis time is recorded for display and for the LLM hint.
"""

import re
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Tuple

from dealer_query.mappings import MONTH_NAMES, MONTH_REGEX, YEAR_REGEX, normalize_month
from dealer_query.models import TimeRange, TimeRangeKind

RuleConstructor = Callable[[re.Match, datetime], Optional[TimeRange]]

_DATE_COLUMN = "CAST(DATE_REPORTED AS DATE)"
_TODAY = "CAST(GETDATE() AS DATE)"
_WEEK_START = "CAST(DATEADD(DAY, 1 - DATEPART(WEEKDAY, GETDATE()), GETDATE()) AS DATE)"

_DATE_TOKEN = r"(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}/\d{1,2}/\d{4})"
_RELATIVE_WORD = r"(this|current|last|previous|prior|next)"

_QUARTER_WORDS = {
    "first": 1,
    "1st": 1,
    "second": 2,
    "2nd": 2,
    "third": 3,
    "3rd": 3,
    "fourth": 4,
    "4th": 4,
}


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #
def _parse_date(token: str) -> Optional[date]:
    """Parse an ISO (YYYY-MM-DD) or US (MM/DD/YYYY) date; None if impossible."""
    try:
        if "-" in token:
            year, month, day = (int(part) for part in token.split("-"))
        else:
            month, day, year = (int(part) for part in token.split("/"))
        return date(year, month, day)
    except ValueError:
        return None


def _normalize_relative(word: str) -> Tuple[str, int]:
    word = word.lower()
    if word in ("this", "current"):
        return "this", 0
    if word == "next":
        return "next", 1
    return "last", -1


def _shift_month(anchor: datetime, offset: int) -> Tuple[int, int]:
    index = anchor.year * 12 + (anchor.month - 1) + offset
    return index // 12, index % 12 + 1


def _quarter_of(month: int) -> int:
    return (month - 1) // 3 + 1


def _week_start(now: datetime) -> date:
    """Most recent Sunday (SQL Server default DATEFIRST 7)."""
    today = now.date()
    return today - timedelta(days=(today.weekday() + 1) % 7)


def _month_year_predicate(month: str, year: str) -> str:
    return f"MONTH_REPORTED = '{month.capitalize()}' AND YEAR_REPORTED = '{year}'"


def _single_day(kind: TimeRangeKind, day: date, text: str, sql_day: str) -> TimeRange:
    return TimeRange(
        kind=kind,
        year=str(day.year),
        month=MONTH_NAMES[day.month - 1],
        day=day.day,
        start_date=day.isoformat(),
        end_date=day.isoformat(),
        matched_text=text,
        predicate=f"{_DATE_COLUMN} = {sql_day}",
    )


# --------------------------------------------------------------------------- #
# Rule constructors
# --------------------------------------------------------------------------- #
def _custom_range(match, now) -> Optional[TimeRange]:
    start = _parse_date(match.group(1))
    end = _parse_date(match.group(2))
    if start is None or end is None:
        return None
    if end < start:
        start, end = end, start
    return TimeRange(
        kind=TimeRangeKind.CUSTOM_RANGE,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        matched_text=match.group(0),
        predicate=(
            f"{_DATE_COLUMN} BETWEEN '{start.isoformat()}' AND '{end.isoformat()}'"
        ),
    )


def _specific_date_numeric(match, now) -> Optional[TimeRange]:
    day = _parse_date(match.group(1))
    if day is None:
        return None
    return _single_day(
        TimeRangeKind.SPECIFIC_DATE, day, match.group(0), f"'{day.isoformat()}'"
    )


def _specific_date_named(match, now) -> Optional[TimeRange]:
    month = normalize_month(match.group(1))
    try:
        day = date(int(match.group(3)), MONTH_NAMES.index(month) + 1, int(match.group(2)))
    except ValueError:
        return None
    return _single_day(
        TimeRangeKind.SPECIFIC_DATE, day, match.group(0), f"'{day.isoformat()}'"
    )


def _specific_month_year(match, now) -> TimeRange:
    month = normalize_month(match.group(1))
    year = match.group(2)
    return TimeRange(
        kind=TimeRangeKind.SPECIFIC_MONTH_YEAR,
        month=month,
        year=year,
        matched_text=match.group(0),
        predicate=_month_year_predicate(month, year),
    )


def _quarter_predicate(quarter: int, year: str) -> str:
    return (
        f"DATEPART(QUARTER, {_DATE_COLUMN}) = {quarter} "
        f"AND YEAR_REPORTED = '{year}'"
    )


def _quarter_then_year(match, now) -> TimeRange:
    quarter = int(match.group(1))
    year = match.group(2)
    return TimeRange(
        kind=TimeRangeKind.QUARTER_YEAR,
        quarter=quarter,
        year=year,
        matched_text=match.group(0),
        predicate=_quarter_predicate(quarter, year),
    )


def _ordinal_quarter_year(match, now) -> TimeRange:
    quarter = _QUARTER_WORDS[match.group(1)]
    year = match.group(2)
    return TimeRange(
        kind=TimeRangeKind.QUARTER_YEAR,
        quarter=quarter,
        year=year,
        matched_text=match.group(0),
        predicate=_quarter_predicate(quarter, year),
    )


def _year_then_quarter(match, now) -> TimeRange:
    year = match.group(1)
    quarter = int(match.group(2))
    return TimeRange(
        kind=TimeRangeKind.QUARTER_YEAR,
        quarter=quarter,
        year=year,
        matched_text=match.group(0),
        predicate=_quarter_predicate(quarter, year),
    )


def _ytd(match, now) -> TimeRange:
    return TimeRange(
        kind=TimeRangeKind.YTD,
        year=str(now.year),
        start_date=date(now.year, 1, 1).isoformat(),
        end_date=now.date().isoformat(),
        matched_text=match.group(0),
        predicate=(
            f"{_DATE_COLUMN} >= DATEFROMPARTS(YEAR(GETDATE()), 1, 1) "
            f"AND {_DATE_COLUMN} <= {_TODAY}"
        ),
    )


def _mtd(match, now) -> TimeRange:
    return TimeRange(
        kind=TimeRangeKind.MTD,
        year=str(now.year),
        month=MONTH_NAMES[now.month - 1],
        start_date=date(now.year, now.month, 1).isoformat(),
        end_date=now.date().isoformat(),
        matched_text=match.group(0),
        predicate=(
            f"{_DATE_COLUMN} >= DATEFROMPARTS(YEAR(GETDATE()), MONTH(GETDATE()), 1) "
            f"AND {_DATE_COLUMN} <= {_TODAY}"
        ),
    )


def _days_ago(kind: TimeRangeKind, days: int):
    def construct(match, now) -> TimeRange:
        day = now.date() - timedelta(days=days)
        sql_day = (
            _TODAY if days == 0 else f"CAST(DATEADD(DAY, -{days}, GETDATE()) AS DATE)"
        )
        return _single_day(kind, day, match.group(0), sql_day)

    return construct


def _this_week(match, now) -> TimeRange:
    start = _week_start(now)
    return TimeRange(
        kind=TimeRangeKind.THIS_WEEK,
        relative="this",
        start_date=start.isoformat(),
        end_date=now.date().isoformat(),
        matched_text=match.group(0),
        predicate=f"{_DATE_COLUMN} >= {_WEEK_START} AND {_DATE_COLUMN} <= {_TODAY}",
    )


def _last_week(match, now) -> TimeRange:
    this_start = _week_start(now)
    start = this_start - timedelta(days=7)
    end = this_start - timedelta(days=1)
    return TimeRange(
        kind=TimeRangeKind.LAST_WEEK,
        relative="last",
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        matched_text=match.group(0),
        predicate=(
            f"{_DATE_COLUMN} >= DATEADD(DAY, -7, {_WEEK_START}) "
            f"AND {_DATE_COLUMN} < {_WEEK_START}"
        ),
    )


def _last_n_days(match, now) -> Optional[TimeRange]:
    days = int(match.group(1))
    if days < 1:
        return None
    if days == 7:
        kind = TimeRangeKind.LAST_7_DAYS
    elif days == 30:
        kind = TimeRangeKind.LAST_30_DAYS
    else:
        kind = TimeRangeKind.LAST_N_DAYS
    return TimeRange(
        kind=kind,
        relative="last",
        days=days,
        start_date=(now - timedelta(days=days)).date().isoformat(),
        end_date=now.date().isoformat(),
        matched_text=match.group(0),
        predicate=(
            f"DATE_REPORTED >= DATEADD(DAY, -{days}, GETDATE()) "
            "AND DATE_REPORTED < GETDATE()"
        ),
    )


def _relative_month(match, now) -> TimeRange:
    relative, offset = _normalize_relative(match.group(1))
    year, month = _shift_month(now, offset)
    anchor = "GETDATE()" if offset == 0 else f"DATEADD(MONTH, {offset}, GETDATE())"
    return TimeRange(
        kind=TimeRangeKind.RELATIVE_MONTH,
        relative=relative,
        month=MONTH_NAMES[month - 1],
        year=str(year),
        matched_text=match.group(0),
        predicate=(
            f"MONTH_REPORTED = DATENAME(MONTH, {anchor}) "
            f"AND YEAR_REPORTED = CAST(YEAR({anchor}) AS VARCHAR(4))"
        ),
    )


def _relative_quarter(match, now) -> TimeRange:
    relative, offset = _normalize_relative(match.group(1))
    year, month = _shift_month(now, offset * 3)
    anchor = "GETDATE()" if offset == 0 else f"DATEADD(QUARTER, {offset}, GETDATE())"
    return TimeRange(
        kind=TimeRangeKind.RELATIVE_QUARTER,
        relative=relative,
        quarter=_quarter_of(month),
        year=str(year),
        matched_text=match.group(0),
        predicate=(
            f"DATEPART(QUARTER, {_DATE_COLUMN}) = DATEPART(QUARTER, {anchor}) "
            f"AND YEAR({_DATE_COLUMN}) = YEAR({anchor})"
        ),
    )


def _relative_year(match, now) -> TimeRange:
    relative, offset = _normalize_relative(match.group(1))
    if offset == 0:
        expression = "YEAR(GETDATE())"
    elif offset < 0:
        expression = f"YEAR(GETDATE()) - {-offset}"
    else:
        expression = f"YEAR(GETDATE()) + {offset}"
    return TimeRange(
        kind=TimeRangeKind.RELATIVE_YEAR,
        relative=relative,
        year=str(now.year + offset),
        matched_text=match.group(0),
        predicate=f"YEAR_REPORTED = CAST({expression} AS VARCHAR(4))",
    )


def _bare_month(match, now) -> TimeRange:
    month = normalize_month(match.group(1))
    year = str(now.year)
    return TimeRange(
        kind=TimeRangeKind.SPECIFIC_MONTH_YEAR,
        month=month,
        year=year,
        matched_text=match.group(0),
        predicate=_month_year_predicate(month, year),
    )


def _specific_year(match, now) -> TimeRange:
    year = match.group(1)
    return TimeRange(
        kind=TimeRangeKind.SPECIFIC_YEAR,
        year=year,
        matched_text=match.group(0),
        predicate=f"YEAR_REPORTED = '{year}'",
    )


# "may" alone is too ambiguous ("may I see ...") without a preposition.
_MONTH_NO_MAY = MONTH_REGEX.replace("|may", "")

TIME_RANGE_RULES: Tuple[Tuple[re.Pattern, RuleConstructor], ...] = (
    (
        re.compile(
            rf"\b(?:from|between)\s+{_DATE_TOKEN}\s+(?:to|and|through|until|-)\s+{_DATE_TOKEN}"
        ),
        _custom_range,
    ),
    (re.compile(rf"\b{_DATE_TOKEN}\b"), _specific_date_numeric),
    (
        re.compile(rf"\b{MONTH_REGEX}\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})\b"),
        _specific_date_named,
    ),
    (
        re.compile(rf"\b{MONTH_REGEX}\s*,?\s+(?:of\s+)?{YEAR_REGEX}\b"),
        _specific_month_year,
    ),
    (re.compile(rf"\bq([1-4])\s*(?:of\s+)?{YEAR_REGEX}\b"), _quarter_then_year),
    (
        re.compile(
            rf"\b(first|second|third|fourth|1st|2nd|3rd|4th)\s+quarter\s+(?:of\s+)?{YEAR_REGEX}\b"
        ),
        _ordinal_quarter_year,
    ),
    (re.compile(rf"\b{YEAR_REGEX}\s*q([1-4])\b"), _year_then_quarter),
    (re.compile(r"\b(?:ytd|year[\s-]to[\s-]date)\b"), _ytd),
    (re.compile(r"\b(?:mtd|month[\s-]to[\s-]date)\b"), _mtd),
    (
        re.compile(r"\bday\s+before\s+yesterday\b"),
        _days_ago(TimeRangeKind.DAY_BEFORE_YESTERDAY, 2),
    ),
    (re.compile(r"\byesterday\b"), _days_ago(TimeRangeKind.YESTERDAY, 1)),
    (re.compile(r"\btoday\b"), _days_ago(TimeRangeKind.TODAY, 0)),
    (re.compile(r"\b(?:this|current)\s+week\b"), _this_week),
    (re.compile(r"\b(?:last|previous|prior|past)\s+week\b"), _last_week),
    (re.compile(r"\b(?:last|past|previous)\s+(\d{1,4})\s+days?\b"), _last_n_days),
    (re.compile(rf"\b{_RELATIVE_WORD}\s+month\b"), _relative_month),
    (re.compile(rf"\b{_RELATIVE_WORD}\s+quarter\b"), _relative_quarter),
    (re.compile(rf"\b{_RELATIVE_WORD}\s+year\b"), _relative_year),
    (re.compile(rf"\b{_MONTH_NO_MAY}\b"), _bare_month),
    (re.compile(r"\b(?:in|for|during|of)\s+(may)\b"), _bare_month),
    (re.compile(rf"\b{YEAR_REGEX}\b"), _specific_year),
)


def detect_time_range(prompt: str, now: Optional[datetime] = None) -> TimeRange:
    """
    Classify the time range mentioned in a prompt.

    Args:
        prompt: Natural language prompt (any case)
        now: Reference clock for relative ranges (defaults to datetime.now())

    Returns:
        TimeRange with kind NONE when no rule matches
    """
    if not prompt:
        return TimeRange()
    now = now or datetime.now()
    text = prompt.lower()

    for pattern, construct in TIME_RANGE_RULES:
        match = pattern.search(text)
        if not match:
            continue
        time_range = construct(match, now)
        if time_range is not None:
            return time_range

    return TimeRange()
