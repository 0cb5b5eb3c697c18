"""
Prompt Analyzer - rule-based hints extracted from a natural language request.

Detects the target table, filter and aggregate concepts, the time range, a
group-by expression and presentation hints.  The result is passed to the LLM
as guidance; it never becomes SQL on its own.
"""

import re
from datetime import datetime
from typing import List, Optional, Tuple

from dealer_query.mappings import (
    CHART_FORMAT_RULES,
    COLUMN_MAPPINGS,
    GROUP_BY_RULES,
    MONTH_REGEX,
    PATTERN_WEIGHT,
    PRIMARY_TABLE_BASELINE,
    PRIMARY_TABLE_KEY,
    SYNONYM_WEIGHT,
    TABLE_MAPPINGS,
    TABULAR_PATTERN,
    VALUE_STOPWORDS,
    YEAR_REGEX,
    ColumnMapping,
    normalize_month,
)
from dealer_query.models import (
    AggregateHint,
    AnalysisResult,
    DetectedTable,
    FilterHint,
    PresentationHints,
)
from dealer_query.telemetry import RequestContext, get_logger, log_component_timing
from dealer_query.time_ranges import detect_time_range

_YEAR_RE = re.compile(r"\b" + YEAR_REGEX + r"\b")
_MONTH_RE = re.compile(r"\b" + MONTH_REGEX + r"\b")
_QUOTED_RE = re.compile(r"'([^']+)'|\"([^\"]+)\"")
_COUNT_RE = re.compile(r"\bcount\b")
_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9_\-]*")

_TABLE_RULES = [
    (mapping, [re.compile(p) for p in mapping.patterns]) for mapping in TABLE_MAPPINGS
]
_COLUMN_RULES = [
    (mapping, [re.compile(p) for p in mapping.patterns]) for mapping in COLUMN_MAPPINGS
]
_GROUP_BY_RULES = [(re.compile(p), expression) for p, expression in GROUP_BY_RULES]
_CHART_RULES = [(re.compile(p), kind) for p, kind in CHART_FORMAT_RULES]
_TABULAR_RE = re.compile(TABULAR_PATTERN)


def normalize_prompt(prompt: Optional[str]) -> str:
    """Trim and collapse internal whitespace."""
    if not prompt:
        return ""
    return " ".join(prompt.split())


class PromptAnalyzer:
    """Rule-based analysis of dealership reporting prompts."""

    def __init__(self):
        self.logger = get_logger()

    def analyze(
        self,
        prompt: str,
        now: Optional[datetime] = None,
        context: Optional[RequestContext] = None,
    ) -> AnalysisResult:
        """
        Analyze a prompt and return every hint we can infer.

        Args:
            prompt: The user's natural language request
            now: Reference clock for relative time ranges
            context: Optional request context for timing

        Returns:
            AnalysisResult (table always populated, other fields may be empty)
        """
        if context is not None:
            with log_component_timing(context, "prompt_analysis"):
                return self._analyze(prompt, now)
        return self._analyze(prompt, now)

    def _analyze(self, prompt: str, now: Optional[datetime]) -> AnalysisResult:
        normalized = normalize_prompt(prompt)
        text = normalized.lower()

        table = self.detect_table(text)
        filters, aggregates = self.detect_columns(text, normalized)

        result = AnalysisResult(
            prompt=normalized,
            table=table,
            filters=filters,
            aggregates=aggregates,
            time_range=detect_time_range(text, now=now),
            presentation=self.detect_presentation(text),
        )

        self.logger.debug(
            f"Prompt analysis: table={table.table} ({table.confidence:.1f}), "
            f"filters={[f.column for f in filters]}, "
            f"aggregates={[a.alias for a in aggregates]}, "
            f"time_range={result.time_range.kind.value}, "
            f"group_by={result.presentation.group_by}"
        )
        return result

    # ------------------------------------------------------------------ #
    # Table detection
    # ------------------------------------------------------------------ #
    def detect_table(self, text: str) -> DetectedTable:
        """Score each table mapping; highest score wins, ties keep the earlier one."""
        text = text.lower()
        best: Optional[DetectedTable] = None

        for mapping, patterns in _TABLE_RULES:
            score = PRIMARY_TABLE_BASELINE if mapping.key == PRIMARY_TABLE_KEY else 0.0
            for synonym in mapping.synonyms:
                if synonym in text:
                    score += SYNONYM_WEIGHT
            for pattern in patterns:
                if pattern.search(text):
                    score += PATTERN_WEIGHT

            if best is None or score > best.confidence:
                best = DetectedTable(
                    key=mapping.key, table=mapping.table, confidence=round(score, 4)
                )

        return best

    # ------------------------------------------------------------------ #
    # Column concepts
    # ------------------------------------------------------------------ #
    def detect_columns(
        self, text: str, original: Optional[str] = None
    ) -> Tuple[List[FilterHint], List[AggregateHint]]:
        """Detect filter and aggregate concepts in prompt order of the mapping table."""
        text = text.lower()
        original = original if original is not None else text
        filters: List[FilterHint] = []
        aggregates: List[AggregateHint] = []
        # "by dealership" names a grouping, not a dealership value
        group_by_spans = [
            found.span()
            for pattern, _ in _GROUP_BY_RULES
            for found in pattern.finditer(text)
        ]

        for mapping, patterns in _COLUMN_RULES:
            match = None
            keyword = None
            for pattern in patterns:
                match = pattern.search(text)
                if match:
                    break
            if match is None:
                for synonym in mapping.synonyms:
                    if synonym in text:
                        keyword = synonym
                        break
                if keyword is None:
                    continue

            if mapping.is_aggregate:
                aggregates.append(
                    AggregateHint(
                        column=mapping.column,
                        function=mapping.function,
                        alias=mapping.alias,
                    )
                )
                continue

            value = None
            if keyword is None or not _within_group_by(text.find(keyword), group_by_spans):
                value = self.extract_value(
                    text, mapping, match=match, keyword=keyword, original=original
                )
            filters.append(FilterHint(column=mapping.column, concept=mapping.key, value=value))

        if _COUNT_RE.search(text) and not any(
            agg.function == "COUNT" for agg in aggregates
        ):
            aggregates.append(AggregateHint(column="ID", function="COUNT", alias="TotalDeals"))

        return filters, aggregates

    def extract_value(
        self,
        text: str,
        mapping: ColumnMapping,
        match: Optional[re.Match] = None,
        keyword: Optional[str] = None,
        original: Optional[str] = None,
    ) -> Optional[str]:
        """
        Pull the most specific literal for a detected filter concept.

        Order: pattern capture group, year/month keyword special case,
        year/month inside the matched text, quoted substring, then the next
        non-stopword token after the keyword.
        """
        if match is not None and match.groups():
            captured = next((g for g in match.groups() if g), None)
            if captured:
                literal = _calendar_literal(captured)
                return literal or captured.strip()

        if keyword == "year" or mapping.key == "year":
            found = _YEAR_RE.search(text)
            if found:
                return found.group(1)
        if keyword == "month" or mapping.key == "month":
            found = _MONTH_RE.search(text)
            if found:
                return normalize_month(found.group(1))

        matched_text = match.group(0) if match is not None else keyword
        if matched_text:
            literal = _calendar_literal(matched_text)
            if literal:
                return literal

        quoted = _QUOTED_RE.search(original or text)
        if quoted:
            return quoted.group(1) or quoted.group(2)

        if keyword is None:
            return None
        index = text.find(keyword)
        if index < 0:
            return None
        for token in _TOKEN_RE.findall(text[index + len(keyword):]):
            if token not in VALUE_STOPWORDS:
                return token
        return None

    # ------------------------------------------------------------------ #
    # Presentation
    # ------------------------------------------------------------------ #
    def detect_group_by(self, text: str) -> Optional[str]:
        text = text.lower()
        for pattern, expression in _GROUP_BY_RULES:
            if pattern.search(text):
                return expression
        return None

    def detect_presentation(self, text: str) -> PresentationHints:
        """Display hints only; 'tabular' never becomes a data filter."""
        text = text.lower()
        hints = PresentationHints(group_by=self.detect_group_by(text))

        if _TABULAR_RE.search(text):
            hints.tabular = True
            hints.chart_format = "table"
            return hints

        for pattern, kind in _CHART_RULES:
            if pattern.search(text):
                hints.chart_format = kind
                break
        return hints


def _within_group_by(index: int, spans: List[Tuple[int, int]]) -> bool:
    return index >= 0 and any(start <= index < end for start, end in spans)


def _calendar_literal(fragment: str) -> Optional[str]:
    """Year or normalized month name inside a fragment, if any."""
    fragment = fragment.lower()
    year = _YEAR_RE.search(fragment)
    if year:
        return year.group(1)
    month = _MONTH_RE.search(fragment)
    if month:
        return normalize_month(month.group(1))
    return None


# Global analyzer instance
_analyzer = None


def get_prompt_analyzer() -> PromptAnalyzer:
    """Get the global prompt analyzer instance."""
    global _analyzer
    if _analyzer is None:
        _analyzer = PromptAnalyzer()
    return _analyzer
