"""
Pydantic models for type-safe data contracts across all components.

These models ensure consistent data structures throughout the query pipeline.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from dealer_query.config import get_config


# ============================================================================
# Prompt analysis
# ============================================================================


class TimeRangeKind(str, Enum):
    """Mutually exclusive time range classifications."""

    NONE = "none"
    SPECIFIC_MONTH_YEAR = "specific_month_year"
    RELATIVE_MONTH = "relative_month"
    SPECIFIC_YEAR = "specific_year"
    QUARTER_YEAR = "quarter_year"
    SPECIFIC_DATE = "specific_date"
    YTD = "ytd"
    MTD = "mtd"
    RELATIVE_YEAR = "relative_year"
    RELATIVE_QUARTER = "relative_quarter"
    TODAY = "today"
    YESTERDAY = "yesterday"
    DAY_BEFORE_YESTERDAY = "day_before_yesterday"
    THIS_WEEK = "this_week"
    LAST_WEEK = "last_week"
    LAST_7_DAYS = "last_7_days"
    LAST_30_DAYS = "last_30_days"
    LAST_N_DAYS = "last_n_days"
    CUSTOM_RANGE = "custom_range"


class TimeRange(BaseModel):
    """Detected time range plus a ready-to-embed T-SQL predicate."""

    kind: TimeRangeKind = Field(default=TimeRangeKind.NONE)
    year: Optional[str] = Field(default=None, description="Four digit year")
    month: Optional[str] = Field(default=None, description="Lowercase month name")
    day: Optional[int] = Field(default=None, ge=1, le=31)
    quarter: Optional[int] = Field(default=None, ge=1, le=4)
    relative: Optional[str] = Field(
        default=None, description="Relative marker: this, last or next"
    )
    days: Optional[int] = Field(default=None, ge=1)
    start_date: Optional[str] = Field(default=None, description="ISO date")
    end_date: Optional[str] = Field(default=None, description="ISO date")
    matched_text: Optional[str] = Field(default=None)
    predicate: Optional[str] = Field(
        default=None, description="Boolean SQL expression over report date columns"
    )

    @property
    def is_none(self) -> bool:
        return self.kind == TimeRangeKind.NONE


class DetectedTable(BaseModel):
    """Winning table candidate from confidence scoring."""

    key: str
    table: str
    confidence: float = Field(default=0.0, ge=0.0)


class FilterHint(BaseModel):
    """A concept detected as a filter with its extracted value (if any)."""

    column: str
    concept: str
    value: Optional[str] = None


class AggregateHint(BaseModel):
    """A concept detected as an aggregate."""

    column: str
    function: str
    alias: str

    def render(self) -> str:
        return f"{self.function}({self.column}) AS {self.alias}"


class PresentationHints(BaseModel):
    """Display-only hints; never turned into data filters."""

    chart_format: Optional[str] = None
    tabular: bool = False
    group_by: Optional[str] = None


class AnalysisResult(BaseModel):
    """Everything the rule-based analyzer could infer from a prompt."""

    prompt: str
    table: DetectedTable
    filters: List[FilterHint] = Field(default_factory=list)
    aggregates: List[AggregateHint] = Field(default_factory=list)
    time_range: TimeRange = Field(default_factory=TimeRange)
    presentation: PresentationHints = Field(default_factory=PresentationHints)


# ============================================================================
# Schema registry
# ============================================================================


class ColumnInfo(BaseModel):
    """Column name with its declared data type."""

    column: str
    data_type: Optional[str] = None


class SchemaSnapshot(BaseModel):
    """Table name -> ordered columns, as read from INFORMATION_SCHEMA."""

    database: Optional[str] = None
    tables: Dict[str, List[ColumnInfo]] = Field(default_factory=dict)

    def known_identifiers(self) -> set:
        """Uppercased table and column names."""
        known = set()
        for table, columns in self.tables.items():
            known.add(table.upper())
            for column in columns:
                known.add(column.column.upper())
        return known


# ============================================================================
# SQL generation and execution
# ============================================================================


class GenerationFailure(str, Enum):
    """Why the generator had to fall back."""

    LLM_ERROR = "llm_error"
    EMPTY_OUTPUT = "empty_output"
    UNSAFE = "unsafe"
    SCHEMA_MISMATCH = "schema_mismatch"


class ValidationVerdict(BaseModel):
    """Outcome of a safety inspection with the first failing rule."""

    is_safe: bool
    reason: Optional[str] = None
    failed_check: Optional[str] = Field(
        default=None, description="Which check failed: safety or schema"
    )
    cleaned_sql: Optional[str] = None


class GeneratedSQL(BaseModel):
    """Validated SQL with metadata about how it was produced."""

    sql: str = Field(..., description="Validated SQL to execute", min_length=1)
    raw_sql: Optional[str] = Field(
        default=None, description="Unmodified model output, kept for diagnostics"
    )
    is_fallback: bool = Field(default=False)
    failure: Optional[GenerationFailure] = Field(default=None)
    failure_reason: Optional[str] = Field(default=None)
    analysis: Optional[AnalysisResult] = Field(default=None)
    token_usage: Dict[str, Any] = Field(default_factory=dict)


class QueryResult(BaseModel):
    """Raw results from query execution."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    data: Any = Field(..., description="Query results as a DataFrame")
    row_count: int = Field(..., ge=0)
    columns: List[str] = Field(default_factory=list)
    execution_time_seconds: float = Field(..., ge=0.0)
    sql_executed: str = Field(...)

    def records(self) -> List[Dict[str, Any]]:
        """Rows as JSON-friendly dicts (NaN replaced with None)."""
        if isinstance(self.data, pd.DataFrame):
            frame = self.data.astype(object).where(pd.notna(self.data), None)
            return frame.to_dict(orient="records")
        if isinstance(self.data, list):
            return self.data
        return []


# ============================================================================
# LLM models
# ============================================================================


class LLMConfig(BaseModel):
    """Chat completion client configuration, defaults read from Config."""

    api_key: Optional[str] = Field(default_factory=lambda: get_config().llm_api_key)
    base_url: str = Field(default_factory=lambda: get_config().llm_base_url)
    model: str = Field(default_factory=lambda: get_config().llm_model)
    max_tokens: int = Field(
        default_factory=lambda: get_config().llm_max_tokens,
        description="Maximum tokens for LLM response",
        gt=0,
    )
    temperature: float = Field(
        default_factory=lambda: get_config().llm_temperature, ge=0.0, le=2.0
    )
    timeout: int = Field(
        default_factory=lambda: get_config().llm_timeout_seconds,
        description="Request timeout in seconds",
        gt=0,
    )


class ChatMessage(BaseModel):
    role: str
    content: str


class LLMResponse(BaseModel):
    """Result of a single chat completion call."""

    model_config = ConfigDict(protected_namespaces=())

    success: bool = Field(..., description="Whether the call completed")
    content: Optional[str] = Field(default=None)
    model_version: str = Field(..., description="Model used for the call")
    processing_time_ms: int = Field(default=0, ge=0)
    token_usage: Dict[str, Any] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


# ============================================================================
# API request payloads
# ============================================================================


class QueryRequest(BaseModel):
    """Natural language query request for /query."""

    prompt: Optional[str] = None


class AskRequest(BaseModel):
    question: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: Optional[str] = None
    data: Any = None
    data_type: Optional[str] = Field(default="json", alias="dataType")
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_rows_to_show: Optional[int] = Field(
        default=None, alias="maxRowsToShow", gt=0
    )


class AnalyzeTextRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = None
    analysis_type: Optional[str] = Field(default="general", alias="analysisType")
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)


class BatchRequest(BaseModel):
    requests: List[Dict[str, Any]] = Field(default_factory=list)
