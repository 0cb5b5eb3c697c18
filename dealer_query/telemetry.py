"""
Request telemetry for the dealer query pipeline.

Each prompt gets a RequestContext.  Pipeline stages record their timings and
outcome on it (detected table, time range, fallback use, row count, chart
choice), and the service closes the request with a one-line summary.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from dealer_query.config import get_config
from dealer_query.models import GeneratedSQL

LOGGER_NAME = "dealer_query"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


@dataclass
class LLMCall:
    """One chat completion call made while serving a request."""

    stage: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    success: bool = True

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class RequestContext:
    """Timings and pipeline outcome for a single prompt."""

    request_id: str
    prompt: str
    start_time: float = field(default_factory=time.time)
    component_timings: Dict[str, float] = field(default_factory=dict)
    llm_calls: List[LLMCall] = field(default_factory=list)

    table: Optional[str] = None
    time_range_kind: Optional[str] = None
    is_fallback: bool = False
    failure: Optional[str] = None
    row_count: Optional[int] = None
    visualization: Optional[str] = None

    error: Optional[str] = None
    error_type: Optional[str] = None
    error_component: Optional[str] = None

    def add_timing(self, component: str, duration: float):
        self.component_timings[component] = duration

    def record_generation(self, generated_sql: GeneratedSQL):
        """Copy the analyzer's table/time range and the fallback outcome."""
        analysis = generated_sql.analysis
        if analysis is not None:
            self.table = analysis.table.table
            self.time_range_kind = analysis.time_range.kind.value
        self.is_fallback = generated_sql.is_fallback
        self.failure = generated_sql.failure.value if generated_sql.failure else None

    def record_result(self, row_count: int, visualization: Optional[str]):
        self.row_count = row_count
        self.visualization = visualization

    def total_tokens(self) -> int:
        return sum(call.total_tokens for call in self.llm_calls)

    def elapsed(self) -> float:
        return time.time() - self.start_time

    def outcome(self) -> Dict[str, Any]:
        """Pipeline outcome fields, JSON-ready."""
        return {
            "table": self.table,
            "time_range_kind": self.time_range_kind,
            "is_fallback": self.is_fallback,
            "failure": self.failure,
            "row_count": self.row_count,
            "visualization": self.visualization,
            "llm_calls": [
                dict(asdict(call), total_tokens=call.total_tokens)
                for call in self.llm_calls
            ],
            "error": self.error,
            "error_type": self.error_type,
            "error_component": self.error_component,
        }


@dataclass
class TelemetryReport:
    """Closing summary for a request."""

    request_id: str
    prompt: str
    success: bool
    total_time_seconds: float
    component_timings: Dict[str, float]
    outcome: Dict[str, Any]
    total_tokens: int = 0
    error: Optional[str] = None

    def summary(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        parts = [
            f"Request {status} in {self.total_time_seconds:.4f}s",
            f"table={self.outcome.get('table')}",
            f"time_range={self.outcome.get('time_range_kind')}",
            f"fallback={self.outcome.get('is_fallback')}",
        ]
        if self.outcome.get("failure"):
            parts.append(f"failure={self.outcome['failure']}")
        if self.outcome.get("row_count") is not None:
            parts.append(f"rows={self.outcome['row_count']}")
        if self.outcome.get("visualization"):
            parts.append(f"visualization={self.outcome['visualization']}")
        parts.append(f"tokens={self.total_tokens}")
        if self.error:
            parts.append(f"error={self.error}")
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "prompt": self.prompt,
            "success": self.success,
            "error": self.error,
            "total_time_seconds": round(self.total_time_seconds, 4),
            "component_timings": {
                k: round(v, 4) for k, v in self.component_timings.items()
            },
            "total_tokens": self.total_tokens,
            **self.outcome,
        }


_logger: Optional[logging.Logger] = None


def setup_logging(log_level: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``dealer_query`` logger once.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.  Defaults to LOG_LEVEL.

    Returns:
        The package logger; module loggers under ``dealer_query.*`` propagate to it
    """
    global _logger

    if _logger is not None:
        return _logger

    level = getattr(logging, (log_level or get_config().log_level).upper())

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    return _logger if _logger is not None else setup_logging()


def create_request_context(prompt: str) -> RequestContext:
    """Start tracking a prompt under a short request id."""
    context = RequestContext(request_id=uuid.uuid4().hex[:8], prompt=prompt or "")
    get_logger().info(f"[{context.request_id}] New request: {context.prompt[:100]}")
    return context


@contextmanager
def log_component_timing(context: RequestContext, component_name: str):
    """
    Time a pipeline stage; the duration is recorded even if the stage raises.

    Usage:
        with log_component_timing(context, "query_execution"):
            ...
    """
    start_time = time.time()
    try:
        yield
    finally:
        duration = time.time() - start_time
        context.add_timing(component_name, duration)
        get_logger().debug(
            f"[{context.request_id}] {component_name} took {duration:.4f}s"
        )


def log_llm_call(
    context: RequestContext,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    stage: str = "sql_generation",
    success: bool = True,
):
    call = LLMCall(
        stage=stage,
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        success=success,
    )
    context.llm_calls.append(call)
    get_logger().info(
        f"[{context.request_id}] LLM {stage} call to {model}: "
        f"{'ok' if success else 'failed'}, tokens={call.total_tokens} "
        f"(prompt={prompt_tokens}, completion={completion_tokens})"
    )


def log_error(
    context: RequestContext, error: Exception, component: Optional[str] = None
):
    """Log an exception with its traceback and keep it on the context."""
    where = f" in {component}" if component else ""
    get_logger().error(
        f"[{context.request_id}] Error{where}: {type(error).__name__}: {error}",
        exc_info=True,
    )
    context.error = str(error)
    context.error_type = type(error).__name__
    context.error_component = component


def generate_telemetry_report(
    context: RequestContext, success: bool = True, error: Optional[str] = None
) -> TelemetryReport:
    """
    Close a request: build the report and log its summary line.

    The summary is logged only when ENABLE_TELEMETRY is on; the stage
    breakdown is logged at DEBUG.
    """
    report = TelemetryReport(
        request_id=context.request_id,
        prompt=context.prompt,
        success=success,
        total_time_seconds=context.elapsed(),
        component_timings=dict(context.component_timings),
        outcome=context.outcome(),
        total_tokens=context.total_tokens(),
        error=error,
    )

    if not get_config().enable_telemetry:
        return report

    logger = get_logger()
    logger.info(f"[{context.request_id}] {report.summary()}")
    if logger.isEnabledFor(logging.DEBUG):
        for component, duration in report.component_timings.items():
            share = (
                duration / report.total_time_seconds * 100
                if report.total_time_seconds > 0
                else 0
            )
            logger.debug(f"  - {component}: {duration:.4f}s ({share:.1f}%)")

    return report
