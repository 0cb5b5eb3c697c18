"""
Session-level logging utilities for capturing prompt/SQL/result records.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from dealer_query.config import get_config
from dealer_query.models import AnalysisResult, GeneratedSQL
from dealer_query.telemetry import RequestContext

_LOCK = threading.Lock()


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _serialize_analysis(analysis: Optional[AnalysisResult]) -> Optional[dict]:
    if not analysis:
        return None
    return analysis.model_dump(mode="json")


def _serialize_generated_sql(
    generated_sql: Optional[GeneratedSQL],
) -> Optional[dict]:
    if not generated_sql:
        return None
    return {
        "sql": generated_sql.sql,
        "raw_sql": generated_sql.raw_sql,
        "is_fallback": generated_sql.is_fallback,
        "failure": generated_sql.failure.value if generated_sql.failure else None,
        "failure_reason": generated_sql.failure_reason,
        "token_usage": generated_sql.token_usage,
    }


def log_interaction(
    *,
    channel: str,
    prompt: str,
    context: RequestContext,
    generated_sql: Optional[GeneratedSQL],
    result: Dict[str, Any],
    log_file: Optional[str] = None,
) -> None:
    """
    Append a structured log entry for one prompt.

    Args:
        channel: Source of the request ("cli", "api", etc.)
        prompt: Natural language prompt from the user
        context: RequestContext carrying timings and outcome
        generated_sql: Generated SQL metadata (if available)
        result: Outcome summary (row_count, visualization, error, ...)
        log_file: Override for SESSION_LOG_FILE
    """
    log_file = log_file or get_config().session_log_file
    if not log_file:
        return

    record = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "channel": channel,
        "prompt": prompt,
        "request_id": context.request_id,
        "result": result,
        "analysis": _serialize_analysis(
            generated_sql.analysis if generated_sql else None
        ),
        "generated_sql": _serialize_generated_sql(generated_sql),
        "component_timings": context.component_timings,
        "telemetry": context.outcome(),
    }

    path = Path(log_file)
    _ensure_parent(path)

    json_line = json.dumps(record, default=str)

    with _LOCK:
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json_line + "\n")
