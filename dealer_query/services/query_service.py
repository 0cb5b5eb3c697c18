"""Reusable service layer that runs the prompt -> SQL -> rows pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from dealer_query.config import Config, get_config
from dealer_query.llm_guard import MissingInputError
from dealer_query.models import GeneratedSQL, GenerationFailure, QueryResult
from dealer_query.prompt_analyzer import normalize_prompt
from dealer_query.query_engine import QueryEngine
from dealer_query.schema_registry import build_schema_registry
from dealer_query.session_logger import log_interaction
from dealer_query.sql_generator import SQLGenerator
from dealer_query.telemetry import (
    RequestContext,
    create_request_context,
    generate_telemetry_report,
    get_logger,
    log_component_timing,
    log_error,
    setup_logging,
)
from dealer_query.visualization import choose_visualization

POLICY_ERROR = "Generated SQL is not allowed by policy."
EMPTY_SQL_ERROR = "LLM did not return SQL"
MISSING_PROMPT_ERROR = "prompt required"


@dataclass
class QueryServiceResult:
    """Result returned by the query service."""

    prompt: str
    context: Optional[RequestContext]
    generated_sql: Optional[GeneratedSQL]
    query_result: Optional[QueryResult]
    success: bool
    rows: List[Dict[str, Any]] = field(default_factory=list)
    visualization: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    status_code: int = 200

    @property
    def sql(self) -> Optional[str]:
        return self.generated_sql.sql if self.generated_sql else None

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the HTTP layer."""
        if self.success:
            return {
                "sql": self.sql,
                "rows": self.rows,
                "visualization": self.visualization,
            }
        payload: Dict[str, Any] = {"error": self.error}
        if self.error_kind == "policy" and self.generated_sql is not None:
            payload["sql"] = self.generated_sql.raw_sql
        return payload


class QueryService:
    """High-level orchestrator for processing natural language prompts."""

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        sql_generator: Optional[SQLGenerator] = None,
        query_engine: Optional[QueryEngine] = None,
    ) -> None:
        setup_logging()
        self.logger = get_logger()

        self.config = config or get_config()
        self.query_engine = query_engine or QueryEngine(self.config)
        if sql_generator is None:
            sql_generator = SQLGenerator(
                schema_registry=build_schema_registry(
                    self.config, refresh_fn=self.query_engine.fetch_schema
                )
            )
        self.sql_generator = sql_generator

        self.logger.info("QueryService initialised successfully")

    def run(
        self,
        prompt: Optional[str],
        *,
        channel: str = "api",
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> QueryServiceResult:
        """Process a natural language prompt end-to-end."""

        normalized = normalize_prompt(prompt)
        if not normalized:
            error = MissingInputError(MISSING_PROMPT_ERROR)
            self.logger.warning(f"Rejected request: {error}")
            return QueryServiceResult(
                prompt="",
                context=context,
                generated_sql=None,
                query_result=None,
                success=False,
                error=str(error),
                error_kind="missing_input",
                status_code=400,
            )

        context = context or create_request_context(normalized)
        generated_sql = self.sql_generator.generate(normalized, context, now=now)
        context.record_generation(generated_sql)

        failure = self._failure_for(generated_sql)
        if failure is not None:
            error, kind, status = failure
            generate_telemetry_report(context, success=False, error=error)
            return self._finish(
                QueryServiceResult(
                    prompt=normalized,
                    context=context,
                    generated_sql=generated_sql,
                    query_result=None,
                    success=False,
                    error=error,
                    error_kind=kind,
                    status_code=status,
                ),
                channel,
            )

        if generated_sql.failure == GenerationFailure.SCHEMA_MISMATCH:
            self.logger.info(
                f"[{context.request_id}] Schema mismatch, executing fallback: "
                f"{generated_sql.failure_reason}"
            )

        try:
            with log_component_timing(context, "query_execution"):
                query_result = self.query_engine.execute(generated_sql.sql)
        except Exception as error:
            log_error(context, error, component="query_execution")
            generate_telemetry_report(context, success=False, error=str(error))
            return self._finish(
                QueryServiceResult(
                    prompt=normalized,
                    context=context,
                    generated_sql=generated_sql,
                    query_result=None,
                    success=False,
                    error=str(error),
                    error_kind="database",
                    status_code=500,
                ),
                channel,
            )

        rows = query_result.records()
        with log_component_timing(context, "visualization"):
            visualization = choose_visualization(normalized, rows)

        context.record_result(query_result.row_count, visualization)
        generate_telemetry_report(context, success=True)

        return self._finish(
            QueryServiceResult(
                prompt=normalized,
                context=context,
                generated_sql=generated_sql,
                query_result=query_result,
                success=True,
                rows=rows,
                visualization=visualization,
            ),
            channel,
        )

    @staticmethod
    def _failure_for(generated_sql: GeneratedSQL):
        """Map generation failures to (error, kind, status); None means execute."""
        failure = generated_sql.failure
        if failure == GenerationFailure.LLM_ERROR:
            return generated_sql.failure_reason or "LLM call failed", "llm", 500
        if failure == GenerationFailure.EMPTY_OUTPUT:
            return EMPTY_SQL_ERROR, "llm", 500
        if failure == GenerationFailure.UNSAFE:
            return POLICY_ERROR, "policy", 400
        return None

    def _finish(self, result: QueryServiceResult, channel: str) -> QueryServiceResult:
        try:
            log_interaction(
                channel=channel,
                prompt=result.prompt,
                context=result.context,
                generated_sql=result.generated_sql,
                result={
                    "success": result.success,
                    "row_count": len(result.rows),
                    "visualization": result.visualization,
                    "error": result.error,
                    "error_kind": result.error_kind,
                },
            )
        except OSError as exc:
            self.logger.warning(f"Failed to write session log: {exc}")
        return result
