"""
SQL Generator - turn a natural language request into validated T-SQL.

Pipeline: prompt analysis -> schema description -> one chat completion call
-> safety validation.  ``generate`` never raises; every failure resolves to
the fallback statement with ``failure`` set so callers can decide how to
report it.
"""

from datetime import datetime
from typing import Optional

from dealer_query.config import get_config
from dealer_query.llm_client import ChatCompletionClient, get_llm_client
from dealer_query.models import AnalysisResult, GeneratedSQL, GenerationFailure
from dealer_query.prompt_analyzer import (
    PromptAnalyzer,
    get_prompt_analyzer,
    normalize_prompt,
)
from dealer_query.prompts import build_sql_messages
from dealer_query.schema_docs import render_schema_description
from dealer_query.schema_registry import SchemaRegistry, build_schema_registry
from dealer_query.sql_validator import (
    FALLBACK_SQL,
    SQLSafetyValidator,
    get_sql_validator,
)
from dealer_query.telemetry import (
    RequestContext,
    get_logger,
    log_component_timing,
    log_llm_call,
)


class SQLGenerator:
    """Generate SQL from prompts using analyzer hints and the LLM."""

    def __init__(
        self,
        llm_client: Optional[ChatCompletionClient] = None,
        analyzer: Optional[PromptAnalyzer] = None,
        schema_registry: Optional[SchemaRegistry] = None,
        validator: Optional[SQLSafetyValidator] = None,
    ):
        self.logger = get_logger()
        self.config = get_config()
        self.llm_client = llm_client
        self.analyzer = analyzer or get_prompt_analyzer()
        self.schema_registry = schema_registry or build_schema_registry(self.config)
        self.validator = validator or get_sql_validator()

    def generate(
        self,
        prompt: str,
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> GeneratedSQL:
        """
        Generate validated SQL for a prompt.

        Args:
            prompt: The user's natural language request
            context: Optional request context for telemetry
            now: Reference clock for relative time ranges

        Returns:
            GeneratedSQL; ``is_fallback`` is True whenever the fallback is used
        """
        try:
            return self._generate(prompt, context, now)
        except Exception as exc:  # noqa: BLE001 - generate never raises
            self.logger.error(f"SQL generation failed: {type(exc).__name__}: {exc}")
            return self._fallback(GenerationFailure.LLM_ERROR, str(exc))

    def _generate(
        self,
        prompt: str,
        context: Optional[RequestContext],
        now: Optional[datetime],
    ) -> GeneratedSQL:
        normalized = normalize_prompt(prompt)
        analysis = self.analyzer.analyze(normalized, now=now, context=context)

        snapshot = None
        try:
            snapshot = self.schema_registry.get_snapshot()
        except Exception as exc:  # noqa: BLE001 - static schema is always available
            self.logger.warning(f"Schema lookup failed, using static schema: {exc}")
        schema_description = render_schema_description(snapshot)

        messages = build_sql_messages(normalized, schema_description, analysis)

        client = self.llm_client or get_llm_client()
        try:
            if context is not None:
                with log_component_timing(context, "llm_sql_generation"):
                    response = client.complete(messages, temperature=0.0)
            else:
                response = client.complete(messages, temperature=0.0)
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"LLM call raised: {type(exc).__name__}: {exc}")
            return self._fallback(
                GenerationFailure.LLM_ERROR, str(exc), analysis=analysis
            )

        if context is not None:
            log_llm_call(
                context,
                model=response.model_version,
                prompt_tokens=response.token_usage.get("prompt_tokens", 0),
                completion_tokens=response.token_usage.get("completion_tokens", 0),
                success=response.success,
            )

        if not response.success:
            reason = "; ".join(response.errors) or "LLM call failed"
            self.logger.warning(f"LLM call failed, using fallback: {reason}")
            return self._fallback(
                GenerationFailure.LLM_ERROR,
                reason,
                analysis=analysis,
                token_usage=response.token_usage,
            )

        raw_sql = response.content or ""
        if not raw_sql.strip():
            return self._fallback(
                GenerationFailure.EMPTY_OUTPUT,
                "LLM did not return SQL",
                analysis=analysis,
                token_usage=response.token_usage,
            )

        if context is not None:
            with log_component_timing(context, "sql_validation"):
                verdict = self.validator.inspect(raw_sql, snapshot)
        else:
            verdict = self.validator.inspect(raw_sql, snapshot)

        if not verdict.is_safe:
            failure = (
                GenerationFailure.SCHEMA_MISMATCH
                if verdict.failed_check == "schema"
                else GenerationFailure.UNSAFE
            )
            self.logger.warning(f"Generated SQL rejected ({failure.value}): {verdict.reason}")
            return self._fallback(
                failure,
                verdict.reason,
                analysis=analysis,
                raw_sql=raw_sql,
                token_usage=response.token_usage,
            )

        self.logger.info(f"Generated SQL: {verdict.cleaned_sql[:100]}...")
        return GeneratedSQL(
            sql=verdict.cleaned_sql,
            raw_sql=raw_sql,
            is_fallback=verdict.cleaned_sql == FALLBACK_SQL,
            analysis=analysis,
            token_usage=response.token_usage,
        )

    def generate_sql_text(self, prompt: str) -> str:
        """Convenience wrapper returning only the SQL string."""
        return self.generate(prompt).sql

    @staticmethod
    def _fallback(
        failure: GenerationFailure,
        reason: Optional[str],
        analysis: Optional[AnalysisResult] = None,
        raw_sql: Optional[str] = None,
        token_usage: Optional[dict] = None,
    ) -> GeneratedSQL:
        return GeneratedSQL(
            sql=FALLBACK_SQL,
            raw_sql=raw_sql,
            is_fallback=True,
            failure=failure,
            failure_reason=reason,
            analysis=analysis,
            token_usage=token_usage or {},
        )
