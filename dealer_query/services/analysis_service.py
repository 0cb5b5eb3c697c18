"""Question answering and data/text analysis backed by the chat completion client."""

from __future__ import annotations

import io
import json
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from pydantic import ValidationError

from dealer_query.config import Config, get_config
from dealer_query.llm_client import ChatCompletionClient
from dealer_query.llm_guard import LLMCallError, MissingInputError, ensure_llm_available
from dealer_query.models import (
    AnalyzeRequest,
    AnalyzeTextRequest,
    AskRequest,
    ChatMessage,
    LLMResponse,
)
from dealer_query.prompts import (
    ASK_SYSTEM_PROMPT,
    DATA_ANALYSIS_SYSTEM_PROMPT,
    TEXT_ANALYSIS_TYPES,
    get_data_analysis_user_message,
    get_text_analysis_messages,
)
from dealer_query.telemetry import get_logger

DATA_TYPES = ("json", "csv", "text")
BATCH_TYPES = ("ask", "analyze", "analyze-text")


class AnalysisService:
    """Serve /ask, /analyze, /analyze-text and /analyze-batch."""

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        llm_client: Optional[ChatCompletionClient] = None,
    ) -> None:
        self.logger = get_logger()
        self.config = config or get_config()
        self.llm_client = llm_client

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #
    def ask(
        self,
        question: Optional[str],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        if not question or not question.strip():
            raise MissingInputError("question required")

        response = self._complete(
            [
                ChatMessage(role="system", content=ASK_SYSTEM_PROMPT),
                ChatMessage(role="user", content=question.strip()),
            ],
            model=model,
            temperature=temperature,
            purpose="ask",
        )
        return {
            "answer": response.content,
            "model": response.model_version,
            "usage": response.token_usage,
        }

    def analyze(
        self,
        question: Optional[str],
        data: Any,
        data_type: Optional[str] = "json",
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_rows_to_show: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Analyze tabular or free-text data with the LLM.

        Args:
            question: What to find out about the data
            data: JSON rows (list/dict/string), CSV text or plain text
            data_type: One of json, csv, text
            max_rows_to_show: Rows included in the prompt (default from config)

        Returns:
            Dict with analysis, rowsAnalyzed, totalRows, model and usage
        """
        if not question or not question.strip():
            raise MissingInputError("question required")
        if data is None or (isinstance(data, (str, list, dict)) and not data):
            raise MissingInputError("data required")

        data_type = (data_type or "json").lower()
        if data_type not in DATA_TYPES:
            raise ValueError(
                f"Unsupported dataType '{data_type}'. Use one of: {', '.join(DATA_TYPES)}"
            )

        limit = max_rows_to_show or self.config.api_default_rows_to_show
        rendered, rows_shown, total_rows = render_data(data, data_type, limit)

        response = self._complete(
            [
                ChatMessage(role="system", content=DATA_ANALYSIS_SYSTEM_PROMPT),
                ChatMessage(
                    role="user",
                    content=get_data_analysis_user_message(
                        question.strip(), rendered, data_type, rows_shown, total_rows
                    ),
                ),
            ],
            model=model,
            temperature=temperature,
            purpose="analyze",
        )
        return {
            "analysis": response.content,
            "rowsAnalyzed": rows_shown,
            "totalRows": total_rows,
            "model": response.model_version,
            "usage": response.token_usage,
        }

    def analyze_text(
        self,
        text: Optional[str],
        analysis_type: Optional[str] = "general",
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        if not text or not text.strip():
            raise MissingInputError("text required")

        analysis_type = (analysis_type or "general").lower()
        if analysis_type not in TEXT_ANALYSIS_TYPES:
            raise ValueError(
                f"Unsupported analysisType '{analysis_type}'. "
                f"Use one of: {', '.join(TEXT_ANALYSIS_TYPES)}"
            )

        response = self._complete(
            get_text_analysis_messages(text.strip(), analysis_type),
            model=model,
            temperature=temperature,
            purpose="analyze-text",
        )
        return {
            "analysis": response.content,
            "analysisType": analysis_type,
            "model": response.model_version,
            "usage": response.token_usage,
        }

    def analyze_batch(self, requests: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
        """Run up to ``api_max_batch`` sub-requests; failures are reported per item."""
        if not requests:
            raise MissingInputError("requests required")
        if len(requests) > self.config.api_max_batch:
            raise ValueError(
                f"Too many requests in batch (max {self.config.api_max_batch})"
            )

        results = []
        for index, item in enumerate(requests):
            try:
                result = self._run_batch_item(item)
                results.append({"index": index, "success": True, "result": result})
            except Exception as exc:  # noqa: BLE001 - isolate batch items
                self.logger.warning(f"Batch item {index} failed: {exc}")
                results.append({"index": index, "success": False, "error": str(exc)})

        succeeded = sum(1 for r in results if r["success"])
        return {
            "results": results,
            "total": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
        }

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _run_batch_item(self, item: Any) -> Dict[str, Any]:
        if not isinstance(item, dict):
            raise ValueError("Batch item must be an object")
        item_type = item.get("type")
        if item_type not in BATCH_TYPES:
            raise ValueError(
                f"Unsupported batch type '{item_type}'. Use one of: {', '.join(BATCH_TYPES)}"
            )

        try:
            if item_type == "ask":
                request = AskRequest.model_validate(item)
                return self.ask(request.question, request.model, request.temperature)
            if item_type == "analyze":
                request = AnalyzeRequest.model_validate(item)
                return self.analyze(
                    request.question,
                    request.data,
                    request.data_type,
                    request.model,
                    request.temperature,
                    request.max_rows_to_show,
                )
            request = AnalyzeTextRequest.model_validate(item)
            return self.analyze_text(
                request.text, request.analysis_type, request.model, request.temperature
            )
        except ValidationError as exc:
            raise ValueError(f"Invalid {item_type} request: {exc.errors()[0]['msg']}") from exc

    def _complete(
        self,
        messages: List[ChatMessage],
        model: Optional[str],
        temperature: Optional[float],
        purpose: str,
    ) -> LLMResponse:
        client = ensure_llm_available(purpose, self.llm_client)
        response = client.complete(messages, model=model, temperature=temperature)
        if not response.success:
            raise LLMCallError("; ".join(response.errors) or "LLM call failed")
        self.logger.info(
            f"{purpose} completed with {response.model_version} "
            f"in {response.processing_time_ms}ms"
        )
        return response


def render_data(data: Any, data_type: str, max_rows: int) -> Tuple[str, int, int]:
    """
    Render input data for the prompt, truncated to ``max_rows``.

    Returns:
        (rendered text, rows shown, total rows)
    """
    if data_type == "text":
        lines = [line for line in str(data).splitlines() if line.strip()]
        shown = lines[:max_rows]
        return "\n".join(shown), len(shown), len(lines)

    if data_type == "csv":
        if not isinstance(data, str):
            raise ValueError("CSV data must be a string")
        frame = pd.read_csv(io.StringIO(data))
    else:
        records = json.loads(data) if isinstance(data, str) else data
        if isinstance(records, dict):
            records = [records]
        if not isinstance(records, list):
            raise ValueError("JSON data must be an object or a list of objects")
        frame = pd.DataFrame(records)

    total = len(frame)
    shown = frame.head(max_rows)
    return shown.to_csv(index=False).strip(), len(shown), total
