"""
Chat completion client for an OpenAI-compatible endpoint (Groq by default).

One blocking call per request with a fixed timeout; nothing is retried.
Failures are logged and returned as ``LLMResponse(success=False)``.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from openai import OpenAI

from dealer_query.models import ChatMessage, LLMConfig, LLMResponse

logger = logging.getLogger(__name__)


class ChatCompletionClient:
    """
    Thin wrapper around ``openai.OpenAI`` chat completions.

    Features:
    - Configurable base URL (Groq, OpenAI or any compatible gateway)
    - Per-call model and temperature overrides
    - Token usage reporting
    """

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig()
        self.client: Optional[OpenAI] = None
        self._initialize_client()

    def _initialize_client(self) -> bool:
        if not self.config.api_key:
            logger.warning("LLM API key not configured (LLM_API_KEY / GROQ_API_KEY)")
            return False
        try:
            self.client = OpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                max_retries=0,
            )
            logger.info(
                f"Chat completion client initialized. "
                f"Model: {self.config.model}, Base URL: {self.config.base_url}"
            )
            return True
        except Exception as e:
            logger.error(f"Failed to initialize chat completion client: {e}")
            return False

    def is_available(self) -> bool:
        return self.client is not None

    def complete(
        self,
        messages: List[ChatMessage],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: System/user messages in order
            model: Override for the configured model
            temperature: Override for the configured temperature
            max_tokens: Override for the configured completion limit

        Returns:
            LLMResponse with ``content`` set to ``choices[0].message.content``
        """
        start_time = time.time()
        model_name = model or self.config.model

        if not self.is_available():
            return LLMResponse(
                success=False,
                model_version=model_name,
                errors=["LLM client not configured - set LLM_API_KEY or GROQ_API_KEY"],
            )

        try:
            response = self.client.chat.completions.create(
                model=model_name,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=(
                    self.config.temperature if temperature is None else temperature
                ),
                max_tokens=max_tokens or self.config.max_tokens,
            )
        except Exception as e:
            logger.error(f"Chat completion failed: {type(e).__name__}: {e}")
            return LLMResponse(
                success=False,
                model_version=model_name,
                processing_time_ms=int((time.time() - start_time) * 1000),
                errors=[str(e)],
            )

        processing_time_ms = int((time.time() - start_time) * 1000)
        content = _first_choice_content(response)
        token_usage = _token_usage(response)

        if not content:
            logger.warning(f"Chat completion returned no content (model={model_name})")

        return LLMResponse(
            success=True,
            content=(content or "").strip(),
            model_version=getattr(response, "model", None) or model_name,
            processing_time_ms=processing_time_ms,
            token_usage=token_usage,
        )


def _first_choice_content(response: Any) -> Optional[str]:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return None
    message = getattr(choices[0], "message", None)
    return getattr(message, "content", None)


def _token_usage(response: Any) -> Dict[str, int]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return {}
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
        "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
        "total_tokens": getattr(usage, "total_tokens", 0) or 0,
    }


# Global client instance
_client = None


def get_llm_client() -> ChatCompletionClient:
    """Get the global chat completion client."""
    global _client
    if _client is None:
        _client = ChatCompletionClient()
    return _client
