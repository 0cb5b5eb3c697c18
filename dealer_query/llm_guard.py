"""
Utilities for enforcing language model availability across the codebase.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dealer_query.llm_client import ChatCompletionClient, get_llm_client

OFFLINE_FALLBACK_HELP = (
    "Set LLM_API_KEY (or GROQ_API_KEY) in the environment or .env file. "
    "Use --analyze-only to inspect prompt analysis without calling the model."
)


@dataclass(frozen=True)
class LLMAvailabilityError(RuntimeError):
    """Raised when the chat completion client is missing credentials."""

    message: str

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.message


class LLMCallError(RuntimeError):
    """Raised when a chat completion call fails or returns unusable output."""


class MissingInputError(ValueError):
    """Raised when a required prompt, question, text or data field is absent."""


def ensure_llm_available(
    context: str, client: Optional[ChatCompletionClient] = None
) -> ChatCompletionClient:
    """
    Validate that the chat completion client can be used.

    Args:
        context: Human-readable description of why the check is being performed.
        client: Client to check (defaults to the global client).

    Returns:
        The usable client.

    Raises:
        LLMAvailabilityError: If the client is missing configuration.
    """
    try:
        client = client or get_llm_client()
    except Exception as exc:  # noqa: BLE001 - surface raw initialization issue
        raise LLMAvailabilityError(
            f"{context}: failed to initialize chat completion client ({exc})"
        ) from exc

    if not client.is_available():
        raise LLMAvailabilityError(
            f"{context}: chat completion client is not available. {OFFLINE_FALLBACK_HELP}"
        )
    return client
