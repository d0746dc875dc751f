"""Common ground for LLM provider adapters.

An adapter offers two calls: structured generation validated against a
Pydantic schema (script synthesis) and free-form prose (story expansion,
continuation, prompt rewriting). Both retry through llm_retry, which
backs off exponentially and gives up at once on errors another attempt
cannot fix.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Type

from pydantic import BaseModel
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_exponential

from dramaforge.config import ConfigurationError

logger = logging.getLogger(__name__)

# Provider status codes that fail the same way on every attempt
_NON_RETRYABLE_STATUS = {400, 401, 403, 404}


def is_retryable(exc: BaseException) -> bool:
    """False for missing configuration and client-side provider rejections.

    ollama.ResponseError carries ``status_code``; google-genai APIError
    carries ``code``. Malformed or schema-violating output is retried.
    """
    if isinstance(exc, ConfigurationError):
        return False
    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    return status not in _NON_RETRYABLE_STATUS


def llm_retry(max_retries: int, label: str):
    """tenacity decorator used around every provider call."""

    def _log_attempt(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "%s: attempt %d/%d failed (%s: %s), retrying",
            label, state.attempt_number, max_retries, type(exc).__name__, exc,
        )

    return retry(
        stop=stop_after_attempt(max_retries),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_attempt,
        reraise=True,
    )


class LLMAdapter(ABC):
    """Interface every text provider implements."""

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        """Generate output that validates against schema.

        Args:
            prompt: The user prompt (usually the story text).
            schema: Pydantic model the response must satisfy.
            temperature: Sampling temperature.
            system_prompt: Instructions sent as the system role.
            max_retries: Attempts before the last error is raised.

        Returns:
            An instance of schema.
        """

    @abstractmethod
    async def generate_prose(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        max_retries: int = 3,
    ) -> str:
        """Generate free-form text; an empty string when the model wrote nothing."""


def strip_code_fence(raw: str) -> str:
    """Remove a ```json fence some models wrap around JSON output."""
    stripped = raw.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
        if stripped.endswith("```"):
            stripped = stripped[:-3].rstrip()
    return stripped
