"""
OpenAI client for feedback generation.

Sends the rendered feedback prompt to the chat completions API in JSON mode
and returns the raw JSON string. Rate-limit, server-side, connection and
timeout errors are retried with exponential backoff; anything else fails
immediately. All failures surface as ``UpstreamError``.
"""
import asyncio
import logging
from typing import Any, Optional

import openai
from openai import OpenAI
from langsmith import traceable

from ..config import Settings
from ..utils.retry import RetryPolicy
from .errors import UpstreamError
from .prompt_builder import SYSTEM_PROMPT

logger = logging.getLogger(__name__)


def is_transient_provider_error(error: BaseException) -> bool:
    """Rate limits, 5xx responses, connection problems and timeouts are worth retrying."""
    if isinstance(error, (asyncio.TimeoutError, openai.RateLimitError, openai.APIConnectionError)):
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code == 429 or 500 <= error.status_code < 600
    return False


class GenerationClient:
    """
    Thin wrapper around the OpenAI chat completions API.

    Lifecycle: construct, ``open()`` before first use, ``close()`` on
    shutdown. A pre-built client can be injected (tests pass a fake).
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        temperature: float = 0.5,
        max_tokens: int = 700,
        timeout_seconds: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy(is_retryable=is_transient_provider_error)
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationClient":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.feedback_temperature,
            max_tokens=settings.feedback_max_tokens,
            timeout_seconds=settings.feedback_llm_timeout_seconds,
            retry_policy=RetryPolicy(
                max_retries=settings.feedback_max_retries,
                base_delay_seconds=settings.feedback_retry_base_delay_seconds,
                is_retryable=is_transient_provider_error,
            ),
        )

    def open(self) -> None:
        """Create the OpenAI client unless one was injected."""
        if self._client is None:
            # Retries are handled by our own policy, not the SDK's
            self._client = OpenAI(api_key=self.api_key, max_retries=0)
            logger.info(f"GenerationClient opened with model: {self.model}")

    def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()
        self._client = None

    async def _create_completion(self, prompt: str) -> Any:
        return await asyncio.wait_for(
            asyncio.to_thread(
                self._client.chat.completions.create,
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            ),
            timeout=self.timeout_seconds,
        )

    @traceable(name="generate_feedback")
    async def generate(self, prompt: str, sleep=asyncio.sleep) -> str:
        """
        Send the prompt and return the raw response text.

        Args:
            prompt: The rendered feedback prompt
            sleep: Backoff sleep function (injectable for tests)

        Returns:
            The message content, expected to be a JSON-encoded object

        Raises:
            UpstreamError: retries exhausted, non-retryable provider error,
                or a response without message content
        """
        if self._client is None:
            raise RuntimeError("GenerationClient is not open")

        logger.info(f"Requesting feedback from {self.model} (prompt length: {len(prompt)} chars)")

        try:
            response = await self.retry_policy.run(
                lambda: self._create_completion(prompt),
                sleep=sleep,
                description="OpenAI feedback request",
            )
        except asyncio.TimeoutError:
            raise UpstreamError("Failed to generate feedback: the AI provider timed out.")
        except openai.OpenAIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise UpstreamError(f"Failed to generate feedback from OpenAI: {type(e).__name__}")

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            content = None

        if not isinstance(content, str):
            logger.error("Invalid or unexpected response structure from OpenAI API")
            raise UpstreamError("Failed to generate feedback: invalid response structure from OpenAI.")

        logger.info(f"OpenAI returned {len(content)} chars of feedback")
        return content
