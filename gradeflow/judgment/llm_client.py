"""
LLM client for the judgment service.

Wraps the async OpenAI SDK against any OpenAI-compatible endpoint.
Includes retry logic with exponential backoff and error classification.
"""

import asyncio
import logging
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError

from gradeflow.config import Settings, get_settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when an LLM API call fails."""

    def __init__(self, message: str, cause: Exception | None = None, retryable: bool = False):
        self.cause = cause
        self.retryable = retryable
        super().__init__(message)


class LLMClient:
    """
    Async client for the judgment model.

    Implements retry logic with exponential backoff for rate limits,
    connection failures and 5xx responses.
    """

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        """
        Initialize the LLM client.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            client: Preconfigured SDK client, mainly for tests.
        """
        self._settings = settings or get_settings()
        self._client = client or AsyncOpenAI(
            api_key=self._settings.judge_api_key,
            base_url=self._settings.judge_base_url,
        )

        self._max_retries = self._settings.judge_max_retries
        self._base_delay = 1.0  # seconds
        self._max_delay = 30.0  # seconds

    @property
    def model(self) -> str:
        return self._settings.judge_model

    async def generate(
        self,
        system_prompt: str,
        user_content: str | list[dict[str, Any]],
        temperature: float | None = None,
        max_tokens: int = 4096,
    ) -> str:
        """
        Generate a response from the LLM.

        Args:
            system_prompt: System message defining the judge's role.
            user_content: User message text, or content parts for multimodal input.
            temperature: Override temperature (uses config default if None).
            max_tokens: Maximum tokens in response.

        Returns:
            The generated text response.

        Raises:
            LLMError: If generation fails after all retries.
        """
        temp = temperature if temperature is not None else self._settings.llm_temperature

        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]

        return await self._call_with_retry(messages, temp, max_tokens)

    async def _call_with_retry(
        self,
        messages: list[dict[str, Any]],
        temperature: float,
        max_tokens: int,
    ) -> str:
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.chat.completions.create(
                    model=self._settings.judge_model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=temperature,
                    max_tokens=max_tokens,
                )

                if response.choices and response.choices[0].message.content:
                    return response.choices[0].message.content

                raise LLMError("Empty response from LLM")

            except (RateLimitError, APIConnectionError) as e:
                last_error = e
                if attempt < self._max_retries:
                    delay = self._calculate_delay(attempt)
                    logger.warning(
                        "Judgment call failed (%s), retrying in %.1fs",
                        type(e).__name__,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise LLMError(
                    f"{type(e).__name__} after {self._max_retries} retries",
                    cause=e,
                    retryable=True,
                ) from e

            except APIStatusError as e:
                # Don't retry on client errors (4xx except 429)
                if 400 <= e.status_code < 500 and e.status_code != 429:
                    raise LLMError(f"API error: {e.message}", cause=e, retryable=False) from e

                last_error = e
                if attempt < self._max_retries:
                    await asyncio.sleep(self._calculate_delay(attempt))
                    continue
                raise LLMError(
                    f"API error after {self._max_retries} retries: {e.message}",
                    cause=e,
                    retryable=True,
                ) from e

            except LLMError:
                raise

            except Exception as e:
                raise LLMError(f"Unexpected error: {e}", cause=e, retryable=False) from e

        raise LLMError(f"Failed after {self._max_retries} retries", cause=last_error)

    def _calculate_delay(self, attempt: int) -> float:
        """Exponential backoff delay for a 0-indexed attempt."""
        delay = self._base_delay * (2**attempt)
        return min(delay, self._max_delay)

    async def health_check(self) -> bool:
        """
        Check if the API is reachable.

        Returns:
            True if API is healthy, False otherwise.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self._settings.judge_model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
            return bool(response.choices)
        except Exception:
            logger.warning("Judgment health check failed", exc_info=True)
            return False
