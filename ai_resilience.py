"""AI Resilience Layer — error taxonomy, bounded retry, completion client.

Every outbound LLM call goes through CompletionClient.complete(). Provider
failures are translated into the LLMError hierarchy below so call sites can
decide what to retry without knowing about the OpenAI SDK. with_retry() is the
single retry combinator; each gateway operation picks its own policy.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

import openai
from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Error taxonomy ──────────────────────────────────────────

class LLMError(Exception):
    """Base class for every failure surfaced by the LLM gateway."""


class ConfigurationError(LLMError):
    """The provider credential is missing. Nothing was sent."""


class TransientProviderError(LLMError):
    """Rate limiting (429) or a provider-side 5xx."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RetriesExhaustedError(LLMError):
    """A retried call kept failing transiently until attempts ran out."""

    def __init__(self, message: str, attempts: int, last_error: BaseException | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error

    @property
    def status_code(self) -> int | None:
        return getattr(self.last_error, "status_code", None)


class MalformedResponseError(LLMError):
    """Model output could not be parsed into the expected shape."""


class EmptyResultError(LLMError):
    """Output parsed, but nothing usable survived validation."""


class UpstreamError(LLMError):
    """Any other provider failure: non-429 4xx, network errors, timeouts."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def is_transient(exc: BaseException) -> bool:
    """Retry predicate for provider rate limits and server errors."""
    return isinstance(exc, TransientProviderError)


# ── Retry combinator ────────────────────────────────────────

def linear_backoff(base_seconds: float):
    """Wait base × attempts-used-so-far: base, 2·base, 3·base, ..."""
    return wait_incrementing(start=base_seconds, increment=base_seconds)


def with_retry(
    func: Callable[[], T],
    *,
    max_attempts: int,
    backoff: Any,
    is_retryable: Callable[[BaseException], bool],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call func until it succeeds, fails permanently, or attempts run out.

    Non-retryable exceptions propagate unchanged on first sight. When
    max_attempts retryable failures happen in a row, RetriesExhaustedError is
    raised, chained to the last failure.
    """
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=backoff,
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=False,
    )
    try:
        return retrying(func)
    except RetryError as exc:
        last = exc.last_attempt.exception()
        attempts = exc.last_attempt.attempt_number
        logger.error("All %d attempts failed: %s", attempts, last)
        raise RetriesExhaustedError(
            f"Provider still failing after {attempts} attempts: {last}",
            attempts=attempts,
            last_error=last,
        ) from last


# ── Cost Tracker ────────────────────────────────────────────

# Approximate pricing per 1M tokens (input + output averaged)
_MODEL_PRICING: dict[str, float] = {
    "gpt-4": 45.0,
    "gpt-4-turbo": 20.0,
    "gpt-4o": 2.5,
    "gpt-4o-mini": 0.15,
}


class CostTracker:
    """Estimates tokens from character count and applies model-specific pricing."""

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough estimate: 1 token ~ 4 characters."""
        return max(1, len(text) // 4)

    @staticmethod
    def track_call(
        model: str,
        input_text: str,
        output_text: str,
        latency_ms: int,
    ) -> dict:
        input_tokens = CostTracker.estimate_tokens(input_text)
        output_tokens = CostTracker.estimate_tokens(output_text)
        total_tokens = input_tokens + output_tokens

        price_per_million = _MODEL_PRICING.get(model, 1.0)
        cost_usd = (total_tokens / 1_000_000) * price_per_million

        return {
            "input_tokens_est": input_tokens,
            "output_tokens_est": output_tokens,
            "total_tokens_est": total_tokens,
            "cost_estimate_usd": round(cost_usd, 6),
            "model": model,
            "latency_ms": latency_ms,
        }


# ── Completion client ───────────────────────────────────────

class CompletionClient:
    """One system + user message in, completion text out.

    Built once by the application factory and handed to the gateway. The
    OpenAI SDK client is created lazily so a missing key only fails when a
    call is attempted.
    """

    def __init__(self, api_key: str, model: str = "gpt-4", openai_client: Any = None):
        self.api_key = api_key or ""
        self.model = model
        self._client = openai_client

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError("OpenAI API key is not configured")

    def _get_client(self):
        if self._client is None:
            # The gateway owns retry policy; the SDK must not retry on its own.
            self._client = openai.OpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    def complete(
        self,
        system: str,
        user: str,
        temperature: float,
        max_tokens: int | None = None,
        json_response: bool = False,
    ) -> str:
        self.ensure_configured()

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if json_response:
            kwargs["response_format"] = {"type": "json_object"}

        start = time.time()
        try:
            response = self._get_client().chat.completions.create(**kwargs)
        except openai.APIStatusError as exc:
            status = exc.status_code
            if status == 429 or status >= 500:
                logger.warning("OpenAI transient failure (status=%s): %s", status, exc)
                raise TransientProviderError(
                    f"OpenAI request failed with status {status}", status_code=status,
                ) from exc
            logger.error("OpenAI request rejected (status=%s): %s", status, exc)
            raise UpstreamError(f"OpenAI request failed with status {status}", status_code=status) from exc
        except openai.APIError as exc:
            logger.error("OpenAI request failed: %s", exc)
            raise UpstreamError(f"OpenAI request failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise MalformedResponseError("No response received from OpenAI")

        latency_ms = int((time.time() - start) * 1000)
        metrics = CostTracker.track_call(self.model, system + user, content, latency_ms)
        logger.info(
            "llm call model=%s tokens_est=%d cost_est=%.6f latency=%dms",
            metrics["model"], metrics["total_tokens_est"],
            metrics["cost_estimate_usd"], metrics["latency_ms"],
        )
        return content
