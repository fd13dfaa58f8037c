"""
Quota-guarded AI client.

Checks the subject's window before calling the provider and records the
actual cost afterwards.
"""

import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from openai import APIError, APITimeoutError, OpenAI

from ..config.loader import ConfigurationError
from ..core.quota import QuotaLedger, QuotaPolicy

logger = structlog.get_logger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "openai/gpt-oss-20b"
DEFAULT_TIMEOUT_SECONDS = 90.0
MAX_RETRIES = 2
INITIAL_RETRY_DELAY_SECONDS = 1.0

FALLBACK_MESSAGE = "AI analysis is temporarily unavailable."


class AIProviderError(Exception):
    """Raised when the provider cannot produce a completion."""


@dataclass(frozen=True)
class Completion:
    text: str
    tokens_used: Optional[int] = None


class GuardedAIClient:
    """OpenAI-compatible chat client metered against a quota policy.

    Timeouts fail fast with no retry. Provider and connection errors are
    retried with exponential backoff within a fixed attempt budget.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        policy: QuotaPolicy,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: str = OPENROUTER_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
        initial_retry_delay: float = INITIAL_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize guarded AI client.

        Args:
            ledger: Quota ledger used for check and record
            policy: Quota policy of the metered operation
            api_key: Provider key (defaults to OPENROUTER_API_KEY)
            model: Model name sent to the provider
            base_url: OpenAI-compatible API root
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt
            initial_retry_delay: Delay before the first retry, doubled after

        Raises:
            ConfigurationError: If no API key is available
            ValueError: If model is empty or max_retries is negative
        """
        api_key = api_key or os.environ.get("OPENROUTER_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENROUTER_API_KEY not configured")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self.ledger = ledger
        self.policy = policy
        self.model = model
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self._sleep = sleep
        # The SDK's own retries are disabled; timeouts must not be retried.
        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
            default_headers={
                "HTTP-Referer": "https://spiretrack.app",
                "X-Title": "SpireTrack",
            },
        )

    def generate_text(
        self,
        subject_id: str,
        prompt: str,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        response_format: str = "text"
    ) -> str:
        """Generate text for a subject, enforcing and recording quota.

        Args:
            subject_id: Subject being metered
            prompt: User prompt
            temperature: Sampling temperature
            max_tokens: Completion token cap (optional)
            response_format: "text" or "json"

        Returns:
            Generated text, or the fallback message for text requests
            that failed after retries

        Raises:
            QuotaExceededError: If the subject's window is exhausted
            StorageError: If the ledger cannot be read or written
            AIProviderError: If a json request fails
        """
        if not prompt:
            raise ValueError("prompt is required and cannot be empty")
        if response_format not in ("text", "json"):
            raise ValueError("response_format must be 'text' or 'json'")

        self.ledger.check(subject_id, self.policy)

        started = time.monotonic()
        try:
            completion = self._complete_with_retry(prompt, temperature, max_tokens, response_format)
        except AIProviderError as e:
            logger.error(
                "ai_request_failed",
                latency_ms=int((time.monotonic() - started) * 1000),
                error=str(e),
            )
            if response_format == "json":
                raise
            completion = Completion(text=FALLBACK_MESSAGE)
        else:
            logger.info(
                "ai_request_complete",
                model=self.model,
                latency_ms=int((time.monotonic() - started) * 1000),
                tokens=completion.tokens_used,
            )

        if self.policy.unit_cost is not None:
            units = self.policy.unit_cost
        else:
            units = completion.tokens_used or 0
        self.ledger.record_usage(subject_id, self.policy.operation_name, units)
        return completion.text

    def _complete_with_retry(
        self,
        prompt: str,
        temperature: float,
        max_tokens: Optional[int],
        response_format: str
    ) -> Completion:
        request = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
        }
        if max_tokens:
            request["max_tokens"] = max_tokens
        if response_format == "json":
            request["response_format"] = {"type": "json_object"}

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                response = self.client.chat.completions.create(**request)
                content = response.choices[0].message.content if response.choices else None
                if not content:
                    raise AIProviderError("Invalid response structure from provider")
                usage = getattr(response, "usage", None)
                return Completion(
                    text=content,
                    tokens_used=usage.total_tokens if usage else None
                )
            except APITimeoutError as e:
                raise AIProviderError("AI request timed out") from e
            except (APIError, AIProviderError) as e:
                last_error = e

            if attempt < self.max_retries:
                delay = self.initial_retry_delay * (2 ** attempt)
                logger.info("ai_retry", attempt=attempt + 1, max_retries=self.max_retries, delay=delay)
                self._sleep(delay)

        raise AIProviderError(f"AI generation failed after retries: {last_error}") from last_error
