# core/generation_client.py
"""Rate-limited, retrying wrapper that turns model output into structured data."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx
import structlog

from config import settings
from core.errors import GenerationError, MalformedResponseError, RateLimitExceededError
from core.llm_interface import llm_service
from core.rate_limiter import MinIntervalRateLimiter

logger = structlog.get_logger(__name__)

TextGenerator = Callable[..., Awaitable[str]]


def is_rate_limit_error(exc: BaseException, markers: Sequence[str]) -> bool:
    """Return True when ``exc`` signals throttling by the remote endpoint."""
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        if exc.response.status_code == 429:
            return True
    message = str(exc).lower()
    return any(marker.lower() in message for marker in markers)


class GenerationClient:
    """Serialize, retry and parse calls to the generation endpoint.

    All callers share one instance, so the rate limiter gates LLM-bound
    throughput across every concurrent pipeline run.
    """

    def __init__(
        self,
        text_generator: TextGenerator,
        rate_limiter: MinIntervalRateLimiter | None = None,
        base_delay: float = settings.LLM_RETRY_BASE_DELAY_SECONDS,
        max_retries: int = settings.LLM_MAX_RETRIES,
        rate_limit_markers: Sequence[str] | None = None,
        cleaner: Callable[[str], str] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self._text_generator = text_generator
        self.rate_limiter = rate_limiter or MinIntervalRateLimiter(
            settings.LLM_MIN_CALL_INTERVAL_SECONDS
        )
        self.base_delay = base_delay
        self.max_retries = max_retries
        self.rate_limit_markers = tuple(
            rate_limit_markers
            if rate_limit_markers is not None
            else settings.LLM_RATE_LIMIT_MARKERS
        )
        self._clean = cleaner or llm_service.clean_model_response
        self._sleep = sleep
        self.stats = {
            "calls": 0,
            "retries": 0,
            "rate_limit_exhausted": 0,
            "transport_errors": 0,
            "malformed_responses": 0,
        }

    async def _call_with_retries(self, prompt: str, **generation_kwargs: Any) -> str:
        last_error: BaseException | None = None
        for attempt in range(self.max_retries + 1):
            await self.rate_limiter.acquire()
            self.stats["calls"] += 1
            try:
                return await self._text_generator(prompt, **generation_kwargs)
            except Exception as exc:
                if not is_rate_limit_error(exc, self.rate_limit_markers):
                    self.stats["transport_errors"] += 1
                    logger.error("Generation call failed", error=str(exc))
                    raise GenerationError(f"Generation call failed: {exc}") from exc
                last_error = exc
                if attempt >= self.max_retries:
                    break
                delay = self.base_delay * (2**attempt)
                self.stats["retries"] += 1
                logger.warning(
                    f"Rate limited, retrying ({attempt + 1}/{self.max_retries}) in {delay:.2f}s"
                )
                await self._sleep(delay)

        self.stats["rate_limit_exhausted"] += 1
        logger.error(
            "Rate limit exceeded after max retries", max_retries=self.max_retries
        )
        raise RateLimitExceededError(
            attempts=self.max_retries + 1, last_error=last_error
        ) from last_error

    async def generate_text(self, prompt: str, **generation_kwargs: Any) -> str:
        """Rate-limited call that returns the raw response text."""
        return await self._call_with_retries(prompt, **generation_kwargs)

    async def generate(self, prompt: str, **generation_kwargs: Any) -> Any:
        """Rate-limited call whose response is parsed as JSON.

        Raises:
            GenerationError: The endpoint was unreachable or refused the call.
            RateLimitExceededError: Throttled on every attempt.
            MalformedResponseError: The response text was not valid JSON.
        """
        raw_text = await self._call_with_retries(prompt, **generation_kwargs)
        clean_text = self._clean(raw_text)
        if not clean_text:
            self.stats["malformed_responses"] += 1
            raise MalformedResponseError(
                "Failed to parse AI response: empty response", raw_text=raw_text
            )
        try:
            return json.loads(clean_text)
        except json.JSONDecodeError as exc:
            self.stats["malformed_responses"] += 1
            logger.error("JSON parse error", error=str(exc), snippet=clean_text[:200])
            raise MalformedResponseError(
                f"Failed to parse AI response: {exc}", raw_text=raw_text
            ) from exc

    def get_metrics(self) -> dict[str, Any]:
        return {
            **self.stats,
            "rate_limiter_wait_seconds": round(self.rate_limiter.total_wait_seconds, 3),
        }


generation_client = GenerationClient(llm_service.async_generate_text)
