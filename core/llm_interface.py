# core/llm_interface.py
"""
Handles all direct interactions with the text-generation endpoint
(OpenAI-compatible chat completions) and the embedding model (via Ollama).
Includes response cleaning and embedding generation with caching.
"""

# Standard library imports
import asyncio
import json
import random
import re

# Type hints
from typing import Any

import httpx

# Third-party imports
import numpy as np
import structlog
from async_lru import alru_cache

# Local imports
from config import settings

logger = structlog.get_logger(__name__)


# Token parameter handling
def _completion_token_param(api_base: str) -> str:
    """Return the token count parameter expected by the provider."""
    if "api.openai.com" in api_base or "api.anthropic.com" in api_base:
        return "max_completion_tokens"
    return "max_tokens"


class LLMService:
    """Utility class for interacting with LLM and embedding endpoints."""

    def __init__(self, timeout: float = settings.HTTPX_TIMEOUT):
        # Use a single async client for all requests to reuse connections
        self._client = httpx.AsyncClient(timeout=timeout)
        self.request_count = 0
        logger.info("LLMService initialized.", api_base=settings.OPENAI_API_BASE)

    async def _backoff_delay(self, attempt: int) -> None:
        """Sleep for an exponentially increasing delay with jitter."""
        delay = settings.LLM_RETRY_DELAY_SECONDS * (2**attempt)
        jitter = random.uniform(0, delay / 2)
        await asyncio.sleep(delay + jitter)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _validate_embedding(
        self,
        embedding_list: list[float | int],
        expected_dim: int,
        dtype: np.dtype,
    ) -> np.ndarray | None:
        """Helper to validate and convert a list to a 1D numpy embedding."""
        try:
            embedding = np.array(embedding_list).astype(dtype)
            if embedding.ndim > 1:
                logger.warning(
                    f"Embedding from source had unexpected ndim > 1: {embedding.ndim}. Flattening."
                )
                embedding = embedding.flatten()
            if embedding.shape == (expected_dim,):
                return embedding
            logger.error(
                f"Embedding dimension mismatch: Expected ({expected_dim},), Got {embedding.shape}. Original list length: {len(embedding_list)}"
            )
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to convert embedding list to numpy array: {e}")
        return None

    @alru_cache(maxsize=settings.EMBEDDING_CACHE_SIZE)
    async def async_get_embedding(self, text: str) -> np.ndarray | None:
        """
        Asynchronously retrieves an embedding for the given text from Ollama with retry logic.
        """
        if not text or not isinstance(text, str) or not text.strip():
            logger.warning(
                "async_get_embedding: empty or invalid text provided. Returning None."
            )
            return None

        payload = {"model": settings.EMBEDDING_MODEL, "prompt": text.strip()}
        last_exception: Exception | None = None
        for attempt in range(settings.LLM_RETRY_ATTEMPTS):
            try:
                self.request_count += 1
                api_response = await self._client.post(
                    f"{settings.OLLAMA_EMBED_URL}/api/embeddings", json=payload
                )
                api_response.raise_for_status()
                data = api_response.json()
                if isinstance(data.get("embedding"), list):
                    embedding = self._validate_embedding(
                        data["embedding"],
                        settings.EXPECTED_EMBEDDING_DIM,
                        settings.EMBEDDING_DTYPE,
                    )
                    if embedding is not None:
                        return embedding
                logger.error(
                    f"Ollama (Attempt {attempt + 1}): No suitable embedding list found in response."
                )
                last_exception = ValueError("No suitable embedding in Ollama response.")
            except httpx.HTTPStatusError as e_status:
                last_exception = e_status
                logger.warning(
                    f"Ollama Embedding (Attempt {attempt + 1}/{settings.LLM_RETRY_ATTEMPTS}): HTTP status {e_status.response.status_code}"
                )
                if 400 <= e_status.response.status_code < 500:
                    logger.error(
                        f"Ollama Embedding: Client-side error {e_status.response.status_code}. Aborting retries."
                    )
                    break
            except (httpx.RequestError, json.JSONDecodeError) as e_req:
                last_exception = e_req
                logger.warning(
                    f"Ollama Embedding (Attempt {attempt + 1}/{settings.LLM_RETRY_ATTEMPTS}): {e_req}"
                )

            if attempt < settings.LLM_RETRY_ATTEMPTS - 1:
                await self._backoff_delay(attempt)

        logger.error(
            f"Ollama Embedding: All retry attempts failed. Last error: {last_exception}"
        )
        return None

    def _log_llm_usage(self, model_name: str, usage_data: dict[str, int] | None) -> None:
        """Helper to log LLM token usage if available in the response."""
        if usage_data and isinstance(usage_data, dict):
            logger.info(
                f"LLM ('{model_name}') Usage - Prompt: {usage_data.get('prompt_tokens', 'N/A')} tk, "
                f"Comp: {usage_data.get('completion_tokens', 'N/A')} tk, Total: {usage_data.get('total_tokens', 'N/A')} tk"
            )
        else:
            logger.debug(f"LLM ('{model_name}') response missing 'usage' information.")

    async def _post_non_streaming(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> tuple[str, dict[str, int] | None]:
        """Send a regular chat completion request."""
        payload["stream"] = False
        response = await self._client.post(
            f"{settings.OPENAI_API_BASE}/chat/completions",
            json=payload,
            headers=headers,
        )
        response.raise_for_status()
        data = response.json()
        raw_text = ""
        if data.get("choices") and len(data["choices"]) > 0:
            message = data["choices"][0].get("message")
            if message and message.get("content"):
                raw_text = message["content"]
        else:
            logger.error(
                f"LLM ('{payload['model']}') Invalid response structure - missing choices/content despite 200 OK: {data}"
            )
        return raw_text, data.get("usage")

    async def async_generate_text(
        self,
        prompt: str,
        model_name: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Send one chat completion and return the raw response text.

        Transport and HTTP errors propagate unchanged; retries and rate limiting
        are the caller's concern (see ``core.generation_client``).
        """
        if not prompt or not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("async_generate_text: empty or invalid prompt.")

        model = model_name or settings.GENERATION_MODEL
        headers = {
            "Authorization": f"Bearer {settings.OPENAI_API_KEY}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": (
                temperature if temperature is not None else settings.TEMPERATURE_DEFAULT
            ),
            "top_p": settings.LLM_TOP_P,
            _completion_token_param(settings.OPENAI_API_BASE): (
                max_tokens if max_tokens is not None else settings.MAX_GENERATION_TOKENS
            ),
        }
        self.request_count += 1
        logger.debug(
            f"Calling LLM '{model}'. Prompt chars: {len(prompt)}.",
        )
        text, usage = await self._post_non_streaming(payload, headers)
        self._log_llm_usage(model, usage)
        return text

    def clean_model_response(self, text: str) -> str:
        """Strip reasoning tags and code-fence markers from a model response."""
        if not isinstance(text, str):
            logger.warning(
                f"clean_model_response received non-string input: {type(text)}. Returning empty string."
            )
            return ""

        cleaned_text = text
        for tag_name in ("think", "thought", "thinking", "reasoning", "analysis"):
            cleaned_text = re.sub(
                rf"<\s*{tag_name}\s*>.*?<\s*/\s*{tag_name}\s*>",
                "",
                cleaned_text,
                flags=re.DOTALL | re.IGNORECASE,
            )

        cleaned_text = re.sub(
            r"```(?:[a-zA-Z0-9_-]+)?\s*(.*?)\s*```",
            r"\1",
            cleaned_text,
            flags=re.DOTALL,
        )
        # Unbalanced fences left over from truncated responses
        cleaned_text = re.sub(r"```(?:[a-zA-Z0-9_-]+)?", "", cleaned_text)

        return cleaned_text.strip()


# Instantiate the service for other modules to import and use
llm_service = LLMService()
