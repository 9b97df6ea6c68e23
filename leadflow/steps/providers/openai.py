"""OpenAI provider adapter - default, covers all OpenAI-compatible APIs.

Uses the Chat Completions endpoint (``client.chat.completions.create``),
which OpenAI and the compatible third-party hosts (Ollama, Groq, ...)
all expose.
"""

from __future__ import annotations

import os
from typing import Any

from ...schemas.base import UsageInfo
from ...utils.logger import get_logger
from .base import LLMAPIError, LLMResponse

logger = get_logger(__name__)


class OpenAIClient:
    """Adapter for OpenAI and OpenAI-compatible providers.

    The SDK client is created lazily on first use so constructing an
    adapter never requires an API key.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI

            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            kwargs: dict[str, Any] = {"api_key": key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        from openai import APIError, APITimeoutError, RateLimitError

        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except RateLimitError as exc:
            raise LLMAPIError(
                f"OpenAI rate limit for model '{model}': {exc}",
                status_code=429,
                retry_after=_retry_after(exc),
                is_rate_limit=True,
            ) from exc
        except APITimeoutError as exc:
            raise LLMAPIError(
                f"OpenAI timeout for model '{model}': {exc}",
                status_code=408,
            ) from exc
        except APIError as exc:
            raise LLMAPIError(
                f"OpenAI API error for model '{model}': {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc

        content = response.choices[0].message.content or ""
        usage = None
        if response.usage:
            usage = UsageInfo(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
                model=model,
            )
        logger.debug("OpenAI %s returned %d chars", model, len(content))
        return LLMResponse(content=content, usage=usage)


def _retry_after(exc: Any) -> float | None:
    """Read the ``retry-after`` header from a rate-limit error, if any."""
    response = getattr(exc, "response", None)
    if response is None:
        return None
    header = response.headers.get("retry-after")
    if not header:
        return None
    try:
        return float(header)
    except (ValueError, TypeError):
        return None
