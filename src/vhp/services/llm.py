"""OpenAI-compatible chat-completions client using httpx.

Used for two things: scoring challenge frames (vision messages carrying
``image_url`` data URIs) and generating new challenges (plain text chat).
Retries network errors and HTTP 5xx/429 with exponential backoff; a global
semaphore caps concurrent requests to the provider.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from vhp.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatResponse:
    content: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return isinstance(error, (httpx.TimeoutException, httpx.TransportError))


class VisionLLMClient:
    """Async client for ``{base_url}/chat/completions``."""

    def __init__(
        self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self._base_url = settings.llm_base_url.rstrip("/")
        self._model = settings.llm_model_name
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens
        self._max_retries = settings.llm_max_retries
        self._retry_delay = settings.llm_retry_delay
        self._semaphore = asyncio.Semaphore(settings.llm_max_concurrent)
        headers = {}
        if settings.llm_api_key:
            headers["Authorization"] = f"Bearer {settings.llm_api_key}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(
                connect=30.0,
                read=settings.llm_timeout,
                write=30.0,
                pool=30.0,
            ),
            transport=transport,
        )

    @property
    def model(self) -> str:
        return self._model

    async def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_format: bool = False,
    ) -> ChatResponse:
        """Send a chat completion request, retrying transient failures.

        Args:
            messages: OpenAI-style messages; ``content`` may be a string or a
                list of ``text`` / ``image_url`` parts.
            json_format: ask the provider for a JSON object response.
        """
        payload = self._payload(messages, temperature, max_tokens, json_format)
        attempts = 1 + self._max_retries
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._semaphore:
                    return await self._do_chat(payload)
            except httpx.HTTPError as e:
                if attempt >= attempts or not _is_retryable(e):
                    logger.error("Vision LLM request failed after %d attempt(s): %s", attempt, e)
                    raise
                delay = self._backoff(attempt)
                logger.warning(
                    "Vision LLM attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt,
                    attempts,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)

    def _backoff(self, attempt: int) -> float:
        return self._retry_delay * 2 ** (attempt - 1)

    def _payload(
        self,
        messages: list[dict[str, Any]],
        temperature: float | None,
        max_tokens: int | None,
        json_format: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature if temperature is None else temperature,
            "max_tokens": self._max_tokens if max_tokens is None else max_tokens,
        }
        if json_format:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def _do_chat(self, payload: dict[str, Any]) -> ChatResponse:
        """Execute a single chat request (no retry logic)."""
        response = await self._client.post(f"{self._base_url}/chat/completions", json=payload)
        response.raise_for_status()
        try:
            data = response.json()
            choices = data.get("choices") or []
            content = ""
            if choices:
                content = (choices[0].get("message") or {}).get("content") or ""
            if not isinstance(content, str):
                raise TypeError(f"message content is {type(content).__name__}")
            usage = data.get("usage") or {}
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            # gateways sometimes answer 200 with an HTML page
            raise httpx.DecodingError(
                f"Malformed chat completion response: {e}", request=response.request
            ) from e
        logger.debug("LLM response (first 200 chars): %s", content[:200])

        return ChatResponse(
            content=content,
            model=data.get("model", self._model),
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
        )

    async def is_reachable(self) -> bool:
        """Check if the provider answers the model listing endpoint."""
        try:
            response = await self._client.get(
                f"{self._base_url}/models",
                timeout=httpx.Timeout(5.0),
            )
            return response.status_code == 200
        except Exception:
            return False

    async def close(self) -> None:
        await self._client.aclose()
