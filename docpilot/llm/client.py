"""OpenAI-compatible chat client for docpilot.

httpx against any ``/chat/completions`` endpoint, with retry/backoff per
model and a fallback model chain. CompletionCaller narrows it to the
``prompt -> text`` capability the orchestrator consumes.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Optional

import httpx

from docpilot.core.config import LLMConfig
from docpilot.core.exceptions import (
    AuthenticationError,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
)

logger = logging.getLogger("docpilot.llm.client")


class LLMMessage:
    """A single message in a conversation."""

    def __init__(self, role: str, content: str):
        self.role = role
        self.content = content

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class LLMResponse:
    """Parsed response from the LLM."""

    def __init__(
        self,
        content: str,
        model: str,
        tokens_used: int = 0,
        raw: Optional[dict] = None,
    ):
        self.content = content
        self.model = model
        self.tokens_used = tokens_used
        self.raw = raw or {}


def resolve_api_key() -> str:
    return os.getenv("DOCPILOT_API_KEY") or os.getenv("OPENAI_API_KEY", "")


class ChatClient:
    """Sync HTTP client for an OpenAI-compatible chat completions API."""

    def __init__(self, config: Optional[LLMConfig] = None, api_key: Optional[str] = None):
        self.config = config or LLMConfig()
        self.api_key = api_key if api_key is not None else resolve_api_key()
        self.base_url = self.config.base_url.rstrip("/")
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
        return self._client

    def complete(
        self,
        messages: list[LLMMessage],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Send one chat completion request.

        Args:
            messages: Conversation messages.
            model: Model ID understood by the endpoint.
            temperature: Sampling temperature (default from config).
            max_tokens: Max response tokens (default from config).

        Returns:
            LLMResponse with content, model, and token usage.
        """
        if not self.api_key:
            raise AuthenticationError("DOCPILOT_API_KEY not set")

        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature if temperature is not None else self.config.default_temperature,
            "max_tokens": max_tokens or self.config.default_max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        return self._request_with_retry(
            payload,
            headers,
            max_retries=self.config.provider_retries + 1,
            backoff_base_seconds=self.config.provider_backoff_seconds,
        )

    def complete_with_fallback(
        self,
        messages: list[LLMMessage],
        models: list[str],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Try a model chain in order, retrying each model locally first."""
        chain: list[str] = []
        for model in [*models, *self.config.fallback_models]:
            if model and model not in chain:
                chain.append(model)

        if not chain:
            raise LLMError("No models provided for completion")

        failures: list[str] = []
        for model in chain:
            try:
                return self.complete(
                    messages=messages,
                    model=model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
            except AuthenticationError:
                raise
            except LLMError as e:
                failures.append(f"{model}: {e}")
                logger.warning("Model '%s' failed, trying next fallback", model)

        raise LLMError("All models failed.\n" + "\n".join(failures))

    def _request_with_retry(
        self,
        payload: dict,
        headers: dict,
        max_retries: int = 3,
        backoff_base_seconds: float = 2.0,
    ) -> LLMResponse:
        """Execute request with exponential backoff on retryable errors."""
        last_error: Optional[Exception] = None
        rate_limited = False

        for attempt in range(max_retries):
            last_attempt = attempt == max_retries - 1
            try:
                resp = self.client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )

                if resp.status_code == 401:
                    raise AuthenticationError("Invalid API key")
                if resp.status_code == 404:
                    raise ModelNotFoundError(f"Model not found: {payload.get('model')}")
                if resp.status_code == 429 or resp.status_code >= 500:
                    rate_limited = resp.status_code == 429
                    last_error = LLMError(f"HTTP {resp.status_code}")
                    if last_attempt:
                        break
                    delay = _backoff_delay(attempt, backoff_base_seconds)
                    logger.warning(
                        "HTTP %d from provider. Waiting %.1fs before retry %d",
                        resp.status_code, delay, attempt + 1,
                    )
                    time.sleep(delay)
                    continue

                resp.raise_for_status()
                data = resp.json()

                content = data["choices"][0]["message"]["content"] or ""
                model = data.get("model", payload.get("model", "unknown"))
                tokens = data.get("usage", {}).get("total_tokens", 0)

                logger.debug("LLM response: model=%s tokens=%d", model, tokens)
                return LLMResponse(content=content, model=model, tokens_used=tokens, raw=data)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e
                rate_limited = False
                if last_attempt:
                    break
                delay = _backoff_delay(attempt, backoff_base_seconds)
                logger.warning("Network error: %s. Waiting %.1fs", e, delay)
                time.sleep(delay)
            except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
                last_error = e
                rate_limited = False
                if last_attempt:
                    break
                delay = _backoff_delay(attempt, backoff_base_seconds)
                logger.warning("Unexpected response: %s. Waiting %.1fs", e, delay)
                time.sleep(delay)

        if rate_limited:
            raise RateLimitError(f"Rate limited after {max_retries} attempts")
        raise LLMError(f"Request failed after {max_retries} attempts: {last_error}")

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None


def _backoff_delay(attempt: int, base_seconds: float = 2.0) -> float:
    """Exponential backoff: 2s, 4s, 8s, ..."""
    return min(base_seconds * (2 ** attempt), 60)


class CompletionCaller:
    """The ``prompt -> text`` completion capability backed by a ChatClient.

    Raises LLMError (a TransportError) when every model in the chain fails.
    """

    def __init__(self, client: ChatClient, model: Optional[str] = None):
        self.client = client
        self.model = model or client.config.model

    def __call__(self, prompt: str) -> str:
        response = self.client.complete_with_fallback(
            [LLMMessage(role="user", content=prompt)],
            models=[self.model],
        )
        return response.content
