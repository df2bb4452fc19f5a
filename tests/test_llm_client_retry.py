"""Tests for docpilot/llm/client.py using httpx.MockTransport.

httpx.MockTransport replaces only the network layer, so the real
_request_with_retry and fallback code paths run.
"""

from __future__ import annotations

import json

import httpx
import pytest

from docpilot.core.config import LLMConfig
from docpilot.core.exceptions import (
    AuthenticationError,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
    TransportError,
)
from docpilot.llm.client import ChatClient, CompletionCaller, LLMMessage, LLMResponse


def _ok_response(content: str = "Hello", model: str = "test/model", tokens: int = 42) -> dict:
    return {
        "choices": [{"message": {"content": content}}],
        "model": model,
        "usage": {"total_tokens": tokens},
    }


def _client_with_handler(handler, **kwargs) -> ChatClient:
    config = LLMConfig(
        base_url="https://llm.test/v1",
        provider_retries=2,
        provider_backoff_seconds=0.001,
        timeout_seconds=5,
        **kwargs,
    )
    client = ChatClient(config=config, api_key="test-key-123")
    client._client = httpx.Client(transport=httpx.MockTransport(handler), timeout=httpx.Timeout(5))
    return client


MESSAGES = [LLMMessage(role="user", content="Hi")]


class TestComplete:
    def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_ok_response())

        client = _client_with_handler(handler)
        resp = client.complete(MESSAGES, model="test/model")

        assert isinstance(resp, LLMResponse)
        assert resp.content == "Hello"
        assert resp.tokens_used == 42
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer test-key-123"
        assert seen["body"]["model"] == "test/model"
        assert seen["body"]["messages"] == [{"role": "user", "content": "Hi"}]
        client.close()

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("DOCPILOT_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        client = ChatClient(config=LLMConfig())
        with pytest.raises(AuthenticationError):
            client.complete(MESSAGES, model="m")

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.delenv("DOCPILOT_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert ChatClient(config=LLMConfig()).api_key == "sk-env"


class TestRetryErrors:
    def test_401_raises_auth_error(self):
        client = _client_with_handler(lambda r: httpx.Response(401, json={"error": "no"}))
        with pytest.raises(AuthenticationError, match="Invalid API key"):
            client.complete(MESSAGES, model="test/model")

    def test_404_raises_model_not_found(self):
        client = _client_with_handler(lambda r: httpx.Response(404, json={"error": "no"}))
        with pytest.raises(ModelNotFoundError, match="Model not found"):
            client.complete(MESSAGES, model="ghost/model")

    def test_429_retries_then_succeeds(self):
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            if attempts["count"] <= 2:
                return httpx.Response(429, json={"error": "slow down"})
            return httpx.Response(200, json=_ok_response())

        client = _client_with_handler(handler)
        assert client.complete(MESSAGES, model="test/model").content == "Hello"
        assert attempts["count"] == 3

    def test_429_exhausted_raises_rate_limit(self):
        client = _client_with_handler(lambda r: httpx.Response(429, json={}))
        with pytest.raises(RateLimitError):
            client.complete(MESSAGES, model="test/model")

    def test_500_exhausted_raises_llm_error(self):
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            return httpx.Response(503, json={})

        client = _client_with_handler(handler)
        with pytest.raises(LLMError, match="after 3 attempts"):
            client.complete(MESSAGES, model="test/model")
        assert attempts["count"] == 3

    def test_connect_error_retried(self):
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json=_ok_response())

        client = _client_with_handler(handler)
        assert client.complete(MESSAGES, model="test/model").content == "Hello"

    def test_malformed_body(self):
        client = _client_with_handler(lambda r: httpx.Response(200, json={"choices": []}))
        with pytest.raises(LLMError):
            client.complete(MESSAGES, model="test/model")


class TestFallbackChain:
    def test_falls_over_to_next_model(self):
        def handler(request: httpx.Request) -> httpx.Response:
            model = json.loads(request.content)["model"]
            if model == "primary":
                return httpx.Response(404, json={})
            return httpx.Response(200, json=_ok_response(content="from backup", model=model))

        client = _client_with_handler(handler, fallback_models=["backup"])
        resp = client.complete_with_fallback(MESSAGES, models=["primary"])
        assert resp.content == "from backup"
        assert resp.model == "backup"

    def test_all_fail(self):
        client = _client_with_handler(lambda r: httpx.Response(404, json={}), fallback_models=["b"])
        with pytest.raises(LLMError, match="All models failed"):
            client.complete_with_fallback(MESSAGES, models=["a"])

    def test_auth_error_not_masked(self):
        client = _client_with_handler(lambda r: httpx.Response(401, json={}), fallback_models=["b"])
        with pytest.raises(AuthenticationError):
            client.complete_with_fallback(MESSAGES, models=["a"])


class TestCompletionCaller:
    def test_prompt_to_text(self):
        client = _client_with_handler(lambda r: httpx.Response(200, json=_ok_response(content="answer")))
        caller = CompletionCaller(client)
        assert caller.model == client.config.model
        assert caller("question") == "answer"

    def test_failure_is_transport_error(self):
        client = _client_with_handler(lambda r: httpx.Response(503, json={}))
        with pytest.raises(TransportError):
            CompletionCaller(client, model="m")("question")
