"""
Tests for gateway.gateway module (ProviderGateway).

HTTP traffic is intercepted with pytest-httpx; no real provider is called.

Tests cover:
- Successful calls for every provider transport
- Request URL, auth headers and payload shape
- Missing API key fails before any network call
- Non-2xx responses raise ProviderHttpError with status and body
- Deadline expiry raises ProviderTimeoutError
- Connection errors are retried, then surfaced as ProviderError
- Non-JSON bodies and empty answers
"""

import asyncio
import json

import httpx
import pytest

from llm_rank_watcher.config.providers import ProviderId
from llm_rank_watcher.exceptions import (
    APIKeyMissingError,
    ConfigurationError,
    ProviderError,
    ProviderHttpError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from llm_rank_watcher.gateway.gateway import ProviderGateway
from llm_rank_watcher.gateway.transports import (
    ANTHROPIC_API_URL,
    GEMINI_API_BASE_URL,
    OPENAI_API_URL,
    PERPLEXITY_API_URL,
    CallOptions,
)

API_KEYS = {
    ProviderId.OPENAI: "sk-test-openai",
    ProviderId.GEMINI: "AIza-test-gemini",
    ProviderId.ANTHROPIC: "sk-ant-test",
    ProviderId.PERPLEXITY: "pplx-test",
}

GEMINI_URL = f"{GEMINI_API_BASE_URL}/models/gemini-2.5-flash-lite:generateContent"


@pytest.fixture
def gateway():
    return ProviderGateway(API_KEYS, timeout=5.0)


class TestProviderGatewayInit:
    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError, match="timeout must be positive"):
            ProviderGateway(API_KEYS, timeout=0)

    @pytest.mark.asyncio
    async def test_empty_keys_are_ignored(self, httpx_mock):
        gateway = ProviderGateway({"openai": "sk-x", "gemini": ""})

        with pytest.raises(APIKeyMissingError):
            await gateway.call(ProviderId.GEMINI, "p")

        assert httpx_mock.get_requests() == []


class TestProviderGatewaySuccess:
    """Successful calls through each transport."""

    @pytest.mark.asyncio
    async def test_openai_responses_api(self, gateway, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            json={
                "output": [
                    {"type": "reasoning", "summary": []},
                    {
                        "type": "message",
                        "content": [{"type": "output_text", "text": "1. Acme\n2. Globex"}],
                    },
                ]
            },
        )

        text = await gateway.call(
            ProviderId.OPENAI, "Rank bakeries", CallOptions(reasoning_effort="medium")
        )

        assert text == "1. Acme\n2. Globex"
        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer sk-test-openai"
        payload = json.loads(request.content)
        assert payload == {
            "model": "gpt-5-nano",
            "input": "Rank bakeries",
            "reasoning": {"effort": "medium"},
        }

    @pytest.mark.asyncio
    async def test_gemini_uses_api_key_header(self, gateway, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=GEMINI_URL,
            json={
                "candidates": [
                    {"content": {"parts": [{"text": "1. Acme\n"}, {"text": "2. Globex"}]}}
                ]
            },
        )

        text = await gateway.call("gemini", "Rank bakeries")

        assert text == "1. Acme\n2. Globex"
        request = httpx_mock.get_request()
        assert request.headers["x-goog-api-key"] == "AIza-test-gemini"
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_anthropic_messages_api(self, gateway, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=ANTHROPIC_API_URL,
            json={"content": [{"type": "text", "text": "1. Acme"}]},
        )

        text = await gateway.call(ProviderId.ANTHROPIC, "Rank bakeries")

        assert text == "1. Acme"
        request = httpx_mock.get_request()
        assert request.headers["x-api-key"] == "sk-ant-test"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert json.loads(request.content)["max_tokens"] == 500

    @pytest.mark.asyncio
    async def test_perplexity_chat_completions(self, gateway, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=PERPLEXITY_API_URL,
            json={"choices": [{"message": {"content": "1. Acme"}}]},
        )

        text = await gateway.call(ProviderId.PERPLEXITY, "Rank bakeries")

        assert text == "1. Acme"
        payload = json.loads(httpx_mock.get_request().content)
        assert payload["model"] == "sonar"
        assert payload["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_model_override(self, gateway, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json={"output_text": "1. A"})

        await gateway.call(ProviderId.OPENAI, "p", CallOptions(model="gpt-5-mini"))

        assert json.loads(httpx_mock.get_request().content)["model"] == "gpt-5-mini"

    @pytest.mark.asyncio
    async def test_unexpected_shape_returns_empty_string(self, gateway, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json={"id": "resp_1"})

        assert await gateway.call(ProviderId.OPENAI, "p") == ""


class TestProviderGatewayErrors:
    """Error mapping."""

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_before_network(self, httpx_mock):
        gateway = ProviderGateway({ProviderId.OPENAI: "sk-x"})

        with pytest.raises(APIKeyMissingError, match="Google Gemini API key not configured"):
            await gateway.call(ProviderId.GEMINI, "p")

        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_unknown_provider(self, gateway):
        with pytest.raises(ConfigurationError, match="Unknown LLM provider"):
            await gateway.call("grok", "p")

    @pytest.mark.asyncio
    async def test_http_error_carries_status_and_body(self, gateway, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=401,
            json={"error": {"message": "Incorrect API key provided"}},
        )

        with pytest.raises(ProviderHttpError) as exc_info:
            await gateway.call(ProviderId.OPENAI, "p")

        assert exc_info.value.status_code == 401
        assert "Incorrect API key provided" in exc_info.value.body
        assert "OpenAI error 401" in str(exc_info.value)
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, gateway, httpx_mock):
        httpx_mock.add_response(method="POST", url=ANTHROPIC_API_URL, status_code=529, text="overloaded")

        with pytest.raises(ProviderHttpError) as exc_info:
            await gateway.call(ProviderId.ANTHROPIC, "p")

        assert exc_info.value.status_code == 529
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_error_body_is_truncated(self, gateway, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, status_code=500, text="x" * 2000)

        with pytest.raises(ProviderHttpError) as exc_info:
            await gateway.call(ProviderId.OPENAI, "p")

        assert len(exc_info.value.body) == 500

    @pytest.mark.asyncio
    async def test_read_timeout_maps_to_provider_timeout(self, gateway, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"), url=OPENAI_API_URL)

        with pytest.raises(ProviderTimeoutError, match="LLM request timed out"):
            await gateway.call(ProviderId.OPENAI, "p")

    @pytest.mark.asyncio
    async def test_deadline_expiry_maps_to_provider_timeout(self, gateway, monkeypatch):
        async def slow_post(request, timeout):
            await asyncio.sleep(10)

        monkeypatch.setattr(gateway, "_post", slow_post)

        with pytest.raises(ProviderTimeoutError):
            await gateway.call(ProviderId.OPENAI, "p", CallOptions(timeout=0.05))

    @pytest.mark.asyncio
    async def test_connect_error_is_retried_then_succeeds(self, gateway, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=PERPLEXITY_API_URL)
        httpx_mock.add_response(
            method="POST",
            url=PERPLEXITY_API_URL,
            json={"choices": [{"message": {"content": "1. Acme"}}]},
        )

        assert await gateway.call(ProviderId.PERPLEXITY, "p") == "1. Acme"
        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_non_json_body(self, gateway, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, text="<html>gateway</html>")

        with pytest.raises(ProviderResponseError):
            await gateway.call(ProviderId.OPENAI, "p")

    @pytest.mark.asyncio
    async def test_provider_errors_share_a_base_class(self, gateway, httpx_mock):
        httpx_mock.add_response(method="POST", url=GEMINI_URL, status_code=503, text="busy")

        with pytest.raises(ProviderError):
            await gateway.call(ProviderId.GEMINI, "p")
