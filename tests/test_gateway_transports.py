"""
Tests for gateway.transports and gateway.mock_gateway modules.

Extractors must never raise on unexpected shapes; they fall back to "".
"""

import pytest

from llm_rank_watcher.config.providers import ProviderId
from llm_rank_watcher.gateway.mock_gateway import MockGateway
from llm_rank_watcher.gateway.transports import (
    TRANSPORTS,
    CallOptions,
    build_gemini_request,
    extract_anthropic_text,
    extract_gemini_text,
    extract_openai_text,
    extract_perplexity_text,
)


class TestTransportTable:
    def test_every_provider_has_a_transport(self):
        assert set(TRANSPORTS) == set(ProviderId)

    def test_transport_ids_match_keys(self):
        for provider_id, transport in TRANSPORTS.items():
            assert transport.provider_id == provider_id

    def test_gemini_url_embeds_model(self):
        request = build_gemini_request("AIza-x", "gemini-2.5-flash", "p", CallOptions())

        assert request.url.endswith("/models/gemini-2.5-flash:generateContent")
        assert request.payload["contents"][0]["parts"][0]["text"] == "p"


class TestExtractOpenAIText:
    def test_message_output_text(self):
        data = {
            "output": [
                {"type": "reasoning"},
                {
                    "type": "message",
                    "content": [
                        {"type": "refusal", "refusal": "no"},
                        {"type": "output_text", "text": "1. Acme"},
                    ],
                },
            ]
        }

        assert extract_openai_text(data) == "1. Acme"

    @pytest.mark.parametrize("key", ["output_text", "output", "response", "content", "text"])
    def test_top_level_fallbacks(self, key):
        assert extract_openai_text({key: "1. Acme"}) == "1. Acme"

    @pytest.mark.parametrize(
        "data",
        [
            None,
            [],
            {},
            {"output": [{"type": "message", "content": None}]},
            {"output": [{"type": "message", "content": [{"type": "output_text"}]}]},
            {"output_text": 42},
        ],
    )
    def test_missing_fields_give_empty_string(self, data):
        assert extract_openai_text(data) == ""


class TestExtractGeminiText:
    def test_joins_parts_of_first_candidate(self):
        data = {
            "candidates": [
                {"content": {"parts": [{"text": "1. A\n"}, {"inlineData": {}}, {"text": "2. B"}]}},
                {"content": {"parts": [{"text": "ignored"}]}},
            ]
        }

        assert extract_gemini_text(data) == "1. A\n2. B"

    @pytest.mark.parametrize(
        "data",
        [
            {"promptFeedback": {"blockReason": "SAFETY"}},
            {"candidates": []},
            {"candidates": [{"finishReason": "SAFETY"}]},
            {"candidates": ["oops"]},
            "text",
        ],
    )
    def test_missing_fields_give_empty_string(self, data):
        assert extract_gemini_text(data) == ""


class TestExtractAnthropicText:
    def test_joins_text_blocks_only(self):
        data = {
            "content": [
                {"type": "text", "text": "1. A\n"},
                {"type": "tool_use", "name": "x"},
                {"type": "text", "text": "2. B"},
            ]
        }

        assert extract_anthropic_text(data) == "1. A\n2. B"

    def test_missing_content(self):
        assert extract_anthropic_text({"type": "error"}) == ""


class TestExtractPerplexityText:
    def test_first_choice_content(self):
        assert extract_perplexity_text({"choices": [{"message": {"content": "1. A"}}]}) == "1. A"

    @pytest.mark.parametrize(
        "data",
        [{}, {"choices": []}, {"choices": [{"delta": {}}]}, {"choices": [{"message": {}}]}],
    )
    def test_missing_fields_give_empty_string(self, data):
        assert extract_perplexity_text(data) == ""


class TestMockGateway:
    """Test suite for the scripted gateway."""

    @pytest.mark.asyncio
    async def test_single_string_repeats(self):
        gateway = MockGateway(responses={"openai": "1. Acme"})

        assert await gateway.call("openai", "a") == "1. Acme"
        assert await gateway.call(ProviderId.OPENAI, "b") == "1. Acme"
        assert [call.prompt for call in gateway.calls] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_list_is_consumed_and_last_entry_repeats(self):
        gateway = MockGateway(responses={"gemini": ["first", "second"]})

        results = [await gateway.call("gemini", "p") for _ in range(3)]

        assert results == ["first", "second", "second"]

    @pytest.mark.asyncio
    async def test_exceptions_are_raised(self):
        gateway = MockGateway(responses={"openai": ["1. Acme", RuntimeError("boom")]})

        await gateway.call("openai", "p")
        with pytest.raises(RuntimeError, match="boom"):
            await gateway.call("openai", "p")

    @pytest.mark.asyncio
    async def test_default_response_for_unscripted_provider(self):
        gateway = MockGateway(default_response="1. Default")

        assert await gateway.call("perplexity", "p") == "1. Default"

    @pytest.mark.asyncio
    async def test_cursors_are_per_provider(self):
        gateway = MockGateway(responses={"openai": ["o1", "o2"], "gemini": ["g1", "g2"]})

        assert await gateway.call("openai", "p") == "o1"
        assert await gateway.call("gemini", "p") == "g1"
        assert await gateway.call("openai", "p") == "o2"
        assert len(gateway.calls_for("gemini")) == 1

    @pytest.mark.asyncio
    async def test_options_are_recorded(self):
        gateway = MockGateway()
        options = CallOptions(model="sonar-pro")

        await gateway.call("perplexity", "p", options)

        assert gateway.calls[0].options is options
