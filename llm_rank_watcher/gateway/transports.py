"""
Provider transports: request builders and response text extractors.

Each supported back-end is a ProviderTransport variant carrying two pure
functions: one that turns (api_key, model, prompt, options) into an HTTP
request description, and one that pulls plain text out of the provider's
JSON response. The gateway dispatches through the TRANSPORTS lookup table.

Extractors never raise on unexpected shapes: missing or alternate fields
fall back to an empty string, and the empty answer then parses to an empty
ranking.

Example:
    >>> transport = TRANSPORTS[ProviderId.PERPLEXITY]
    >>> request = transport.build_request("pplx-...", "sonar", "Rank cafes", CallOptions())
    >>> request.url
    'https://api.perplexity.ai/chat/completions'
    >>> transport.extract_text({"choices": [{"message": {"content": "1. Cafe"}}]})
    '1. Cafe'
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from llm_rank_watcher.config.providers import ProviderId

OPENAI_API_URL = "https://api.openai.com/v1/responses"
GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
PERPLEXITY_API_URL = "https://api.perplexity.ai/chat/completions"


@dataclass(frozen=True)
class CallOptions:
    """
    Per-call options passed through the gateway.

    Attributes:
        model: Model to call; None means the provider's default model
        reasoning_effort: Reasoning effort for providers that accept one (OpenAI)
        max_tokens: Output token cap for providers that require one
        temperature: Sampling temperature for providers that accept one
        timeout: Deadline override in seconds; None uses the gateway default
    """

    model: str | None = None
    reasoning_effort: str = "low"
    max_tokens: int = 500
    temperature: float = 0.3
    timeout: float | None = None


@dataclass(frozen=True)
class HttpRequestSpec:
    """Fully-built POST request for one provider call."""

    url: str
    headers: dict[str, str]
    payload: dict[str, Any]


@dataclass(frozen=True)
class ProviderTransport:
    """
    One provider variant: request builder plus response extractor.

    Attributes:
        provider_id: Canonical provider id
        build_request: (api_key, model, prompt, options) -> HttpRequestSpec
        extract_text: parsed JSON response -> answer text ("" when absent)
    """

    provider_id: ProviderId
    build_request: Callable[[str, str, str, CallOptions], HttpRequestSpec]
    extract_text: Callable[[Any], str]


# ============================================================================
# OpenAI (Responses API, bearer auth)
# ============================================================================


def build_openai_request(
    api_key: str, model: str, prompt: str, options: CallOptions
) -> HttpRequestSpec:
    return HttpRequestSpec(
        url=OPENAI_API_URL,
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        payload={
            "model": model,
            "input": prompt,
            "reasoning": {"effort": options.reasoning_effort},
        },
    )


def extract_openai_text(data: Any) -> str:
    """
    Extract answer text from an OpenAI Responses API payload.

    Looks for the first output item of type "message" and, inside it, the
    first content item of type "output_text". Falls back to top-level
    "output_text", "response", "content" or "text" string fields.

    Args:
        data: Parsed JSON response

    Returns:
        Answer text, or "" if no known field carries text
    """
    if not isinstance(data, dict):
        return ""

    output = data.get("output")
    if isinstance(output, list):
        for item in output:
            if not isinstance(item, dict) or item.get("type") != "message":
                continue
            for content in item.get("content") or []:
                if (
                    isinstance(content, dict)
                    and content.get("type") == "output_text"
                    and isinstance(content.get("text"), str)
                ):
                    return content["text"]

    for key in ("output_text", "output", "response", "content", "text"):
        value = data.get(key)
        if isinstance(value, str):
            return value

    return ""


# ============================================================================
# Google Gemini (generateContent, API-key header)
# ============================================================================


def build_gemini_request(
    api_key: str, model: str, prompt: str, options: CallOptions
) -> HttpRequestSpec:
    return HttpRequestSpec(
        url=f"{GEMINI_API_BASE_URL}/models/{model}:generateContent",
        headers={
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        },
        payload={
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": options.temperature},
        },
    )


def extract_gemini_text(data: Any) -> str:
    """
    Concatenate text parts of the first Gemini candidate.

    Returns "" when there are no candidates (e.g. the prompt was blocked).
    """
    if not isinstance(data, dict):
        return ""

    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""

    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""

    return "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    )


# ============================================================================
# Anthropic (Messages API, x-api-key header)
# ============================================================================


def build_anthropic_request(
    api_key: str, model: str, prompt: str, options: CallOptions
) -> HttpRequestSpec:
    return HttpRequestSpec(
        url=ANTHROPIC_API_URL,
        headers={
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        },
        payload={
            "model": model,
            "max_tokens": options.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        },
    )


def extract_anthropic_text(data: Any) -> str:
    """Join the text blocks of an Anthropic Messages response."""
    if not isinstance(data, dict):
        return ""

    blocks = data.get("content")
    if isinstance(blocks, str):
        return blocks
    if not isinstance(blocks, list):
        return ""

    return "".join(
        block["text"]
        for block in blocks
        if isinstance(block, dict)
        and block.get("type", "text") == "text"
        and isinstance(block.get("text"), str)
    )


# ============================================================================
# Perplexity (chat completions, bearer auth)
# ============================================================================


def build_perplexity_request(
    api_key: str, model: str, prompt: str, options: CallOptions
) -> HttpRequestSpec:
    return HttpRequestSpec(
        url=PERPLEXITY_API_URL,
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        payload={
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        },
    )


def extract_perplexity_text(data: Any) -> str:
    """Return choices[0].message.content, or ""."""
    if not isinstance(data, dict):
        return ""

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""

    message = choices[0].get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    return ""


TRANSPORTS: dict[ProviderId, ProviderTransport] = {
    ProviderId.OPENAI: ProviderTransport(
        ProviderId.OPENAI, build_openai_request, extract_openai_text
    ),
    ProviderId.GEMINI: ProviderTransport(
        ProviderId.GEMINI, build_gemini_request, extract_gemini_text
    ),
    ProviderId.ANTHROPIC: ProviderTransport(
        ProviderId.ANTHROPIC, build_anthropic_request, extract_anthropic_text
    ),
    ProviderId.PERPLEXITY: ProviderTransport(
        ProviderId.PERPLEXITY, build_perplexity_request, extract_perplexity_text
    ),
}
