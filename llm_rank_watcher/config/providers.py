"""
Provider catalogue for LLM Rank Watcher.

Single source of truth for the supported LLM back-ends: canonical ids,
display names, default and allowed models, and the environment variable
that conventionally holds each provider's API key.

Free-text provider names coming from config files or older databases
("OpenAI GPT-5", "google gemini") are mapped onto canonical ids with
normalize_provider().

Example:
    >>> resolved = normalize_provider("OpenAI GPT-5", "gpt-5-mini")
    >>> resolved.id, resolved.model
    (<ProviderId.OPENAI: 'openai'>, 'gpt-5-mini')
    >>> normalize_provider("gemini", "gpt-5-mini").model  # not allowed for Gemini
    'gemini-2.5-flash-lite'
"""

import logging
from dataclasses import dataclass
from enum import StrEnum

from llm_rank_watcher.exceptions import ConfigValidationError

logger = logging.getLogger(__name__)


class ProviderId(StrEnum):
    """Canonical identifiers of supported LLM back-ends."""

    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"
    PERPLEXITY = "perplexity"


@dataclass(frozen=True)
class ProviderInfo:
    """
    Static description of one provider.

    Attributes:
        id: Canonical provider id
        display_name: Human-readable name used in logs, errors and reports
        default_model: Model used when none (or a disallowed one) is requested
        allowed_models: Models this project is prepared to call
        env_api_key: Conventional environment variable holding the API key
    """

    id: ProviderId
    display_name: str
    default_model: str
    allowed_models: tuple[str, ...]
    env_api_key: str


PROVIDER_CATALOGUE: dict[ProviderId, ProviderInfo] = {
    ProviderId.OPENAI: ProviderInfo(
        id=ProviderId.OPENAI,
        display_name="OpenAI",
        default_model="gpt-5-nano",
        allowed_models=("gpt-5-nano", "gpt-5-mini", "gpt-4.1-mini"),
        env_api_key="OPENAI_API_KEY",
    ),
    ProviderId.GEMINI: ProviderInfo(
        id=ProviderId.GEMINI,
        display_name="Google Gemini",
        default_model="gemini-2.5-flash-lite",
        allowed_models=("gemini-2.5-flash-lite", "gemini-2.5-flash"),
        env_api_key="GEMINI_API_KEY",
    ),
    ProviderId.ANTHROPIC: ProviderInfo(
        id=ProviderId.ANTHROPIC,
        display_name="Anthropic",
        default_model="claude-3-5-haiku-latest",
        allowed_models=("claude-3-5-haiku-latest", "claude-sonnet-4-0"),
        env_api_key="ANTHROPIC_API_KEY",
    ),
    ProviderId.PERPLEXITY: ProviderInfo(
        id=ProviderId.PERPLEXITY,
        display_name="Perplexity",
        default_model="sonar",
        allowed_models=("sonar", "sonar-pro"),
        env_api_key="PERPLEXITY_API_KEY",
    ),
}

# Lowercase alias -> (provider id, forced model or None)
PROVIDER_ALIASES: dict[str, tuple[ProviderId, str | None]] = {
    "openai": (ProviderId.OPENAI, None),
    "open ai": (ProviderId.OPENAI, None),
    "gpt-5": (ProviderId.OPENAI, None),
    "gpt5": (ProviderId.OPENAI, None),
    "openai gpt-5": (ProviderId.OPENAI, None),
    "openai gpt5": (ProviderId.OPENAI, None),
    "openai gpt-5 nano": (ProviderId.OPENAI, "gpt-5-nano"),
    "openai gpt-5-nano": (ProviderId.OPENAI, "gpt-5-nano"),
    "openai gpt-4.1-mini": (ProviderId.OPENAI, "gpt-4.1-mini"),
    "gemini": (ProviderId.GEMINI, None),
    "google gemini": (ProviderId.GEMINI, None),
    "google": (ProviderId.GEMINI, None),
    "gemini 2.5": (ProviderId.GEMINI, None),
    "anthropic": (ProviderId.ANTHROPIC, None),
    "claude": (ProviderId.ANTHROPIC, None),
    "perplexity": (ProviderId.PERPLEXITY, None),
    "sonar": (ProviderId.PERPLEXITY, None),
}


@dataclass(frozen=True)
class NormalizedProvider:
    """Result of resolving a free-text provider name and requested model."""

    id: ProviderId
    model: str
    display_name: str
    original: str


def get_provider_info(provider_id: ProviderId | str) -> ProviderInfo:
    """
    Look up the catalogue entry for a canonical provider id.

    Raises:
        ConfigValidationError: If the id is not a supported provider
    """
    try:
        return PROVIDER_CATALOGUE[ProviderId(provider_id)]
    except ValueError as e:
        raise ConfigValidationError(f"Unknown LLM provider: {provider_id!r}") from e


def normalize_provider(raw_name: str, requested_model: str | None = None) -> NormalizedProvider:
    """
    Resolve a free-text provider name to a canonical provider and model.

    Lookup order: exact alias, then the first alias contained in the name.
    Alias-forced models win over requested_model; a model outside the
    provider's allowed list falls back to the provider default.

    Args:
        raw_name: Provider name as written by a user (case-insensitive)
        requested_model: Optional model the caller would like to use

    Returns:
        NormalizedProvider with canonical id, effective model and display name

    Raises:
        ConfigValidationError: If no alias matches raw_name
    """
    key = raw_name.lower().strip()
    alias = PROVIDER_ALIASES.get(key)
    if alias is None:
        alias = next(
            (value for candidate, value in PROVIDER_ALIASES.items() if candidate in key),
            None,
        )
    if alias is None:
        raise ConfigValidationError(f'Unknown LLM provider alias: "{raw_name}"')

    provider_id, forced_model = alias
    info = PROVIDER_CATALOGUE[provider_id]
    model = forced_model or requested_model or info.default_model
    if model not in info.allowed_models:
        logger.warning(
            f"Model '{model}' not allowed for provider '{info.display_name}', "
            f"falling back to default '{info.default_model}'"
        )
        model = info.default_model

    return NormalizedProvider(
        id=provider_id,
        model=model,
        display_name=info.display_name,
        original=raw_name,
    )
