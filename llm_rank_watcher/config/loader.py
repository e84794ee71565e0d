"""
Configuration loader for LLM Rank Watcher.

Loads a YAML configuration file, validates it with the Pydantic models in
schema.py, normalizes provider aliases and resolves API keys from
environment variables into a RuntimeConfig.

A missing API key is not a load error: the provider stays configured with
api_key=None, and every attempt against it fails fast in the gateway with
APIKeyMissingError, which the orchestrator treats as a credential failure
and short-circuits. `validate` reports the missing variables up front.

Functions:
    load_config: Main entrypoint to load and validate rank.config.yaml
    resolve_providers: Normalize provider entries and resolve their keys
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from llm_rank_watcher.config.providers import get_provider_info, normalize_provider
from llm_rank_watcher.exceptions import ConfigFileNotFoundError, ConfigValidationError

from .schema import ProviderConfig, RankWatcherConfig, RuntimeConfig, RuntimeProvider

logger = logging.getLogger(__name__)


def load_config(config_path: str | Path) -> RuntimeConfig:
    """
    Load rank.config.yaml and resolve API keys from environment variables.

    Args:
        config_path: Path to the YAML file (relative or absolute)

    Returns:
        RuntimeConfig with normalized providers and resolved API keys

    Raises:
        ConfigFileNotFoundError: If config file doesn't exist at the specified path
        ConfigValidationError: If YAML is invalid or config validation fails

    Example:
        >>> config = load_config("examples/rank.config.yaml")
        >>> [p.provider_id for p in config.providers]
        [<ProviderId.OPENAI: 'openai'>, <ProviderId.GEMINI: 'gemini'>]

    Security:
        - API keys are loaded from environment variables only
        - Uses yaml.safe_load() to prevent code injection
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")

    try:
        watcher_config = RankWatcherConfig.model_validate(raw_config)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            error_messages.append(f"  - {loc}: {error['msg']}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e

    providers = resolve_providers(watcher_config.providers)

    standardization_provider = None
    if watcher_config.standardization.enabled:
        std = watcher_config.standardization
        standardization_provider = _resolve_provider(
            ProviderConfig(
                provider=std.provider,
                model_name=std.model_name,
                env_api_key=std.env_api_key,
            )
        )

    logger.info(
        f"Loaded config from {config_path}: {len(watcher_config.queries)} queries, "
        f"{len(providers)} providers"
    )

    return RuntimeConfig(
        item=watcher_config.item,
        queries=watcher_config.queries,
        providers=providers,
        analysis_settings=watcher_config.analysis_settings,
        standardization=watcher_config.standardization,
        standardization_provider=standardization_provider,
    )


def resolve_providers(provider_configs: list[ProviderConfig]) -> list[RuntimeProvider]:
    """
    Normalize provider aliases and resolve their API keys.

    Args:
        provider_configs: Validated provider entries in file order

    Returns:
        RuntimeProvider list in the same order

    Security:
        - NEVER logs API keys (only the variable names)
    """
    return [_resolve_provider(config) for config in provider_configs]


def _resolve_provider(config: ProviderConfig) -> RuntimeProvider:
    normalized = normalize_provider(config.provider, config.model_name)
    env_var_name = config.env_api_key or get_provider_info(normalized.id).env_api_key

    api_key = os.environ.get(env_var_name) or None
    if api_key is None and config.active:
        logger.warning(
            f"Environment variable {env_var_name} is not set; "
            f"{normalized.display_name} attempts will fail until it is provided"
        )

    return RuntimeProvider(
        provider_id=normalized.id,
        display_name=normalized.display_name,
        model_name=normalized.model,
        api_key=api_key,
        active=config.active,
    )


def missing_api_key_variables(config_path: str | Path) -> list[str]:
    """
    List the environment variables an active provider needs but lacks.

    Used by the validate command; re-reads the YAML so variable names are
    reported exactly as configured.

    Args:
        config_path: Path to the YAML file

    Returns:
        Sorted list of unset variable names
    """
    with Path(config_path).open(encoding="utf-8") as f:
        watcher_config = RankWatcherConfig.model_validate(yaml.safe_load(f))

    needed = []
    for provider in watcher_config.providers:
        if not provider.active:
            continue
        normalized = normalize_provider(provider.provider, provider.model_name)
        needed.append(provider.env_api_key or get_provider_info(normalized.id).env_api_key)

    std = watcher_config.standardization
    if std.enabled:
        normalized = normalize_provider(std.provider, std.model_name)
        needed.append(std.env_api_key or get_provider_info(normalized.id).env_api_key)

    return sorted({name for name in needed if not os.environ.get(name)})
