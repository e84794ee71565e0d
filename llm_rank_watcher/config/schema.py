"""
Configuration schema models for LLM Rank Watcher.

This module defines Pydantic models for validating and parsing the
rank.config.yaml file, plus the runtime models produced once provider
aliases are normalized and API keys are resolved from the environment.

Models:
    ItemConfig: The tracked business/product and its owner
    QueryConfig: One natural-language ranking query
    ProviderConfig: One LLM provider entry (alias, model, key variable)
    AnalysisSettings: Storage path, attempt counts, pacing and timeouts
    StandardizationSettings: Optional name-standardization pass
    RankWatcherConfig: Root configuration model (validates entire YAML)
    RuntimeProvider: Provider with canonical id, effective model and API key
    RuntimeConfig: Runtime configuration handed to the CLI and engine
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from llm_rank_watcher.config.providers import ProviderId, normalize_provider
from llm_rank_watcher.exceptions import ConfigValidationError

ReasoningEffort = Literal["minimal", "low", "medium", "high"]


class ItemConfig(BaseModel):
    """
    The item (business or product) whose ranking is tracked.

    Attributes:
        name: Name the item is expected to appear under in LLM answers
        owner: Owner identifier used for the run-start ownership check
        location: Optional city or area, used by query suggestions and
            source discovery
        business_type: Optional kind of business ("bakery", "tour operator")
    """

    name: str
    owner: str = "local"
    location: str | None = None
    business_type: str | None = None

    @field_validator("name", "owner")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        """Validate field is non-empty and strip surrounding whitespace."""
        if not v or v.isspace():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("location", "business_type")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class QueryConfig(BaseModel):
    """A natural-language query such as "best walking tours in Dublin"."""

    text: str
    active: bool = True

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        """Validate query text is non-empty."""
        if not v or v.isspace():
            raise ValueError("query text cannot be empty")
        return v.strip()


class ProviderConfig(BaseModel):
    """
    LLM provider entry from rank.config.yaml.

    Attributes:
        provider: Provider alias (openai, gemini, "OpenAI GPT-5", anthropic, ...)
        model_name: Optional model; disallowed models fall back to the default
        env_api_key: Environment variable holding the key; defaults to the
            provider's conventional variable (e.g. OPENAI_API_KEY)
        active: Inactive providers are stored but never queried
    """

    provider: str
    model_name: str | None = None
    env_api_key: str | None = None
    active: bool = True

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate provider alias is known."""
        if not v or v.isspace():
            raise ValueError("provider cannot be empty")
        # pydantic only collects ValueError/AssertionError into ValidationError
        try:
            normalize_provider(v)
        except ConfigValidationError as e:
            raise ValueError(str(e)) from e
        return v


class StandardizationSettings(BaseModel):
    """
    Settings for the secondary-model name standardization pass.

    Attributes:
        enabled: Run standardization after parsing each answer
        provider: Provider alias used for standardization calls
        model_name: Optional model override
        env_api_key: Optional key variable override
        max_names: Lists longer than this are left untouched
    """

    enabled: bool = False
    provider: str = "gemini"
    model_name: str | None = None
    env_api_key: str | None = None
    max_names: int = 50

    @field_validator("max_names")
    @classmethod
    def validate_max_names(cls, v: int) -> int:
        """Validate max_names is positive."""
        if v < 1:
            raise ValueError(f"max_names must be at least 1 (got: {v})")
        return v


class AnalysisSettings(BaseModel):
    """
    Runtime settings for analysis runs.

    Attributes:
        sqlite_db_path: Path to the SQLite database
        attempts_per_provider: Attempts per (query, provider) pair
        request_count: Number of ranked results requested per attempt
        inter_attempt_delay_seconds: Pause between attempts of one provider
        inter_provider_delay_seconds: Pause after finishing each provider
        checkpoint_every: Persist progress counters every N calls
        request_timeout_seconds: Deadline for a single provider call
        reasoning_effort: Reasoning effort for providers that accept one
        weekly_limit: Refuse to start when a run already completed this week
    """

    sqlite_db_path: str = "./output/rank_watcher.db"
    attempts_per_provider: int = 10
    request_count: int = 25
    inter_attempt_delay_seconds: float = 1.0
    inter_provider_delay_seconds: float = 2.0
    checkpoint_every: int = 5
    request_timeout_seconds: float = 60.0
    reasoning_effort: ReasoningEffort = "low"
    weekly_limit: bool = False

    @field_validator("sqlite_db_path")
    @classmethod
    def validate_sqlite_db_path(cls, v: str) -> str:
        """Validate sqlite_db_path is non-empty."""
        if not v or v.isspace():
            raise ValueError("sqlite_db_path cannot be empty")
        return v

    @field_validator("attempts_per_provider")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        """Validate attempts stay within a range providers tolerate."""
        if not 1 <= v <= 50:
            raise ValueError(f"attempts_per_provider must be between 1 and 50 (got: {v})")
        return v

    @field_validator("request_count")
    @classmethod
    def validate_request_count(cls, v: int) -> int:
        """Validate requested list length."""
        if not 1 <= v <= 100:
            raise ValueError(f"request_count must be between 1 and 100 (got: {v})")
        return v

    @field_validator("inter_attempt_delay_seconds", "inter_provider_delay_seconds")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        """Validate delays are not negative."""
        if v < 0:
            raise ValueError(f"delay cannot be negative (got: {v})")
        return v

    @field_validator("checkpoint_every")
    @classmethod
    def validate_checkpoint_every(cls, v: int) -> int:
        """Validate checkpoint interval is positive."""
        if v < 1:
            raise ValueError(f"checkpoint_every must be at least 1 (got: {v})")
        return v

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError(f"request_timeout_seconds must be positive (got: {v})")
        return v


class RankWatcherConfig(BaseModel):
    """
    Root configuration model for rank.config.yaml.

    Example:
        item:
          name: "Wild Rover Tours"
        queries:
          - text: "best walking tours in Dublin"
        providers:
          - provider: openai
            model_name: gpt-5-nano
          - provider: gemini
        analysis_settings:
          sqlite_db_path: ./output/rank_watcher.db
    """

    item: ItemConfig
    queries: list[QueryConfig]
    providers: list[ProviderConfig]
    analysis_settings: AnalysisSettings = Field(default_factory=AnalysisSettings)
    standardization: StandardizationSettings = Field(default_factory=StandardizationSettings)

    @field_validator("queries")
    @classmethod
    def validate_queries_unique(cls, v: list[QueryConfig]) -> list[QueryConfig]:
        """
        Validate queries list is non-empty and query texts are unique.

        Raises:
            ValueError: If no queries configured or duplicate texts found
        """
        if not v:
            raise ValueError("At least one query must be configured")

        seen: set[str] = set()
        duplicates = []
        for query in v:
            key = query.text.lower()
            if key in seen:
                duplicates.append(query.text)
            seen.add(key)

        if duplicates:
            raise ValueError(f"Duplicate query texts found: {', '.join(duplicates)}")
        return v

    @model_validator(mode="after")
    def validate_providers_unique(self) -> "RankWatcherConfig":
        """
        Validate at least one provider exists and no canonical provider repeats.

        Two aliases of the same back-end ("openai" and "OpenAI GPT-5") would
        otherwise double the calls against one rate limit.
        """
        if not self.providers:
            raise ValueError("At least one provider must be configured")

        seen: set[ProviderId] = set()
        for provider in self.providers:
            provider_id = normalize_provider(provider.provider).id
            if provider_id in seen:
                raise ValueError(f"Provider '{provider_id}' configured more than once")
            seen.add(provider_id)
        return self


class RuntimeProvider(BaseModel):
    """
    Provider with its alias resolved and API key looked up.

    Attributes:
        provider_id: Canonical provider id
        display_name: Human-readable provider name
        model_name: Effective model after allowed-model fallback
        api_key: Resolved API key, or None when the variable is unset
        active: Whether analysis runs should query this provider
    """

    provider_id: ProviderId
    display_name: str
    model_name: str
    api_key: str | None = None
    active: bool = True


class RuntimeConfig(BaseModel):
    """
    Runtime configuration with normalized providers and resolved API keys.

    Attributes:
        item: Tracked item
        queries: Queries in file order (creation order in the store)
        providers: Runtime providers in file order
        analysis_settings: Analysis settings
        standardization: Standardization settings
        standardization_provider: Resolved provider for standardization
            (None when standardization is disabled)
    """

    item: ItemConfig
    queries: list[QueryConfig]
    providers: list[RuntimeProvider]
    analysis_settings: AnalysisSettings
    standardization: StandardizationSettings
    standardization_provider: RuntimeProvider | None = None

    def api_keys(self) -> dict[ProviderId, str]:
        """Return every resolved API key keyed by provider id."""
        keys = {p.provider_id: p.api_key for p in self.providers if p.api_key}
        std = self.standardization_provider
        if std is not None and std.api_key and std.provider_id not in keys:
            keys[std.provider_id] = std.api_key
        return keys
