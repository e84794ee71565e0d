"""
Custom exceptions for LLM Rank Watcher.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the application. All exceptions inherit from the base
LLMRankWatcherError for consistent catching.

Exception Hierarchy:
    LLMRankWatcherError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   └── APIKeyMissingError
    ├── ProviderError
    │   ├── ProviderTimeoutError
    │   ├── ProviderHttpError
    │   └── ProviderResponseError
    ├── ParseError
    │   ├── StandardizationParseError
    │   ├── SuggestionParseError
    │   └── SourceParseError
    ├── DatabaseError
    │   ├── DatabaseInitError
    │   └── PersistenceError
    ├── AnalysisPreconditionError
    ├── RunStateError
    └── RunFatalError

Attempt-level failures (configuration, timeout, HTTP, parse) are converted to
structured outcomes by the attempt runner and never reach the orchestrator
loop. Only RunFatalError flips a run to "failed".

Usage:
    from llm_rank_watcher.exceptions import ProviderHttpError

    try:
        text = await gateway.call(ProviderId.OPENAI, prompt)
    except ProviderHttpError as e:
        logger.warning(f"Provider rejected request: {e.status_code}")
"""

AUTH_ERROR_MARKERS = ("api key", "unauthorized", "authentication")


class LLMRankWatcherError(Exception):
    """
    Base exception for all LLM Rank Watcher errors.

    Example:
        try:
            # application code
            pass
        except LLMRankWatcherError as e:
            logger.error(f"Application error: {e}")
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(LLMRankWatcherError):
    """
    Base class for configuration-related errors.

    Raised when configuration loading, parsing, or validation fails, and by
    the provider gateway when a provider has no usable credentials.
    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("/path/to/rank.config.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (schema validation failed).

    Example:
        raise ConfigValidationError("Field 'queries' must be a non-empty list")
    """

    pass


class APIKeyMissingError(ConfigurationError):
    """
    No API key is available for a provider at call time.

    The message always contains "API key" so the orchestrator's credential
    heuristic treats it like a rejected key and skips the provider.

    Example:
        raise APIKeyMissingError("OpenAI API key not configured")
    """

    pass


# ============================================================================
# Provider Errors
# ============================================================================


class ProviderError(LLMRankWatcherError):
    """
    Base class for failures while talking to an LLM provider.
    """

    pass


class ProviderTimeoutError(ProviderError):
    """
    Provider call exceeded its deadline.

    Example:
        raise ProviderTimeoutError("LLM request timed out")
    """

    pass


class ProviderHttpError(ProviderError):
    """
    Provider answered with a non-2xx HTTP status.

    Attributes:
        provider: Display name of the provider (e.g., "OpenAI")
        status_code: HTTP status code returned
        body: Response body text (truncated)

    Example:
        raise ProviderHttpError("OpenAI", 401, '{"error": "invalid api key"}', "Unauthorized")
    """

    def __init__(self, provider: str, status_code: int, body: str, reason: str = ""):
        self.provider = provider
        self.status_code = status_code
        self.body = body
        reason_part = f" ({reason})" if reason else ""
        super().__init__(f"{provider} error {status_code}{reason_part}: {body}")


class ProviderResponseError(ProviderError):
    """
    Provider returned a success status but the payload was not usable JSON.

    Example:
        raise ProviderResponseError("Gemini returned a non-JSON body")
    """

    pass


# ============================================================================
# Parse Errors
# ============================================================================


class ParseError(LLMRankWatcherError):
    """
    Base class for malformed or unparseable model output.

    Never run-fatal: callers degrade to a safe fallback.
    """

    pass


class StandardizationParseError(ParseError):
    """
    Standardization response could not be turned into a name mapping.

    Example:
        raise StandardizationParseError("No JSON object found in response")
    """

    pass


class SuggestionParseError(ParseError):
    """Query suggestion response held no usable suggestions."""

    pass


class SourceParseError(ParseError):
    """Source discovery response held no usable source entries."""

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(LLMRankWatcherError):
    """
    Base class for database-related errors.

    Should be caught and result in exit code 2 (database error).
    """

    pass


class DatabaseInitError(DatabaseError):
    """
    Database initialization or migration failed.

    Example:
        raise DatabaseInitError("Failed to create database: permission denied")
    """

    pass


class PersistenceError(DatabaseError):
    """
    A store read or write failed.

    The orchestrator logs these during checkpointing and bulk saves and keeps
    running.

    Example:
        raise PersistenceError("Failed to save 10 ranking attempts: disk I/O error")
    """

    pass


# ============================================================================
# Analysis Errors
# ============================================================================


class AnalysisPreconditionError(LLMRankWatcherError):
    """
    An analysis cannot start (unknown item, ownership mismatch, nothing active).

    Raised before any run row is created.

    Example:
        raise AnalysisPreconditionError("No active providers configured")
    """

    pass


class RunStateError(LLMRankWatcherError):
    """
    Illegal analysis run status transition.

    Example:
        raise RunStateError("Run abc123 is completed and cannot move to running")
    """

    pass


class RunFatalError(LLMRankWatcherError):
    """
    Unexpected failure that escaped the orchestrator loop.

    The message is persisted as the run's error_message.
    """

    pass


def is_auth_error_message(message: str | None) -> bool:
    """
    Check whether an error message points at a credential problem.

    Args:
        message: Error message from a failed attempt

    Returns:
        True if the message mentions an API key, unauthorized or authentication

    Example:
        >>> is_auth_error_message("401 Unauthorized - invalid api key")
        True
        >>> is_auth_error_message("LLM request timed out")
        False
    """
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in AUTH_ERROR_MARKERS)
