"""
Provider Gateway: one call contract over heterogeneous LLM back-ends.

    text = await gateway.call(provider_id, prompt, options)

The gateway looks up the provider's transport in TRANSPORTS, builds the
request, sends it with httpx inside a single deadline (retrying transport
errors with tenacity), and returns the extracted plain text.

Failure contract:
- No API key for the provider: APIKeyMissingError, raised before any network I/O
- Deadline expired: ProviderTimeoutError("LLM request timed out")
- Non-2xx status: ProviderHttpError(provider, status_code, body)
- Connection failure after retries: ProviderError
- 2xx with a non-JSON body: ProviderResponseError

Example:
    >>> gateway = ProviderGateway({ProviderId.OPENAI: "sk-..."})
    >>> text = await gateway.call(ProviderId.OPENAI, "List 5 cafes in Dublin")

Security:
    - API keys live only in request headers; they are never logged and never
      appear in exception messages
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Protocol

import httpx

from llm_rank_watcher.config.providers import ProviderId, get_provider_info
from llm_rank_watcher.exceptions import (
    APIKeyMissingError,
    ConfigurationError,
    ProviderError,
    ProviderHttpError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from llm_rank_watcher.gateway.retry_config import (
    DEFAULT_TIMEOUT_SECONDS,
    MAX_ERROR_BODY_CHARS,
    create_retry_decorator,
)
from llm_rank_watcher.gateway.transports import (
    TRANSPORTS,
    CallOptions,
    HttpRequestSpec,
    ProviderTransport,
)

logger = logging.getLogger(__name__)


class LLMGateway(Protocol):
    """
    Protocol for anything that turns a prompt into provider text.

    Implemented by ProviderGateway and MockGateway; the attempt runner and
    name standardizer depend only on this.
    """

    async def call(
        self,
        provider_id: ProviderId | str,
        prompt: str,
        options: CallOptions | None = None,
    ) -> str:
        """Return the provider's answer text or raise a ProviderError/ConfigurationError."""
        ...


class ProviderGateway:
    """
    Uniform "prompt in, text out" access to every configured provider.

    Attributes:
        timeout: Default deadline in seconds for one call (retries included)

    Example:
        >>> gateway = ProviderGateway(
        ...     {ProviderId.OPENAI: "sk-...", ProviderId.GEMINI: "AIza..."},
        ...     timeout=60.0,
        ... )
        >>> await gateway.call("gemini", "Rank the best bakeries in Cork")
        '1. ...'
    """

    def __init__(
        self,
        api_keys: Mapping[ProviderId | str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transports: Mapping[ProviderId, ProviderTransport] | None = None,
    ):
        if timeout <= 0:
            raise ValueError(f"timeout must be positive (got: {timeout})")

        self._api_keys = {
            ProviderId(provider_id): key
            for provider_id, key in (api_keys or {}).items()
            if key
        }
        self._transports = dict(transports or TRANSPORTS)
        self.timeout = timeout

        logger.info(
            "Initialized provider gateway for: "
            + (", ".join(sorted(self._api_keys)) or "no providers with keys")
        )

    async def call(
        self,
        provider_id: ProviderId | str,
        prompt: str,
        options: CallOptions | None = None,
    ) -> str:
        """
        Send a prompt to a provider and return its plain-text answer.

        Args:
            provider_id: Canonical provider id (or its string value)
            prompt: Prompt text
            options: Optional model/timeout/sampling options

        Returns:
            Extracted answer text ("" if the response carried none)

        Raises:
            ConfigurationError: Unknown provider, no transport, or missing API key
            ProviderTimeoutError: Deadline expired
            ProviderHttpError: Provider answered with a non-2xx status
            ProviderResponseError: Provider answered 2xx with a non-JSON body
            ProviderError: Connection failed after retries
        """
        try:
            provider_id = ProviderId(provider_id)
        except ValueError as e:
            raise ConfigurationError(f"Unknown LLM provider: {provider_id!r}") from e

        info = get_provider_info(provider_id)
        transport = self._transports.get(provider_id)
        if transport is None:
            raise ConfigurationError(f"{info.display_name} transport not configured")

        api_key = self._api_keys.get(provider_id)
        if not api_key:
            raise APIKeyMissingError(f"{info.display_name} API key not configured")

        options = options or CallOptions()
        model = options.model or info.default_model
        deadline = options.timeout or self.timeout
        request = transport.build_request(api_key, model, prompt, options)

        logger.debug(f"Sending request to {info.display_name}: model={model}")

        try:
            response = await asyncio.wait_for(
                self._post(request, deadline), timeout=deadline
            )
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.warning(
                f"{info.display_name} request timed out after {deadline}s: model={model}"
            )
            raise ProviderTimeoutError("LLM request timed out") from e
        except httpx.TransportError as e:
            logger.warning(f"{info.display_name} connection error: model={model}, error={e}")
            raise ProviderError(f"{info.display_name} connection error: {e}") from e

        if not response.is_success:
            body = response.text[:MAX_ERROR_BODY_CHARS]
            logger.warning(
                f"{info.display_name} API error: status={response.status_code}, model={model}"
            )
            raise ProviderHttpError(
                info.display_name, response.status_code, body, response.reason_phrase
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(
                f"{info.display_name} returned a non-JSON response body"
            ) from e

        text = transport.extract_text(data)
        if not text:
            logger.warning(f"{info.display_name} response contained no answer text")
        return text

    @create_retry_decorator()
    async def _post(self, request: HttpRequestSpec, timeout: float) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(
                request.url,
                json=request.payload,
                headers=request.headers,
            )
