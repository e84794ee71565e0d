"""
Scripted gateway for tests and dry runs.

MockGateway implements the same call() contract as ProviderGateway without
any network access. Responses are scripted per provider: a single string is
returned on every call, a list is consumed in order (the last entry repeats
once the list is exhausted), and Exception instances are raised instead of
returned.

Example:
    >>> gateway = MockGateway(
    ...     responses={
    ...         "openai": ["1. Acme\\n2. Globex", RuntimeError("boom")],
    ...         "gemini": "1. Globex\\n2. Acme",
    ...     }
    ... )
    >>> await gateway.call("openai", "prompt")
    '1. Acme\\n2. Globex'
    >>> await gateway.call("openai", "prompt")
    Traceback (most recent call last):
    ...
    RuntimeError: boom
    >>> len(gateway.calls)
    2
"""

import logging
from dataclasses import dataclass, field

from llm_rank_watcher.config.providers import ProviderId
from llm_rank_watcher.gateway.transports import CallOptions

logger = logging.getLogger(__name__)

ScriptedResponse = str | Exception


@dataclass
class RecordedCall:
    """One call received by the mock."""

    provider_id: ProviderId
    prompt: str
    options: CallOptions | None


@dataclass
class MockGateway:
    """
    Deterministic stand-in for ProviderGateway.

    Attributes:
        responses: Per-provider scripted responses keyed by provider id value
        default_response: Returned for providers without a script
        calls: Every call received, in order
    """

    responses: dict[str, ScriptedResponse | list[ScriptedResponse]] = field(
        default_factory=dict
    )
    default_response: str = ""
    calls: list[RecordedCall] = field(default_factory=list)

    def __post_init__(self):
        self._cursors: dict[str, int] = {}
        logger.info(
            f"Initialized MockGateway with scripts for {len(self.responses)} providers"
        )

    def calls_for(self, provider_id: ProviderId | str) -> list[RecordedCall]:
        """Return the recorded calls made to one provider."""
        provider_id = ProviderId(provider_id)
        return [call for call in self.calls if call.provider_id == provider_id]

    async def call(
        self,
        provider_id: ProviderId | str,
        prompt: str,
        options: CallOptions | None = None,
    ) -> str:
        provider_id = ProviderId(provider_id)
        self.calls.append(RecordedCall(provider_id, prompt, options))

        script = self.responses.get(provider_id.value, self.default_response)
        if isinstance(script, list):
            if not script:
                return self.default_response
            index = self._cursors.get(provider_id.value, 0)
            self._cursors[provider_id.value] = index + 1
            script = script[min(index, len(script) - 1)]

        if isinstance(script, Exception):
            raise script
        return script
