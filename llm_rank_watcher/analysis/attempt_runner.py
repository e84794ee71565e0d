"""
Attempt runner: one model call for one (query, provider) pair.

An attempt builds the ranking prompt, calls the provider through the
gateway, parses the numbered list, optionally standardizes the names,
locates the tracked item and truncates the list around it. Whatever goes
wrong inside those steps, run() returns an AttemptOutcome; it never raises.

Example:
    >>> runner = AttemptRunner(gateway)
    >>> outcome = await runner.run(provider, "best bakeries in Cork", "Acme Bakery", 25)
    >>> outcome.success, outcome.found_rank
    (True, 3)
"""

import logging
import math
import time
from dataclasses import dataclass, field

from llm_rank_watcher.extractor.fuzzy_match import find_best_match
from llm_rank_watcher.extractor.parser import parse_ranked_list
from llm_rank_watcher.extractor.standardizer import NameStandardizer
from llm_rank_watcher.gateway.gateway import LLMGateway
from llm_rank_watcher.gateway.transports import CallOptions
from llm_rank_watcher.storage.models import Provider

logger = logging.getLogger(__name__)

# Truncated lists end on a multiple of this many entries
TRUNCATION_BLOCK = 5


@dataclass
class AttemptOutcome:
    """
    Structured result of one attempt.

    Attributes:
        ranked_names: Names kept after truncation ([] on failure)
        found_rank: 1-based rank of the tracked item, or None
        found_name: List entry matched as the tracked item, or None
        success: False if any step raised
        error: Error message when success is False
        response_time_ms: Wall time of the whole attempt
    """

    ranked_names: list[str] = field(default_factory=list)
    found_rank: int | None = None
    found_name: str | None = None
    success: bool = True
    error: str | None = None
    response_time_ms: int = 0


def build_ranking_prompt(query: str, target_name: str, count: int) -> str:
    """
    Build the prompt asking for exactly count numbered business names.

    Args:
        query: Natural-language ranking query
        target_name: Tracked item's name, to be written verbatim if listed
        count: Number of results requested

    Returns:
        Prompt text
    """
    return f"""You are a helpful assistant that provides ranked lists of businesses. Always give a complete ranked list and never ask clarifying questions.

Query: "{query}"

Make reasonable assumptions and list exactly {count} businesses that best match this query. If the query mentions a location, include businesses in and around that area.

Answer with a plain numbered list of business names only:

1. Business Name One
2. Business Name Two
3. Business Name Three
...

Rules:
- List exactly {count} businesses, ranked from best to worst match
- Use each business's name as it appears on Google Maps
- If "{target_name}" is one of the businesses, write it exactly as "{target_name}"
- No explanations, questions or text other than the numbered list"""


def truncation_limit(found_rank: int | None, total: int) -> int:
    """
    Number of entries to keep from a list of length total.

    The list is cut at the end of the block of TRUNCATION_BLOCK entries
    that contains the tracked item; without a match it is kept whole.

    Example:
        >>> truncation_limit(7, 25)
        10
        >>> truncation_limit(5, 25)
        5
        >>> truncation_limit(None, 25)
        25
    """
    if found_rank is None:
        return total
    return min(math.ceil(found_rank / TRUNCATION_BLOCK) * TRUNCATION_BLOCK, total)


class AttemptRunner:
    """
    Executes single ranking attempts.

    Attributes:
        reasoning_effort: Passed to providers that accept one
        timeout: Per-call deadline override (None uses the gateway default)
    """

    def __init__(
        self,
        gateway: LLMGateway,
        standardizer: NameStandardizer | None = None,
        reasoning_effort: str = "low",
        timeout: float | None = None,
    ):
        self._gateway = gateway
        self._standardizer = standardizer
        self.reasoning_effort = reasoning_effort
        self.timeout = timeout

    async def run(
        self,
        provider: Provider,
        query_text: str,
        target_name: str,
        requested_count: int,
    ) -> AttemptOutcome:
        """
        Run one attempt against provider.

        Args:
            provider: Provider to call (its default_model is used)
            query_text: Ranking query
            target_name: Tracked item's name
            requested_count: Number of results to ask for

        Returns:
            AttemptOutcome; success=False with the error message on any failure
        """
        started = time.monotonic()

        try:
            response = await self._gateway.call(
                provider.canonical_id,
                build_ranking_prompt(query_text, target_name, requested_count),
                CallOptions(
                    model=provider.default_model,
                    reasoning_effort=self.reasoning_effort,
                    timeout=self.timeout,
                ),
            )

            names = parse_ranked_list(response)
            if self._standardizer is not None:
                names = await self._standardizer.standardize(names, target_name)

            match = find_best_match(target_name, names)
            kept = names[: truncation_limit(match.rank, len(names))]

            outcome = AttemptOutcome(
                ranked_names=kept,
                found_rank=match.rank,
                found_name=match.name,
                success=True,
                response_time_ms=_elapsed_ms(started),
            )
        except Exception as e:
            logger.warning(f"Attempt against {provider.name} failed: {e}")
            return AttemptOutcome(
                success=False,
                error=str(e) or type(e).__name__,
                response_time_ms=_elapsed_ms(started),
            )

        logger.debug(
            f"{provider.name}: {len(names)} names parsed, kept {len(kept)}, "
            f"target rank {match.rank}"
        )
        return outcome


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
