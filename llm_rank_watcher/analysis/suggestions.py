"""
Query suggestions: ask a model which ranking queries fit the tracked item.

A good tracking query makes an LLM answer with an open-ended ranked list
("best walking tours in Dublin"), not a fixed-size list, a how-to or a
comparison. The suggester asks one provider for such queries as JSON and
returns them with the model's reasoning.

Suggestions are best-effort: a gateway failure or an answer with nothing
usable gives an empty list and a warning log line, never an exception.

Example:
    >>> suggester = QuerySuggester(gateway)
    >>> await suggester.suggest("Wild Rover Tours", location="Dublin")
    [QuerySuggestion(text='best day tours from Dublin', reasoning='...'), ...]
"""

import json
import logging
import re
from dataclasses import dataclass

from llm_rank_watcher.config.providers import ProviderId
from llm_rank_watcher.exceptions import SuggestionParseError
from llm_rank_watcher.gateway.gateway import LLMGateway
from llm_rank_watcher.gateway.transports import CallOptions

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTION_COUNT = 5

# Sampling for suggestion calls
SUGGESTION_MAX_TOKENS = 1000
SUGGESTION_TEMPERATURE = 0.7

JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)
CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*")

# Salvage path for broken JSON: a quoted query on its own line, or the value
# of a "text" key. Other keys ("reasoning": ...) never match.
QUOTED_QUERY_PATTERN = re.compile(
    r'^\s*(?:[-*{]|\d+[.)])?\s*(?:"text"\s*:\s*)?"([^"]{11,})"(?!\s*:)',
    re.MULTILINE,
)
SALVAGED_REASONING = "Generated query suggestion"


@dataclass(frozen=True)
class QuerySuggestion:
    """One suggested tracking query and why it should produce a ranked list."""

    text: str
    reasoning: str


def build_suggestion_prompt(
    item_name: str,
    location: str | None = None,
    business_type: str | None = None,
    count: int = DEFAULT_SUGGESTION_COUNT,
) -> str:
    """
    Build the prompt asking for ranking-style search queries as JSON.

    Args:
        item_name: Tracked item's name
        location: Optional city or area to anchor the queries
        business_type: Optional kind of business
        count: Number of queries to ask for

    Returns:
        Prompt text
    """
    return f"""You are an expert in local search. Generate {count} realistic search queries that potential customers would use to find a business like "{item_name}". Only suggest queries where this business has a realistic chance of appearing in the top 25 results.

BUSINESS DETAILS:
- Name: {item_name}
- City: {location or "Not specified"}
- Business type: {business_type or "Not specified"}

REQUIREMENTS:
1. Each query must make an AI assistant answer with a RANKED LIST of businesses
2. Use ranking language only: "best", "top", "most recommended", "highest rated"
3. No fixed-size lists ("top 10", "top 5"); keep the ranking open-ended
4. No informational queries ("where to find", "how to", "what is")
5. No review queries ("reviews", "ratings", "feedback")
6. No comparison queries ("compare", "vs", "difference between")
7. Include the city when one is given
8. Consider market size: some niches only have a few businesses
9. Vary query length and specificity

GOOD: "best pizza restaurants in Dublin", "most recommended sushi places downtown"
BAD: "top 10 pizza places Dublin", "where to find pizza in Dublin", "reviews of Pizza Palace"

RESPONSE FORMAT (JSON only):
{{
  "suggestions": [
    {{"text": "best pizza delivery Dublin", "reasoning": "Open-ended 'best' ranking of delivery options"}}
  ]
}}"""


def _salvage_quoted_queries(response: str, limit: int) -> list[QuerySuggestion]:
    return [
        QuerySuggestion(text=match.strip(), reasoning=SALVAGED_REASONING)
        for match in QUOTED_QUERY_PATTERN.findall(response)
    ][:limit]


def parse_query_suggestions(
    response: str, limit: int = DEFAULT_SUGGESTION_COUNT
) -> list[QuerySuggestion]:
    """
    Parse the model's answer into suggestions.

    The JSON object may be wrapped in prose or code fences. Entries without
    text are dropped. When the answer is not valid JSON, quoted queries are
    salvaged line by line (at most limit of them).

    Args:
        response: Raw model answer
        limit: Cap on salvaged suggestions

    Returns:
        Suggestions in answer order

    Raises:
        SuggestionParseError: Neither the JSON nor the salvage path found a
            usable suggestion
    """
    cleaned = CODE_FENCE_PATTERN.sub("", response).strip()

    try:
        match = JSON_OBJECT_PATTERN.search(cleaned)
        if not match:
            raise ValueError("no JSON object")
        parsed = json.loads(match.group(0))
        entries = parsed.get("suggestions") if isinstance(parsed, dict) else None
        if not isinstance(entries, list):
            raise ValueError("missing 'suggestions' list")
    except ValueError as e:
        salvaged = _salvage_quoted_queries(cleaned, limit)
        if not salvaged:
            raise SuggestionParseError(f"Unusable query suggestion response: {e}") from e
        logger.info(f"Recovered {len(salvaged)} query suggestions from malformed JSON")
        return salvaged

    suggestions = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        text = entry.get("text")
        if not isinstance(text, str) or not text.strip():
            continue
        reasoning = entry.get("reasoning")
        suggestions.append(
            QuerySuggestion(
                text=text.strip(),
                reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
            )
        )

    if not suggestions:
        raise SuggestionParseError("Query suggestion response had no usable entries")
    return suggestions


class QuerySuggester:
    """
    Suggest tracking queries for an item through one provider.

    Attributes:
        provider_id: Provider asked for suggestions
        model: Optional model override
    """

    def __init__(
        self,
        gateway: LLMGateway,
        provider_id: ProviderId = ProviderId.OPENAI,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self._gateway = gateway
        self.provider_id = provider_id
        self.model = model
        self.timeout = timeout

    async def suggest(
        self,
        item_name: str,
        location: str | None = None,
        business_type: str | None = None,
        count: int = DEFAULT_SUGGESTION_COUNT,
    ) -> list[QuerySuggestion]:
        """
        Return suggested queries, or [] when the provider or its answer fails.

        Args:
            item_name: Tracked item's name
            location: Optional city or area
            business_type: Optional kind of business
            count: Number of queries to ask for
        """
        prompt = build_suggestion_prompt(item_name, location, business_type, count)
        options = CallOptions(
            model=self.model,
            max_tokens=SUGGESTION_MAX_TOKENS,
            temperature=SUGGESTION_TEMPERATURE,
            timeout=self.timeout,
        )

        try:
            response = await self._gateway.call(self.provider_id, prompt, options)
            suggestions = parse_query_suggestions(response, limit=count)
        except Exception as e:
            logger.warning(f"Query suggestion failed for {item_name!r}: {e}")
            return []

        logger.info(f"Generated {len(suggestions)} query suggestions for {item_name!r}")
        return suggestions
