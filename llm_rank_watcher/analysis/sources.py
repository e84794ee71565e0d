"""
Source discovery: which platforms drive LLM rankings, and where the item is.

Two questions go to a search-backed model (Perplexity sonar-pro by default):

- discover_query_sources(query): which review sites, directories and other
  platforms the model would consult to rank businesses for a query
- discover_business_sources(name, location): where the tracked item is
  actually listed, reviewed or mentioned

Both answer with a JSON array of source entries. Comparing the two lists
with analyze_blind_spots() shows the platforms that matter for a query but
where the item has no presence.

Discovery never raises: any gateway or parse failure yields [] and a log
line, so a source lookup cannot break an analysis.
"""

import json
import logging
import re
from dataclasses import dataclass

from llm_rank_watcher.config.providers import ProviderId
from llm_rank_watcher.exceptions import SourceParseError
from llm_rank_watcher.gateway.gateway import LLMGateway
from llm_rank_watcher.gateway.transports import CallOptions

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_PROVIDER = ProviderId.PERPLEXITY
DEFAULT_SOURCE_MODEL = "sonar-pro"
SOURCE_MAX_TOKENS = 1500

MAX_SOURCES = 12
MAX_RECOVERED_SOURCES = 5

IMPORTANCE_LEVELS = ("high", "medium", "low")
UNKNOWN_PLATFORM = "Unknown Platform"

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*")
FIRST_OBJECT_PATTERN = re.compile(r"\{.*?\}", re.DOTALL)
PLATFORM_OBJECT_PATTERN = re.compile(r'\{[^{}]*"platform"[^{}]*\}')

# Characters of an unparseable answer kept in the log line
LOG_PREVIEW_CHARS = 500


@dataclass(frozen=True)
class SourceInfo:
    """
    One platform that informs rankings or lists the item.

    Attributes:
        platform: Platform name ("TripAdvisor", "Google Business Profile")
        url: Platform or listing URL
        description: How the source helps rankings, or what the listing holds
        importance: "high", "medium" or "low"
        category: "Review Platform", "Business Directory", "Social Media", ...
    """

    platform: str
    url: str
    description: str
    importance: str
    category: str


@dataclass(frozen=True)
class BlindSpotReport:
    """
    Query sources compared against the item's own presence.

    Attributes:
        missing_platforms: Query sources where the item is not present
        underutilized_platforms: Item listings that do not inform the query
        opportunities: Missing platforms of high importance
    """

    missing_platforms: list[SourceInfo]
    underutilized_platforms: list[SourceInfo]
    opportunities: list[SourceInfo]


SOURCE_FORMAT = """Format your response as a JSON array with this structure:
[
  {{
    "platform": "Platform Name",
    "url": "https://example.com",
    "description": "{description}",
    "importance": "high|medium|low",
    "category": "{categories}"
  }}
]"""


def build_query_sources_prompt(query: str) -> str:
    """Prompt asking which sources the model would use to rank businesses for query."""
    response_format = SOURCE_FORMAT.format(
        description="Brief description of how this source helps with rankings",
        categories="Review Platform|Business Directory|Social Media|Local Listings|Other",
    )
    return f"""Analyze what sources and platforms you would use to rank businesses for this query: "{query}"

List the specific websites, platforms and data sources you would reference to create an accurate business ranking. Include review sites, directories, social media platforms and other relevant sources.

{response_format}

Requirements:
- Focus on sources that actually influence business rankings
- Rate importance (high/medium/low) by reliability and coverage
- Include general platforms (Google, Yelp) and niche ones relevant to the query
- Use real platform domains for URLs
- Limit to the 8-12 most important sources
- Prioritize sources with user reviews, ratings and business information"""


def build_business_sources_prompt(business_name: str, location: str | None = None) -> str:
    """Prompt asking where the business is listed, reviewed or mentioned online."""
    where = f" in {location}" if location else ""
    response_format = SOURCE_FORMAT.format(
        description="Description of the business presence on this platform",
        categories="Review Platform|Business Directory|Social Media|Local Listings|News|Other",
    )
    return f"""Find and list the specific websites and platforms where "{business_name}"{where} is mentioned, reviewed, or listed.

Provide actual sources where this business appears online, not theoretical ones.

{response_format}

Include:
- Review platforms with business listings
- Business directories and local listings
- Social media presence
- Industry-specific platforms
- Local tourism or business websites
- News mentions or features"""


def _source_from_dict(entry: dict) -> SourceInfo:
    importance = entry.get("importance")
    return SourceInfo(
        platform=str(entry.get("platform") or "").strip() or UNKNOWN_PLATFORM,
        url=str(entry.get("url") or "https://example.com").strip(),
        description=str(entry.get("description") or "No description available").strip(),
        importance=importance if importance in IMPORTANCE_LEVELS else "medium",
        category=str(entry.get("category") or "Other").strip(),
    )


def _known_sources(entries: list, limit: int) -> list[SourceInfo]:
    sources = [_source_from_dict(entry) for entry in entries if isinstance(entry, dict)]
    return [source for source in sources if source.platform != UNKNOWN_PLATFORM][:limit]


def extract_json_array(text: str) -> str:
    """
    Cut the first balanced JSON array out of text.

    Without any "[", the first {...} object is wrapped in an array. An
    unbalanced array is returned from its "[" onward, for json.loads to
    reject.
    """
    start = text.find("[")
    if start == -1:
        match = FIRST_OBJECT_PATTERN.search(text)
        return f"[{match.group(0)}]" if match else text

    depth = 0
    for index in range(start, len(text)):
        if text[index] == "[":
            depth += 1
        elif text[index] == "]":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return text[start:]


def _recover_partial_sources(response: str) -> list[SourceInfo]:
    entries = []
    for fragment in PLATFORM_OBJECT_PATTERN.findall(response):
        try:
            entries.append(json.loads(fragment))
        except json.JSONDecodeError:
            continue
    return _known_sources(entries, MAX_RECOVERED_SOURCES)


def parse_source_response(response: str) -> list[SourceInfo]:
    """
    Parse a source discovery answer.

    Entries get defaults for missing fields, unknown importance becomes
    "medium", nameless entries are dropped and at most MAX_SOURCES are kept.
    When the array is not valid JSON, complete {...} objects naming a
    platform are recovered individually (at most MAX_RECOVERED_SOURCES).

    Args:
        response: Raw model answer (may wrap the array in prose or code fences)

    Returns:
        Sources in answer order ([] for an empty array)

    Raises:
        SourceParseError: Not a JSON array and nothing could be recovered
    """
    cleaned = CODE_FENCE_PATTERN.sub("", response).strip()

    try:
        parsed = json.loads(extract_json_array(cleaned))
        if not isinstance(parsed, list):
            raise ValueError("response is not a JSON array")
    except ValueError as e:
        recovered = _recover_partial_sources(cleaned)
        if not recovered:
            raise SourceParseError(f"Unusable source discovery response: {e}") from e
        logger.info(f"Recovered {len(recovered)} sources from partial JSON")
        return recovered

    return _known_sources(parsed, MAX_SOURCES)


class SourceDiscoverer:
    """
    Ask a provider which platforms matter for a query or list an item.

    Attributes:
        provider_id: Provider used for discovery calls
        model: Model used for discovery calls
    """

    def __init__(
        self,
        gateway: LLMGateway,
        provider_id: ProviderId = DEFAULT_SOURCE_PROVIDER,
        model: str | None = DEFAULT_SOURCE_MODEL,
        timeout: float | None = None,
    ):
        self._gateway = gateway
        self.provider_id = provider_id
        self.model = model
        self.timeout = timeout

    async def discover_query_sources(self, query: str) -> list[SourceInfo]:
        """Sources the model would consult to rank businesses for query; [] on failure."""
        return await self._discover(build_query_sources_prompt(query), f"query {query!r}")

    async def discover_business_sources(
        self, business_name: str, location: str | None = None
    ) -> list[SourceInfo]:
        """Platforms where the business appears; [] on failure."""
        return await self._discover(
            build_business_sources_prompt(business_name, location),
            f"business {business_name!r}",
        )

    async def _discover(self, prompt: str, subject: str) -> list[SourceInfo]:
        options = CallOptions(
            model=self.model,
            reasoning_effort="medium",
            max_tokens=SOURCE_MAX_TOKENS,
            timeout=self.timeout,
        )

        try:
            response = await self._gateway.call(self.provider_id, prompt, options)
        except Exception as e:
            logger.warning(f"Source discovery failed for {subject}: {e}")
            return []

        try:
            sources = parse_source_response(response)
        except SourceParseError as e:
            logger.warning(
                f"Source discovery for {subject} returned no usable sources: {e}; "
                f"answer starts {response[:LOG_PREVIEW_CHARS]!r}"
            )
            return []

        logger.info(f"Found {len(sources)} sources for {subject}")
        return sources


def analyze_blind_spots(
    query_sources: list[SourceInfo], business_sources: list[SourceInfo]
) -> BlindSpotReport:
    """
    Compare the platforms behind a query with the item's own presence.

    Platform names are compared case-insensitively.
    """
    query_platforms = {source.platform.lower() for source in query_sources}
    business_platforms = {source.platform.lower() for source in business_sources}

    missing = [s for s in query_sources if s.platform.lower() not in business_platforms]
    return BlindSpotReport(
        missing_platforms=missing,
        underutilized_platforms=[
            s for s in business_sources if s.platform.lower() not in query_platforms
        ],
        opportunities=[s for s in missing if s.importance == "high"],
    )
