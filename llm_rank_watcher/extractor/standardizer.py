"""
Name standardization via a secondary model call.

After an answer is parsed, the ranked names can be passed through a second
model that rewrites each one to its official listing name and folds
variants ("The Wild Rover Tours" / "Wild Rover Tours") together. This makes
repeated samples line up when they are aggregated.

Standardization is strictly best-effort:
- lists longer than max_names are returned unchanged
- any gateway or parse failure returns the input list unchanged
- the tracked item's own name is always kept verbatim

Results are cached per original name in a StandardizationCache. The cache
is created once per process by the caller and injected, so concurrent runs
share it; entries are idempotent, so racing writers need no lock.

Example:
    >>> cache = StandardizationCache()
    >>> standardizer = NameStandardizer(gateway, cache)
    >>> await standardizer.standardize(
    ...     ["The Wild Rover Tours", "Wild Rover Tours", "Pat Liddy's Walking Tours"],
    ...     target_name="Wild Rover Tours",
    ... )
    ['Wild Rover Tours', "Pat Liddy's Walking Tours"]
"""

import json
import logging
import re

from llm_rank_watcher.config.providers import ProviderId
from llm_rank_watcher.exceptions import StandardizationParseError
from llm_rank_watcher.gateway.gateway import LLMGateway
from llm_rank_watcher.gateway.transports import CallOptions

logger = logging.getLogger(__name__)

STANDARDIZATION_MAX_NAMES = 50

JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


class StandardizationCache:
    """
    Original name -> standardized name, shared for the process lifetime.

    Keys are the original name lowercased and trimmed. An empty standardized
    value records that the model removed the name. No eviction, no
    persistence.

    Example:
        >>> cache = StandardizationCache()
        >>> cache.put("  The Shelbourne, Dublin ", "The Shelbourne")
        >>> cache.get("the shelbourne, dublin")
        'The Shelbourne'
        >>> cache.stats()
        {'size': 1, 'hits': 1, 'misses': 0}
    """

    def __init__(self):
        self._entries: dict[str, str] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(name: str) -> str:
        return name.lower().strip()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> str | None:
        """Return the cached value for name, counting the hit or miss."""
        value = self._entries.get(self.key(name))
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def peek(self, name: str) -> str | None:
        """Return the cached value for name without touching the counters."""
        return self._entries.get(self.key(name))

    def put(self, name: str, standardized: str) -> None:
        self._entries[self.key(name)] = standardized

    def clear(self) -> None:
        """Drop all entries and reset counters."""
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict[str, int]:
        return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}


def build_standardization_prompt(names: list[str], target_name: str) -> str:
    """
    Build the prompt asking for official names as JSON.

    Args:
        names: Names to standardize (already de-duplicated)
        target_name: The tracked item's name, to be preserved exactly

    Returns:
        Prompt text
    """
    numbered = "\n".join(f"{index}. {name}" for index, name in enumerate(names, start=1))
    return f"""You are a business name standardization assistant. Convert each business name to its official Google Maps business name and eliminate duplicates.

INSTRUCTIONS:
1. For each name, give the exact official Google Maps business name
2. If a name matches or is very similar to "{target_name}", return exactly "{target_name}"
3. If several names are variations of the same business (for example "Wild Rover Tours" and "The Wild Rover Tours"), give all of them the same standardized name
4. Prefer names WITHOUT a leading "The" unless that is the official name
5. Prefer singular forms unless the plural is the official name
6. Remove city names and descriptors that are not part of the official name
7. If a name is not a real, registered business, use null as its standardized name

BUSINESS NAMES:
{numbered}

RESPONSE FORMAT (JSON only, one entry per input name, in input order):
{{
  "standardizations": [
    {{"original": "The Wild Rover Tours", "standardized": "Wild Rover Tours"}}
  ]
}}"""


def parse_standardization_response(response: str, originals: list[str]) -> dict[str, str]:
    """
    Parse the model's JSON answer into an original -> standardized mapping.

    Entries whose original is not one of ours are ignored; originals the
    model skipped map to themselves. A null or empty standardized value maps
    to "" (name removed).

    Args:
        response: Raw model answer (may wrap the JSON in prose or code fences)
        originals: Names that were sent

    Returns:
        Mapping covering every name in originals

    Raises:
        StandardizationParseError: No JSON object, invalid JSON, wrong shape,
            or not a single usable entry
    """
    match = JSON_OBJECT_PATTERN.search(response)
    if not match:
        raise StandardizationParseError("No JSON object found in standardization response")

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise StandardizationParseError(f"Invalid JSON in standardization response: {e}") from e

    entries = parsed.get("standardizations") if isinstance(parsed, dict) else None
    if not isinstance(entries, list):
        raise StandardizationParseError("Standardization response missing 'standardizations' list")

    by_key = {StandardizationCache.key(name): name for name in originals}
    mapping: dict[str, str] = {}

    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("original"), str):
            continue
        original = by_key.get(StandardizationCache.key(entry["original"]))
        if original is None:
            continue
        standardized = entry.get("standardized")
        mapping[original] = standardized.strip() if isinstance(standardized, str) else ""

    if not mapping:
        raise StandardizationParseError("Standardization response had no usable entries")

    for name in originals:
        mapping.setdefault(name, name)
    return mapping


class NameStandardizer:
    """
    Canonicalize ranked names through a secondary model, with caching.

    Attributes:
        provider_id: Provider used for standardization calls
        model: Optional model override
        max_names: Lists longer than this are returned unchanged
    """

    def __init__(
        self,
        gateway: LLMGateway,
        cache: StandardizationCache,
        provider_id: ProviderId = ProviderId.GEMINI,
        model: str | None = None,
        max_names: int = STANDARDIZATION_MAX_NAMES,
        timeout: float | None = None,
    ):
        self._gateway = gateway
        self._cache = cache
        self.provider_id = provider_id
        self.model = model
        self.max_names = max_names
        self.timeout = timeout

    @property
    def cache(self) -> StandardizationCache:
        return self._cache

    async def standardize(self, names: list[str], target_name: str) -> list[str]:
        """
        Return names rewritten to their standardized forms.

        Args:
            names: Ranked names from the parser
            target_name: Tracked item's name; always preserved verbatim

        Returns:
            Standardized names in the original order, with names that
            collapse to the same standardized form kept once (first position)
            and names the model removed dropped. On any failure, or when
            names exceeds max_names, the input list unchanged.
        """
        if not names:
            return []

        if len(names) > self.max_names:
            logger.info(
                f"Skipping standardization for {len(names)} names "
                f"(limit {self.max_names})"
            )
            return list(names)

        uncached: list[str] = []
        pending_keys: set[str] = set()
        for name in names:
            key = StandardizationCache.key(name)
            if key in pending_keys or self._cache.get(name) is not None:
                continue
            pending_keys.add(key)
            uncached.append(name)

        if uncached:
            try:
                response = await self._gateway.call(
                    self.provider_id,
                    build_standardization_prompt(uncached, target_name),
                    CallOptions(model=self.model, timeout=self.timeout),
                )
                mapping = parse_standardization_response(response, uncached)
            except Exception as e:
                # Standardization is advisory; keep the parsed names
                logger.warning(
                    f"Name standardization failed, using original names: {e}"
                )
                return list(names)

            for original, standardized in mapping.items():
                self._cache.put(original, standardized)

        return self._apply(names, target_name)

    def _apply(self, names: list[str], target_name: str) -> list[str]:
        target_key = StandardizationCache.key(target_name)
        result: list[str] = []
        seen: set[str] = set()

        for name in names:
            if StandardizationCache.key(name) == target_key:
                standardized = target_name
            else:
                standardized = self._cache.peek(name)
                if standardized is None:
                    standardized = name

            if not standardized:
                logger.debug(f"Standardization removed {name!r}")
                continue

            key = StandardizationCache.key(standardized)
            if key in seen:
                continue
            seen.add(key)
            result.append(standardized)

        return result
