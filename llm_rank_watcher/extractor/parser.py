"""
Ranked-list parsing for LLM Rank Watcher.

Turns a raw model answer into an ordered, de-duplicated list of names.

Only numbered lines count: after trimming, a line must start with an
integer followed by "." or ")" (whitespace after the marker is optional),
and the rest of the line is the name. Everything else (intro sentences,
notes, blank lines) is dropped.

Duplicates are detected on a normalized key (lowercase, no leading "the",
no trailing corporate suffix, no trailing plural "s", single spaces). The
first occurrence keeps its position; when a later duplicate is written
without a leading "The" and the kept one has it, the later spelling replaces
the kept text in place.

Example:
    >>> text = "Here you go:\\n1. The Brazen Head\\n2) Brazen Head\\n3. Temple Bar Pubs"
    >>> parse_ranked_list(text)
    ['Brazen Head', 'Temple Bar Pubs']
"""

import logging
import re

logger = logging.getLogger(__name__)

NUMBERED_LINE_PATTERN = re.compile(r"^\d+[.)]\s*(.+)$")
NUMBERED_PREFIX_PATTERN = re.compile(r"^\d+[.)]")
LEADING_ARTICLE_PATTERN = re.compile(r"^the\s+")
CORPORATE_SUFFIX_PATTERN = re.compile(r"\s+(ltd|llc|inc|corp|co)\.?$")
TRAILING_PLURAL_PATTERN = re.compile(r"(\w)s$")
WHITESPACE_PATTERN = re.compile(r"\s+")


def extract_names(text: str) -> list[str]:
    """
    Extract names from numbered-list lines, preserving order.

    Args:
        text: Raw model answer

    Returns:
        Trimmed names from every numbered line (duplicates included)

    Example:
        >>> extract_names("1. Acme Co\\n2. Acme Co\\nNote: see above\\n3. The Acme Company")
        ['Acme Co', 'Acme Co', 'The Acme Company']
    """
    names = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        match = NUMBERED_LINE_PATTERN.match(line)
        if match:
            names.append(match.group(1).strip())
        elif NUMBERED_PREFIX_PATTERN.match(line):
            logger.warning(f"Skipping numbered line without a name: {line!r}")
    return names


def normalize_name(name: str) -> str:
    """
    Build the duplicate-detection key for a name.

    Steps, in order: lowercase and trim, strip a leading "the ", strip a
    trailing ltd/llc/inc/corp/co (optionally dotted), drop a trailing "s"
    after a word character, collapse whitespace.

    Example:
        >>> normalize_name("  The Acme   Co. ")
        'acme'
        >>> normalize_name("Walking Tours")
        'walking tour'
    """
    key = name.lower().strip()
    key = LEADING_ARTICLE_PATTERN.sub("", key)
    key = CORPORATE_SUFFIX_PATTERN.sub("", key)
    key = TRAILING_PLURAL_PATTERN.sub(r"\1", key)
    return WHITESPACE_PATTERN.sub(" ", key).strip()


def _has_leading_article(name: str) -> bool:
    return name.lower().startswith("the ")


def deduplicate_names(names: list[str]) -> list[str]:
    """
    Remove near-duplicate names, keeping first-seen order.

    Args:
        names: Names in ranked order

    Returns:
        One entry per normalized key. A kept "The X" is replaced in place by
        a later "X" spelling of the same key.

    Example:
        >>> deduplicate_names(["The Winding Stair", "Chapter One", "Winding Stair"])
        ['Winding Stair', 'Chapter One']
    """
    kept: list[str] = []
    index_by_key: dict[str, int] = {}

    for name in names:
        key = normalize_name(name)
        if key not in index_by_key:
            index_by_key[key] = len(kept)
            kept.append(name)
            continue

        index = index_by_key[key]
        if _has_leading_article(kept[index]) and not _has_leading_article(name):
            kept[index] = name

    return kept


def parse_ranked_list(text: str) -> list[str]:
    """
    Parse a raw model answer into a de-duplicated ranked list of names.

    Pure function: no I/O, safe to call repeatedly; parsing its own output
    rendered back as a numbered list yields the same list.

    Args:
        text: Raw model answer

    Returns:
        Ordered list of names ([] if the answer has no numbered lines)
    """
    names = deduplicate_names(extract_names(text))
    if not names and text.strip():
        logger.warning("No numbered list found in model answer")
    return names
