"""
Helper Functions
================

Common utility functions used across the application.
"""

import math
import re
import unicodedata
from datetime import datetime, timezone
from typing import Iterable, Optional

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_TAG_SPLIT = re.compile(r"[,\n]")
_WORD = re.compile(r"\S+")

SLUG_MAX_LENGTH = 80
WORDS_PER_MINUTE = 200


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def slugify(value: str) -> str:
    """
    Build a URL slug.

    Accents are stripped, everything that is not ``a-z0-9`` collapses to a
    single dash, and the result is capped at 80 characters.

    >>> slugify("Ça va, l'Été ?")
    'ca-va-l-ete'
    """
    normalized = unicodedata.normalize("NFKD", value or "")
    ascii_only = "".join(c for c in normalized if not unicodedata.combining(c))
    slug = _NON_ALNUM.sub("-", ascii_only.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH].strip("-")


def parse_tags(raw: str | Iterable[str] | None) -> list[str]:
    """Split comma/newline separated tags, lowercased and deduplicated in order."""
    if raw is None:
        return []
    parts = _TAG_SPLIT.split(raw) if isinstance(raw, str) else list(raw)

    tags: list[str] = []
    for part in parts:
        tag = str(part).strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def reading_time_min(text: Optional[str]) -> int:
    """Estimated reading time in minutes, never below 1."""
    words = len(_WORD.findall(text or ""))
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def suffixed_slug(base: str, taken: set[str]) -> str:
    """
    Return ``base`` or the first free ``base-2``, ``base-3``... variant.
    """
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def js_round(value: float) -> int:
    """Round half up, like JavaScript's ``Math.round``."""
    if isinstance(value, int):
        return value
    if not math.isfinite(value):
        raise ValueError(f"Cannot round {value}")
    return math.floor(value + 0.5)


LIKE_ESCAPE = "\\"


def like_escape(text: str) -> str:
    """Escape ``LIKE`` wildcards in ``text``; use with ``escape=LIKE_ESCAPE``."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def like_contains(text: str) -> str:
    """``LIKE`` pattern matching ``text`` literally anywhere."""
    return f"%{like_escape(text)}%"
