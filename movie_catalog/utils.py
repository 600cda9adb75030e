"""Utility helpers for the movie catalog service."""

from __future__ import annotations

import re
from datetime import datetime, timedelta


TITLE_SEPARATOR_RE = re.compile(r"[-:]")
NON_TITLE_CHAR_RE = re.compile(r"[^A-Za-z\s]")
FOUR_DIGIT_RE = re.compile(r"\d{4}")
INTEGER_RE = re.compile(r"\d+")
TRIGRAM_WORD_RE = re.compile(r"[^\W_]+")

NOT_AVAILABLE = "N/A"
MIN_YEAR = 1888
MAX_YEAR = 2100


def normalize_title(raw_title: str | None) -> str:
    """Return the canonical comparison key for a free-text title.

    Separators become spaces, anything that is neither an ASCII letter nor
    whitespace is dropped and every word is capitalised. Titles without letters
    collapse to an empty string.
    """

    value = TITLE_SEPARATOR_RE.sub(" ", raw_title or "")
    value = NON_TITLE_CHAR_RE.sub("", value)
    words = value.split()
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def parse_year(value: str | None) -> int | None:
    """Return the first plausible four digit release year in ``value``."""

    if not value or value == NOT_AVAILABLE:
        return None
    match = FOUR_DIGIT_RE.search(value)
    if not match:
        return None
    year = int(match.group(0))
    if MIN_YEAR <= year <= MAX_YEAR:
        return year
    return None


def parse_runtime(value: str | None) -> int | None:
    """Convert strings such as ``"117 min"`` to a number of minutes."""

    if not value or value == NOT_AVAILABLE:
        return None
    match = INTEGER_RE.search(value)
    if not match:
        return None
    return int(match.group(0))


def parse_list(value: str | None) -> list[str] | None:
    """Split a comma separated listing, returning ``None`` when empty."""

    if not value or value == NOT_AVAILABLE:
        return None
    items = [item.strip() for item in value.split(",")]
    cleaned = [item for item in items if item]
    return cleaned or None


def is_fresh(
    last_updated_at: datetime | None,
    ttl_hours: float,
    *,
    now: datetime | None = None,
) -> bool:
    """Return whether a cached record refreshed at ``last_updated_at`` is usable."""

    if last_updated_at is None:
        return False
    current = now if now is not None else datetime.utcnow()
    return current - last_updated_at < timedelta(hours=ttl_hours)


def _trigrams(value: str) -> set[str]:
    grams: set[str] = set()
    for word in TRIGRAM_WORD_RE.findall(value.lower()):
        padded = f"  {word} "
        grams.update(padded[index : index + 3] for index in range(len(padded) - 2))
    return grams


def trigram_similarity(left: str, right: str) -> float:
    """Return the share of trigrams two strings have in common (0..1)."""

    left_grams = _trigrams(left)
    right_grams = _trigrams(right)
    if not left_grams or not right_grams:
        return 0.0
    shared = len(left_grams & right_grams)
    return shared / len(left_grams | right_grams)
