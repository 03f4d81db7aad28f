"""Tokenization shared by indexing and querying."""

from __future__ import annotations

import re

_TOKEN = re.compile(r"[^\W_]+")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in",
        "into", "is", "it", "of", "on", "or", "that", "the", "this", "to",
        "with", "your", "you",
    }
)


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens, split on punctuation and underscores, minus stopwords."""
    return [t for t in _TOKEN.findall(text.lower()) if t not in STOPWORDS]
