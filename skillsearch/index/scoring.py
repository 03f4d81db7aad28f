"""Ranking math — BM25 relevance and the trust/popularity boost.

Combined score::

    score = relevance * trust_boost * (1 + STAR_WEIGHT * ln(1 + stars))

where ``trust_boost`` is ``TRUST_BOOST`` for trusted skills and 1.0
otherwise. The star term grows logarithmically: 1000 stars multiply the
relevance by about 1.69, so popularity reorders close matches without
overriding a clearly better one.
"""

from __future__ import annotations

import math

# Field weights: name > description > metadata > body
FIELD_WEIGHTS: dict[str, float] = {
    "name": 3.0,
    "description": 2.0,
    "metadata": 1.0,
    "body": 0.5,
}

K1 = 1.2
B = 0.75

TRUST_BOOST = 1.5
STAR_WEIGHT = 0.1


def combine_score(relevance: float, trusted: bool, stars: int) -> float:
    """Fold the trust and popularity boosts into a relevance score."""
    if relevance <= 0.0:
        return 0.0
    boost = TRUST_BOOST if trusted else 1.0
    return relevance * boost * (1.0 + STAR_WEIGHT * math.log1p(max(0, stars)))


def idf(doc_count: int, doc_freq: int) -> float:
    """BM25 inverse document frequency; always positive."""
    return math.log(1.0 + (doc_count - doc_freq + 0.5) / (doc_freq + 0.5))


def field_weighted_tf(
    term_freqs: dict[str, int],
    field_lengths: dict[str, int],
    avg_lengths: dict[str, float],
) -> float:
    """Length-normalised term frequency summed across weighted fields (BM25F)."""
    total = 0.0
    for field_name, weight in FIELD_WEIGHTS.items():
        tf = term_freqs.get(field_name, 0)
        if not tf:
            continue
        avg = avg_lengths.get(field_name) or 1.0
        norm = 1.0 - B + B * field_lengths.get(field_name, 0) / avg
        total += weight * tf / norm
    return total


def term_score(weighted_tf: float, term_idf: float) -> float:
    return term_idf * weighted_tf * (K1 + 1.0) / (weighted_tf + K1)
