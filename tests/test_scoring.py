"""Tests for ranking math."""

import math

from skillsearch.index.scoring import (
    FIELD_WEIGHTS,
    TRUST_BOOST,
    combine_score,
    field_weighted_tf,
    idf,
    term_score,
)


def test_combine_score_boosts():
    assert combine_score(2.0, False, 0) == 2.0
    assert combine_score(2.0, True, 0) == 2.0 * TRUST_BOOST
    assert math.isclose(combine_score(1.0, False, 1000), 1.0 + 0.1 * math.log(1001))


def test_zero_relevance_stays_zero():
    assert combine_score(0.0, True, 10_000) == 0.0


def test_stars_are_monotonic_but_bounded():
    scores = [combine_score(1.0, False, s) for s in (0, 10, 100, 1000, 100_000)]
    assert scores == sorted(scores)
    assert scores[-1] < 2.5


def test_idf_favours_rare_terms():
    assert idf(100, 1) > idf(100, 50) > 0
    assert idf(1, 1) > 0


def test_field_weights_order():
    lengths = {f: 5 for f in FIELD_WEIGHTS}
    avg = {f: 5.0 for f in FIELD_WEIGHTS}
    by_field = {f: field_weighted_tf({f: 1}, lengths, avg) for f in FIELD_WEIGHTS}
    assert by_field["name"] > by_field["description"] > by_field["metadata"] > by_field["body"]


def test_long_fields_are_normalised():
    short = field_weighted_tf({"body": 1}, {"body": 2}, {"body": 10.0})
    long = field_weighted_tf({"body": 1}, {"body": 50}, {"body": 10.0})
    assert short > long


def test_term_score_saturates():
    assert term_score(1.0, 1.0) < term_score(10.0, 1.0) < term_score(1000.0, 1.0) < 2.2 + 1e-9
