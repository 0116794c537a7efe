import random
from collections import Counter
from datetime import datetime, timedelta

import pytest

from campus_chat.matching.matchmaker import (
    MAX_WEIGHT,
    MIN_WEIGHT,
    compute_weight,
    weighted_choice,
)

NOW = datetime(2024, 9, 1, 12, 0, 0)


def test_equal_weights_are_roughly_uniform():
    rng = random.Random(42)
    draws = Counter(weighted_choice([("a", 1), ("b", 1), ("c", 1)], rng) for _ in range(30000))
    for item in "abc":
        assert draws[item] / 30000 == pytest.approx(1 / 3, abs=0.02)


def test_weights_are_proportional():
    rng = random.Random(1)
    draws = Counter(weighted_choice([("low", 100), ("high", 300)], rng) for _ in range(20000))
    assert draws["high"] / 20000 == pytest.approx(0.75, abs=0.02)


def test_single_candidate_always_wins():
    rng = random.Random(3)
    assert all(weighted_choice([("only", MIN_WEIGHT)], rng) == "only" for _ in range(100))


def test_same_seed_same_pick():
    weighted = [(i, 10 * (i + 1)) for i in range(10)]
    first = [weighted_choice(weighted, random.Random(99)) for _ in range(5)]
    second = [weighted_choice(weighted, random.Random(99)) for _ in range(5)]
    assert first == second


def test_empty_pool_raises():
    with pytest.raises(ValueError):
        weighted_choice([], random.Random())


def test_weight_grows_half_a_unit_per_hour():
    assert compute_weight(NOW - timedelta(hours=2), NOW) == 100
    assert compute_weight(NOW - timedelta(hours=1), NOW) == 50


def test_weight_is_capped():
    assert compute_weight(NOW - timedelta(days=3), NOW) == MAX_WEIGHT


def test_new_arrivals_keep_minimum_weight():
    assert compute_weight(NOW, NOW) == MIN_WEIGHT
    assert compute_weight(None, NOW) == MIN_WEIGHT
    # Clock skew must not produce a negative weight
    assert compute_weight(NOW + timedelta(minutes=5), NOW) == MIN_WEIGHT
