import random

from voicepins.categories import (
    CATEGORIES,
    default_weights,
    rank_categories,
    select_categories,
    weighted_choice,
)


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def test_allow_list_is_round_robin():
    weights = {"Food": 1.0}
    assert select_categories(weights, ["History", "Nature"], 5) == [
        "History", "Nature", "History", "Nature", "History",
    ]


def test_weighted_choice_walks_enumeration_order():
    weights = {"General": 0.2, "Food": 0.3, "History": 0.5}
    assert weighted_choice(weights, CATEGORIES, FixedRandom(0.1)) == "General"
    assert weighted_choice(weights, CATEGORIES, FixedRandom(0.4)) == "Food"
    assert weighted_choice(weights, CATEGORIES, FixedRandom(0.99)) == "History"


def test_weighted_choice_falls_back_when_mass_runs_out():
    assert weighted_choice({"Food": 0.1}, CATEGORIES, FixedRandom(0.9)) == "General"
    assert weighted_choice({}, CATEGORIES, FixedRandom(0.5), fallback="Nature") == "Nature"
    # a zero draw is absorbed by the first option even at zero weight
    assert weighted_choice({}, CATEGORIES, FixedRandom(0.0), fallback="Nature") == "General"


def test_third_repeat_is_replaced_with_most_preferred_other():
    weights = {"Food": 0.9, "History": 0.05, "Nature": 0.05}
    # 0.5 always lands on Food
    picked = select_categories(weights, None, 3, FixedRandom(0.5))
    assert picked == ["Food", "Food", "History"]


def test_zero_weight_categories_still_break_runs():
    weights = {c: 0.0 for c in CATEGORIES}
    weights["General"] = 1.0
    ranked = rank_categories(weights)
    assert ranked[0] == "General"
    # every other category ties at zero, so the first one in enumeration order wins
    assert select_categories(weights, None, 3, FixedRandom(0.5))[2] == "Food"


def test_never_three_in_a_row_across_trials():
    rng = random.Random(1234)
    skewed = {"General": 0.02, "Food": 0.9, "History": 0.02, "Nature": 0.02, "Culture": 0.02, "Architecture": 0.02}
    for weights in (default_weights(), skewed):
        for _ in range(300):
            picked = select_categories(weights, None, 10, rng)
            assert len(picked) == 10
            for i in range(2, len(picked)):
                assert not (picked[i] == picked[i - 1] == picked[i - 2])


def test_rank_ties_keep_enumeration_order():
    assert rank_categories(default_weights()) == CATEGORIES
