"""
Pin categories and the per-batch category picker.

Weights are treated as an unnormalised distribution: a uniform draw in [0, 1)
is walked down the fixed enumeration order, so a profile whose weights sum to
less than one leaves the remainder to the fallback category.
"""
from __future__ import annotations

import random
from typing import Dict, List, Mapping, Optional, Sequence

CATEGORIES: List[str] = ["General", "Food", "History", "Nature", "Culture", "Architecture"]
FALLBACK_CATEGORY = "General"


def default_weights() -> Dict[str, float]:
    share = 1.0 / len(CATEGORIES)
    return {c: share for c in CATEGORIES}


def weighted_choice(
    weights: Mapping[str, float],
    options: Sequence[str] = CATEGORIES,
    rng: random.Random | None = None,
    fallback: str = FALLBACK_CATEGORY,
) -> str:
    remainder = (rng or random).random()
    for option in options:
        remainder -= float(weights.get(option, 0.0) or 0.0)
        if remainder <= 0:
            return option
    return fallback


def rank_categories(weights: Mapping[str, float]) -> List[str]:
    """Categories by weight, heaviest first; ties keep enumeration order."""
    return sorted(CATEGORIES, key=lambda c: -float(weights.get(c, 0.0) or 0.0))


def select_categories(
    weights: Mapping[str, float],
    requested: Optional[Sequence[str]],
    count: int,
    rng: random.Random | None = None,
) -> List[str]:
    if requested:
        return [requested[i % len(requested)] for i in range(count)]

    ranked = rank_categories(weights)
    picked: List[str] = []
    for _ in range(count):
        choice = weighted_choice(weights, CATEGORIES, rng)
        if len(picked) >= 2 and picked[-1] == choice and picked[-2] == choice:
            choice = next((c for c in ranked if c != choice), choice)
        picked.append(choice)
    return picked
