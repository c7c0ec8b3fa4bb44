"""
Per-device category preferences learned from favorited pins.

Weights are recomputed from scratch on every favorite change with additive
smoothing, so a category nobody favorited keeps a small non-zero share and
topic selection never locks a device into one category.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from voicepins.categories import CATEGORIES, FALLBACK_CATEGORY, default_weights, rank_categories
from voicepins.models import Pin, PreferenceProfile, utcnow

logger = logging.getLogger(__name__)

SMOOTHING = 0.5

PinLookup = Callable[[str], Optional[Pin]]


class PreferenceStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def get(self, device_id: str) -> Optional[PreferenceProfile]:
        with Session(self.engine) as s:
            return s.get(PreferenceProfile, device_id)

    def save(self, profile: PreferenceProfile) -> PreferenceProfile:
        profile.updated_at = utcnow()
        with Session(self.engine) as s:
            profile = s.merge(profile)
            s.commit()
            s.refresh(profile)
            return profile

    def get_or_create(self, device_id: str) -> PreferenceProfile:
        existing = self.get(device_id)
        if existing is not None:
            return existing
        logger.info("Creating preference profile for device %s", device_id)
        return self.save(PreferenceProfile(device_id=device_id, category_weights=default_weights()))

    def add_favorite(self, device_id: str, pin_id: str) -> PreferenceProfile:
        profile = self.get_or_create(device_id)
        if pin_id not in profile.favorite_pin_ids:
            profile.favorite_pin_ids = [*profile.favorite_pin_ids, pin_id]
            profile = self.save(profile)
        return profile

    def remove_favorite(self, device_id: str, pin_id: str) -> PreferenceProfile:
        profile = self.get_or_create(device_id)
        if pin_id in profile.favorite_pin_ids:
            profile.favorite_pin_ids = [p for p in profile.favorite_pin_ids if p != pin_id]
            profile = self.save(profile)
        return profile

    def delete(self, device_id: str) -> bool:
        with Session(self.engine) as s:
            profile = s.get(PreferenceProfile, device_id)
            if profile is None:
                return False
            s.delete(profile)
            s.commit()
            return True


def smoothed_weights(categories: Iterable[Optional[str]]) -> Dict[str, float]:
    counts = {c: 0 for c in CATEGORIES}
    observed = 0
    for category in categories:
        category = category if category in counts else FALLBACK_CATEGORY
        counts[category] += 1
        observed += 1
    if observed == 0:
        return default_weights()
    mass = observed + SMOOTHING * len(CATEGORIES)
    return {c: (counts[c] + SMOOTHING) / mass for c in CATEGORIES}


def recalculate_category_weights(
    profile: PreferenceProfile,
    store: PreferenceStore,
    pin_lookup: PinLookup,
) -> PreferenceProfile:
    """Rebuild weights from the profile's favorites and persist the result."""
    resolved = [pin_lookup(pin_id) for pin_id in profile.favorite_pin_ids]
    categories = [pin.category for pin in resolved if pin is not None]
    profile.category_weights = smoothed_weights(categories)
    logger.debug(
        "Recalculated weights for %s from %d/%d favorites",
        profile.device_id, len(categories), len(profile.favorite_pin_ids),
    )
    return store.save(profile)


def top_categories(profile: PreferenceProfile, count: int = 3) -> List[str]:
    return rank_categories(profile.category_weights or default_weights())[:count]
