from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from voicepins.categories import CATEGORIES

MIN_RADIUS_M, MAX_RADIUS_M, DEFAULT_RADIUS_M = 100, 2000, 500
MIN_PINS, MAX_PINS, DEFAULT_PINS = 1, 10, 5


def _clamp(value, low, high, default):
    if value is None:
        return default
    return min(max(value, low), high)


# ------- Request models -------
class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class TourGenerationRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    device_id: str = Field(..., alias="deviceId", min_length=1, max_length=128)
    center: Coordinates
    radius_meters: float = Field(DEFAULT_RADIUS_M, alias="radiusMeters")
    pin_count: int = Field(
        DEFAULT_PINS, alias="pinCount", validation_alias=AliasChoices("unitCount", "pinCount", "pin_count"),
    )
    categories: Optional[List[str]] = None
    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey")

    @field_validator("device_id")
    @classmethod
    def _strip_device(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("deviceId is required")
        return v

    @field_validator("radius_meters", mode="after")
    @classmethod
    def _clamp_radius(cls, v: float) -> float:
        return float(_clamp(v, MIN_RADIUS_M, MAX_RADIUS_M, DEFAULT_RADIUS_M))

    @field_validator("pin_count", mode="after")
    @classmethod
    def _clamp_pins(cls, v: int) -> int:
        return int(_clamp(v, MIN_PINS, MAX_PINS, DEFAULT_PINS))

    @field_validator("radius_meters", "pin_count", mode="before")
    @classmethod
    def _falsy_to_default(cls, v, info):
        # 0 / null fall back to defaults rather than the lower bound
        if not v:
            return DEFAULT_RADIUS_M if info.field_name == "radius_meters" else DEFAULT_PINS
        return v

    @field_validator("categories", mode="before")
    @classmethod
    def _known_categories(cls, v):
        if not isinstance(v, list):
            return None
        known = [c for c in v if c in CATEGORIES]
        return known or None


class PreferencesCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field(..., alias="deviceId", min_length=8, max_length=64)


class FavoriteCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pin_id: str = Field(..., alias="pinId", min_length=1)


# ------- Provider contracts -------
class PreferenceContext(BaseModel):
    favorite_categories: List[str] = Field(default_factory=list)
    category_weights: Dict[str, float] = Field(default_factory=dict)


class ContentRequest(BaseModel):
    location: Coordinates
    area_name: str
    category: str
    preferences: PreferenceContext = Field(default_factory=PreferenceContext)
    existing_titles: List[str] = Field(default_factory=list)
    pin_index: int = 0
    total_pins: int = 1


class PinContent(BaseModel):
    title: str
    description: str
    transcript: str
    category: str
    suggested_location: Coordinates


class NarrationResult(BaseModel):
    audio: bytes
    estimated_duration_seconds: float
    character_count: int
