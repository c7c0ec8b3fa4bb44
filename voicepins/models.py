from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field
from typing import Optional, Dict, List
from datetime import datetime, timezone
import uuid


def new_id(prefix: str, length: int) -> str:
    return f"{prefix}{uuid.uuid4().hex[:length]}"


def new_job_id() -> str:
    return new_id("job_", 12)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(SQLModel, table=True):
    id: str = Field(default_factory=new_job_id, primary_key=True)
    device_id: str = Field(index=True)
    status: str = "pending"  # pending|generating_content|generating_audio|completed|partial|failed
    progress: Dict = Field(default_factory=dict, sa_column=Column(JSON))
    request: Dict = Field(default_factory=dict, sa_column=Column(JSON))
    result: Optional[Dict] = Field(default=None, sa_column=Column(JSON))
    error: Optional[Dict] = Field(default=None, sa_column=Column(JSON))
    costs: Optional[Dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Tour(SQLModel, table=True):
    id: str = Field(default_factory=lambda: new_id("tour_", 10), primary_key=True)
    device_id: str = Field(index=True)
    name: str
    pins: List = Field(default_factory=list, sa_column=Column(JSON))  # snapshot, camelCase dicts
    center_lat: float
    center_lng: float
    generation_job_id: str
    estimated_duration: float = 0.0  # seconds
    total_distance: float = 0.0      # meters
    created_at: datetime = Field(default_factory=utcnow)


class Collection(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name: str
    center_lat: float = 0.0
    center_lng: float = 0.0


class Pin(SQLModel, table=True):
    id: str = Field(default_factory=lambda: new_id("pin_", 8), primary_key=True)
    collection_id: str = Field(index=True, foreign_key="collection.id")
    lat: float
    lng: float
    title: str
    description: str = ""
    transcript: str = ""
    audio_file: str = ""
    photo_file: Optional[str] = None
    category: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    is_ai_generated: bool = False
    ai_generation_id: Optional[str] = None


class PreferenceProfile(SQLModel, table=True):
    device_id: str = Field(primary_key=True)
    favorite_pin_ids: List = Field(default_factory=list, sa_column=Column(JSON))
    category_weights: Dict = Field(default_factory=dict, sa_column=Column(JSON))
    visited_locations: List = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
