"""
Tour records and collection pins.

Tours are append-only snapshots of the pins a job produced. Collections hold
every pin for a map region regardless of which job (or user) created it.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from voicepins.errors import CollectionNotFoundError
from voicepins.geo import haversine_distance
from voicepins.models import Collection, Pin, Tour

logger = logging.getLogger(__name__)


def pin_to_dict(pin: Pin) -> Dict:
    out = {
        "id": pin.id,
        "lat": pin.lat,
        "lng": pin.lng,
        "title": pin.title,
        "description": pin.description,
        "transcript": pin.transcript,
        "audioFile": pin.audio_file,
        "category": pin.category,
        "createdAt": pin.created_at.isoformat(),
        "isAiGenerated": pin.is_ai_generated,
    }
    if pin.photo_file:
        out["photoFile"] = pin.photo_file
    if pin.ai_generation_id:
        out["aiGenerationId"] = pin.ai_generation_id
    return out


def tour_summary(tour: Tour) -> Dict:
    return {
        "id": tour.id,
        "name": tour.name,
        "pinCount": len(tour.pins or []),
        "center": {"lat": tour.center_lat, "lng": tour.center_lng},
        "estimatedDuration": tour.estimated_duration,
        "totalDistance": tour.total_distance,
        "generatedAt": tour.created_at.isoformat(),
    }


def tour_to_dict(tour: Tour) -> Dict:
    out = tour_summary(tour)
    out.pop("pinCount")
    out["pins"] = list(tour.pins or [])
    out["generationJobId"] = tour.generation_job_id
    return out


class TourStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    # ----- tours -----
    def create_tour(
        self,
        *,
        device_id: str,
        name: str,
        pins: List[Pin],
        center_lat: float,
        center_lng: float,
        generation_job_id: str,
        estimated_duration: float,
        total_distance: float,
    ) -> Tour:
        tour = Tour(
            device_id=device_id,
            name=name,
            pins=[pin_to_dict(p) for p in pins],
            center_lat=center_lat,
            center_lng=center_lng,
            generation_job_id=generation_job_id,
            estimated_duration=estimated_duration,
            total_distance=total_distance,
        )
        with Session(self.engine) as s:
            s.add(tour)
            s.commit()
            s.refresh(tour)
        logger.info("Saved tour %s (%d pins) for job %s", tour.id, len(pins), generation_job_id)
        return tour

    def get_tour(self, tour_id: str) -> Optional[Tour]:
        with Session(self.engine) as s:
            return s.get(Tour, tour_id)

    def tours_by_device(self, device_id: str) -> List[Tour]:
        with Session(self.engine) as s:
            stmt = select(Tour).where(Tour.device_id == device_id).order_by(Tour.created_at.desc())
            return list(s.exec(stmt).all())

    def tours_for_job(self, job_id: str) -> List[Tour]:
        with Session(self.engine) as s:
            return list(s.exec(select(Tour).where(Tour.generation_job_id == job_id)).all())

    def delete_tour(self, tour_id: str) -> bool:
        with Session(self.engine) as s:
            tour = s.get(Tour, tour_id)
            if tour is None:
                return False
            s.delete(tour)
            s.commit()
            return True

    # ----- collections -----
    def get_collection(self, collection_id: str) -> Optional[Collection]:
        with Session(self.engine) as s:
            return s.get(Collection, collection_id)

    def collection_pins(self, collection_id: str) -> List[Pin]:
        with Session(self.engine) as s:
            stmt = select(Pin).where(Pin.collection_id == collection_id).order_by(Pin.created_at)
            return list(s.exec(stmt).all())

    def append_pins(self, collection_id: str, pins: List[Pin]) -> None:
        with Session(self.engine) as s:
            if s.get(Collection, collection_id) is None:
                raise CollectionNotFoundError(collection_id)
            for pin in pins:
                s.add(Pin(**pin.model_dump(exclude={"collection_id"}), collection_id=collection_id))
            s.commit()

    def pins_in_radius(self, collection_id: str, lat: float, lng: float, radius_meters: float) -> List[Pin]:
        return [
            p for p in self.collection_pins(collection_id)
            if haversine_distance(lat, lng, p.lat, p.lng) <= radius_meters
        ]

    def get_pin(self, pin_id: str) -> Optional[Pin]:
        with Session(self.engine) as s:
            return s.get(Pin, pin_id)
