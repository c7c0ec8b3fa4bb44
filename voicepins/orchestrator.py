# voicepins/orchestrator.py
"""
Tour generation pipeline.

start_generation() records a pending job and hands the pipeline to the
worker. run_job() then walks the requested pin positions one at a time:
content from the content generator, narration from the synthesizer, audio
into the audio store. A failed pin is recorded and skipped; only an error
outside the per-pin scope, or a batch with no surviving pins, fails the job.
The tour row is written before the collection append, and the job goes
terminal only after both writes were attempted.
"""
from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from voicepins import jobs as job_states
from voicepins.categories import select_categories
from voicepins.errors import ErrorCode, classify_fatal_error, job_error
from voicepins.geo import total_distance
from voicepins.jobs import JobStore
from voicepins.models import Pin, new_id
from voicepins.preferences import PreferenceStore, top_categories
from voicepins.schemas import (
    ContentRequest,
    Coordinates,
    NarrationResult,
    PinContent,
    PreferenceContext,
    TourGenerationRequest,
)
from voicepins.settings import Settings
from voicepins.tours import TourStore, pin_to_dict
from voicepins.worker import JobWorker

logger = logging.getLogger(__name__)

# Coarse per-pin listening estimate; not reconciled with the synthesizer's own figure.
SECONDS_PER_PIN = 17
# Rough wall-clock per pin (content + audio), used for client ETAs.
ETA_SECONDS_PER_PIN = 10
TOKEN_OVERHEAD = 200
CHARS_PER_TOKEN = 4


class ContentGenerator(Protocol):
    def generate(self, req: ContentRequest) -> PinContent: ...


class Narrator(Protocol):
    def synthesize(self, text: str) -> NarrationResult: ...


class AudioStore(Protocol):
    def save(self, name: str, data: bytes, content_type: str = "audio/mpeg") -> str: ...


def area_label(lat: float, lng: float) -> str:
    # Stand-in for a reverse geocoder
    return f"Area near {lat:.4f}, {lng:.4f}"


def estimate_tokens(content: PinContent) -> int:
    chars = len(content.transcript) + len(content.title) + len(content.description)
    return math.ceil(chars / CHARS_PER_TOKEN) + TOKEN_OVERHEAD


@dataclass
class _RunState:
    pins: List[Pin] = field(default_factory=list)
    content_failures: List[str] = field(default_factory=list)
    audio_failures: List[str] = field(default_factory=list)
    openai_tokens: int = 0
    eleven_characters: int = 0

    @property
    def failed_pins(self) -> List[str]:
        return sorted(
            self.content_failures + self.audio_failures,
            key=lambda label: int(label.split()[1]),
        )


class TourGenerator:
    def __init__(
        self,
        *,
        settings: Settings,
        jobs: JobStore,
        tours: TourStore,
        preferences: PreferenceStore,
        content: ContentGenerator,
        narrator: Narrator,
        audio_store: AudioStore,
        worker: Optional[JobWorker] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.jobs = jobs
        self.tours = tours
        self.preferences = preferences
        self.content = content
        self.narrator = narrator
        self.audio_store = audio_store
        self.worker = worker
        self.rng = rng or random.Random()

    # ----- entry point -----
    def start_generation(self, request: TourGenerationRequest, job_id: Optional[str] = None) -> str:
        job = self.jobs.create(request, job_id=job_id)
        if self.worker is None:
            self.run_job(job.id, request)
        else:
            self.worker.submit(job.id, self.run_job, job.id, request)
        return job.id

    # ----- pipeline -----
    def run_job(self, job_id: str, request: TourGenerationRequest) -> None:
        try:
            self._run(job_id, request)
        except Exception as e:
            logger.exception("Tour generation failed for job %s", job_id)
            job = self.jobs.get(job_id)
            if job is None or job.status in job_states.TERMINAL_STATES:
                return
            self.jobs.fail(job_id, job_error(classify_fatal_error(e), str(e) or type(e).__name__))

    def _run(self, job_id: str, request: TourGenerationRequest) -> None:
        collection_id = self.settings.DEFAULT_COLLECTION_ID
        center = request.center
        total = request.pin_count

        self.jobs.update_status(job_id, job_states.GENERATING_CONTENT)
        self.jobs.update_progress(job_id, current_step="Loading preferences")

        profile = self.preferences.get_or_create(request.device_id)
        area = area_label(center.lat, center.lng)
        existing_titles = [
            p.title for p in self.tours.pins_in_radius(collection_id, center.lat, center.lng, request.radius_meters)
        ]
        categories = select_categories(profile.category_weights, request.categories, total, self.rng)
        pref_ctx = PreferenceContext(
            favorite_categories=top_categories(profile, 3),
            category_weights=dict(profile.category_weights or {}),
        )

        state = _RunState()
        for i, category in enumerate(categories):
            self._generate_pin(job_id, request, i, category, area, existing_titles, pref_ctx, state)

        if not state.pins:
            self.jobs.fail(job_id, job_error(
                ErrorCode.NO_PINS_GENERATED,
                "Failed to generate any pins",
                retryable=True,
                failed_pins=state.failed_pins,
            ))
            return

        distance = total_distance((p.lat, p.lng) for p in state.pins)
        duration = SECONDS_PER_PIN * len(state.pins)
        tour = self.tours.create_tour(
            device_id=request.device_id,
            name=f"AI Tour: {area}",
            pins=state.pins,
            center_lat=center.lat,
            center_lng=center.lng,
            generation_job_id=job_id,
            estimated_duration=duration,
            total_distance=distance,
        )
        try:
            self.tours.append_pins(collection_id, state.pins)
        except Exception as e:
            logger.warning("Failed to add pins of job %s to collection %s: %s", job_id, collection_id, e)

        result = {
            "tourId": tour.id,
            "pins": [pin_to_dict(p) for p in state.pins],
            "estimatedDuration": duration,
            "totalDistance": distance,
        }
        costs = self._costs(state)
        failed = state.failed_pins
        if failed:
            code = ErrorCode.PARTIAL_CONTENT_FAILURE if state.content_failures else ErrorCode.PARTIAL_AUDIO_FAILURE
            self.jobs.partial_complete(
                job_id,
                result,
                job_error(code, f"{len(failed)} of {total} pins failed", retryable=True, failed_pins=failed),
                costs,
            )
        else:
            self.jobs.complete(job_id, result, costs)

    def _generate_pin(
        self,
        job_id: str,
        request: TourGenerationRequest,
        index: int,
        category: str,
        area: str,
        existing_titles: List[str],
        pref_ctx: PreferenceContext,
        state: _RunState,
    ) -> None:
        total = request.pin_count
        label = f"unit {index + 1} ({category})"

        self.jobs.update_status(job_id, job_states.GENERATING_CONTENT)
        self.jobs.update_progress(
            job_id,
            completed_pins=index,
            current_step=f"Generating content for pin {index + 1}/{total} ({category})",
        )

        try:
            content = self.content.generate(ContentRequest(
                location=request.center,
                area_name=area,
                category=category,
                preferences=pref_ctx,
                existing_titles=existing_titles + [p.title for p in state.pins],
                pin_index=index,
                total_pins=total,
            ))
        except Exception:
            logger.warning("Content generation failed for job %s %s", job_id, label, exc_info=True)
            state.content_failures.append(label)
            return
        state.openai_tokens += estimate_tokens(content)

        self.jobs.update_status(job_id, job_states.GENERATING_AUDIO)
        self.jobs.update_progress(job_id, current_step=f'Generating audio for "{content.title}"')

        pin_id = new_id("ai_pin_", 8)
        try:
            narration = self.narrator.synthesize(content.transcript)
            state.eleven_characters += narration.character_count
            audio_ref = self.audio_store.save(f"{pin_id}.mp3", narration.audio)
        except Exception:
            logger.warning("Narration failed for job %s %s", job_id, label, exc_info=True)
            state.audio_failures.append(label)
            return

        location: Coordinates = content.suggested_location
        state.pins.append(Pin(
            id=pin_id,
            collection_id=self.settings.DEFAULT_COLLECTION_ID,
            lat=location.lat,
            lng=location.lng,
            title=content.title,
            description=content.description,
            transcript=content.transcript,
            audio_file=audio_ref,
            category=content.category,
            is_ai_generated=True,
            ai_generation_id=job_id,
        ))

    def _costs(self, state: _RunState) -> Dict:
        s = self.settings
        usd = (
            state.openai_tokens / 1000 * s.OPENAI_COST_PER_1K_TOKENS
            + state.eleven_characters / 1000 * s.ELEVEN_COST_PER_1K_CHARS
        )
        return {
            "openaiTokens": state.openai_tokens,
            "elevenLabsCharacters": state.eleven_characters,
            "estimatedCostUsd": round(usd, 6),
        }
