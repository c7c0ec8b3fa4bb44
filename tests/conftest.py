import random

import pytest

from voicepins.database import init_db, make_engine
from voicepins.errors import ContentGenerationError, NarrationError
from voicepins.jobs import JobStore
from voicepins.orchestrator import TourGenerator
from voicepins.preferences import PreferenceStore
from voicepins.schemas import Coordinates, NarrationResult, PinContent
from voicepins.settings import Settings
from voicepins.storage import LocalAudioStore
from voicepins.tours import TourStore


class FakeContent:
    """Succeeds unless the 1-based position is listed in fail_on (or always_fail)."""

    def __init__(self, fail_on=(), always_fail=False):
        self.fail_on = set(fail_on)
        self.always_fail = always_fail
        self.requests = []

    def generate(self, req):
        self.requests.append(req)
        if self.always_fail or (req.pin_index + 1) in self.fail_on:
            raise ContentGenerationError("OpenAI API error: 500 - boom")
        return PinContent(
            title=f"{req.category} spot {req.pin_index + 1}",
            description="A short description for reading.",
            transcript="Welcome to this corner of the city where locals gather every morning for coffee and talk.",
            category=req.category,
            suggested_location=Coordinates(
                lat=req.location.lat + 0.0001 * req.pin_index,
                lng=req.location.lng,
            ),
        )


class FakeNarrator:
    def __init__(self, fail_on=(), always_fail=False):
        self.fail_on = set(fail_on)
        self.always_fail = always_fail
        self.calls = 0

    def synthesize(self, text):
        self.calls += 1
        if self.always_fail or self.calls in self.fail_on:
            raise NarrationError("Eleven Labs API error: 503 - unavailable")
        return NarrationResult(audio=b"ID3fake", estimated_duration_seconds=len(text) / 12.5,
                               character_count=len(text))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        AUDIO_DIR=str(tmp_path / "audio"),
        TOUR_GENERATION_RATE_LIMIT=3,
    )


@pytest.fixture
def engine(settings):
    eng = make_engine(settings.DATABASE_URL)
    init_db(eng, settings)
    return eng


@pytest.fixture
def job_store(engine):
    return JobStore(engine)


@pytest.fixture
def tour_store(engine):
    return TourStore(engine)


@pytest.fixture
def pref_store(engine):
    return PreferenceStore(engine)


@pytest.fixture
def make_generator(settings, job_store, tour_store, pref_store):
    def _make(content=None, narrator=None, worker=None):
        return TourGenerator(
            settings=settings,
            jobs=job_store,
            tours=tour_store,
            preferences=pref_store,
            content=content or FakeContent(),
            narrator=narrator or FakeNarrator(),
            audio_store=LocalAudioStore(settings.AUDIO_DIR),
            worker=worker,
            rng=random.Random(7),
        )
    return _make
