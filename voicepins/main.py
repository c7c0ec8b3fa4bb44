import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from voicepins import jobs as job_states
from voicepins.admission import IdempotencyGuard, InMemoryTTLStore, RateLimiter
from voicepins.content import OpenAIContentGenerator
from voicepins.database import init_db, make_engine
from voicepins.errors import AdmissionError, DuplicateRequestError, InvalidRequestError, RateLimitedError
from voicepins.jobs import JobStore
from voicepins.models import new_job_id
from voicepins.orchestrator import ETA_SECONDS_PER_PIN, TourGenerator
from voicepins.preferences import PreferenceStore, recalculate_category_weights
from voicepins.schemas import FavoriteCreate, PreferencesCreate, TourGenerationRequest
from voicepins.settings import Settings, settings as default_settings
from voicepins.storage import make_audio_store
from voicepins.tours import TourStore, pin_to_dict, tour_summary, tour_to_dict
from voicepins.tts import ElevenLabsNarrator
from voicepins.worker import JobWorker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    jobs: JobStore
    tours: TourStore
    preferences: PreferenceStore
    generator: TourGenerator
    worker: JobWorker
    idempotency: IdempotencyGuard
    rate_limiter: RateLimiter


def build_services(settings: Settings, *, content=None, narrator=None, audio_store=None) -> Services:
    engine = make_engine(settings.DATABASE_URL)
    init_db(engine, settings)

    jobs = JobStore(engine)
    tours = TourStore(engine)
    preferences = PreferenceStore(engine)
    worker = JobWorker(max_workers=settings.MAX_CONCURRENT_JOBS)
    generator = TourGenerator(
        settings=settings,
        jobs=jobs,
        tours=tours,
        preferences=preferences,
        content=content or OpenAIContentGenerator(settings),
        narrator=narrator or ElevenLabsNarrator(settings),
        audio_store=audio_store or make_audio_store(settings),
        worker=worker,
    )
    admission_store = InMemoryTTLStore()
    return Services(
        settings=settings,
        jobs=jobs,
        tours=tours,
        preferences=preferences,
        generator=generator,
        worker=worker,
        idempotency=IdempotencyGuard(admission_store, settings.IDEMPOTENCY_TTL_SECONDS),
        rate_limiter=RateLimiter(
            admission_store,
            limit=settings.TOUR_GENERATION_RATE_LIMIT,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        ),
    )


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = services.settings if services else (settings or default_settings)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        yield
        # let running jobs finish writing their terminal state
        app.state.services.worker.shutdown()

    app = FastAPI(title="voicepins", lifespan=lifespan)
    app.state.services = services

    # ----- CORS (no auth; device ids only) -----
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AdmissionError)
    async def admission_error_handler(request: Request, exc: AdmissionError):
        return JSONResponse(status_code=exc.status_code, content=exc.payload(), headers=exc.headers())

    register_routes(app)
    return app


def _svc(request: Request) -> Services:
    return request.app.state.services


def register_routes(app: FastAPI) -> None:
    @app.get("/healthz", include_in_schema=False)
    def healthz():
        return {"ok": True}

    # ----- Tour generation -----
    @app.post("/api/tours/generate", status_code=202)
    def generate_tour(request: Request, payload: Dict = Body(...)):
        svc = _svc(request)
        try:
            tour_req = TourGenerationRequest.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            field = ".".join(str(p) for p in first.get("loc", ()))
            raise InvalidRequestError(f"Invalid request: {field} {first.get('msg', '')}".strip())

        job_id = new_job_id()
        key = tour_req.idempotency_key
        if key:
            existing_id = svc.idempotency.reserve(key, job_id)
            if existing_id:
                existing = svc.jobs.get(existing_id)
                raise DuplicateRequestError(
                    "Duplicate request",
                    existingJobId=existing_id,
                    status=existing.status if existing else job_states.PENDING,
                )

        try:
            decision = svc.rate_limiter.hit(tour_req.device_id)
            if not decision.allowed:
                raise RateLimitedError("Rate limit exceeded", retryAfter=decision.retry_after)
            svc.generator.start_generation(tour_req, job_id=job_id)
        except Exception:
            if key:
                svc.idempotency.release(key)
            raise

        return {
            "jobId": job_id,
            "status": "pending",
            "estimatedCompletionSeconds": tour_req.pin_count * ETA_SECONDS_PER_PIN,
            "pollUrl": f"/api/tours/jobs/{job_id}",
        }

    @app.get("/api/tours/jobs/{job_id}")
    def job_status(request: Request, job_id: str):
        job = _svc(request).jobs.get(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        body = {"jobId": job.id, "status": job.status, "progress": job.progress}
        if job.status in job_states.ACTIVE_STATES:
            remaining = job.progress.get("totalPins", 0) - job.progress.get("completedPins", 0)
            body["estimatedRemainingSeconds"] = max(0, remaining) * ETA_SECONDS_PER_PIN
        if job.status in (job_states.COMPLETED, job_states.PARTIAL):
            body["result"] = job.result
            body["costs"] = job.costs
        if job.status in (job_states.FAILED, job_states.PARTIAL):
            body["error"] = job.error
        return body

    # ----- Tours -----
    @app.get("/api/tours")
    def list_tours(request: Request, deviceId: Optional[str] = Query(None)):
        if not deviceId:
            raise HTTPException(status_code=400, detail="deviceId query parameter is required")
        return {"tours": [tour_summary(t) for t in _svc(request).tours.tours_by_device(deviceId)]}

    @app.get("/api/tours/{tour_id}")
    def get_tour(request: Request, tour_id: str):
        tour = _svc(request).tours.get_tour(tour_id)
        if not tour:
            raise HTTPException(status_code=404, detail="Tour not found")
        return tour_to_dict(tour)

    @app.delete("/api/tours/{tour_id}")
    def delete_tour(request: Request, tour_id: str):
        if not _svc(request).tours.delete_tour(tour_id):
            raise HTTPException(status_code=404, detail="Tour not found")
        return {"success": True}

    # ----- Collections -----
    @app.get("/api/collections/{collection_id}/pins")
    def collection_pins(request: Request, collection_id: str):
        tours = _svc(request).tours
        if tours.get_collection(collection_id) is None:
            raise HTTPException(status_code=404, detail="Collection not found")
        return [pin_to_dict(p) for p in tours.collection_pins(collection_id)]

    # ----- Preferences -----
    def _profile_or_404(svc: Services, device_id: str):
        profile = svc.preferences.get(device_id)
        if profile is None:
            raise HTTPException(status_code=404, detail="Preferences not found")
        return profile

    @app.post("/api/preferences")
    def create_preferences(request: Request, payload: Dict = Body(...)):
        try:
            body = PreferencesCreate.model_validate(payload)
        except ValidationError:
            raise HTTPException(status_code=400, detail="deviceId must be a string of 8 to 64 characters")
        profile = _svc(request).preferences.get_or_create(body.device_id)
        return {
            "deviceId": profile.device_id,
            "categoryWeights": profile.category_weights,
            "favoriteCount": len(profile.favorite_pin_ids),
            "createdAt": profile.created_at.isoformat(),
            "updatedAt": profile.updated_at.isoformat(),
        }

    @app.get("/api/preferences/{device_id}")
    def get_preferences(request: Request, device_id: str):
        profile = _profile_or_404(_svc(request), device_id)
        return {
            "deviceId": profile.device_id,
            "favoritePinIds": profile.favorite_pin_ids,
            "categoryWeights": profile.category_weights,
            "visitedLocations": profile.visited_locations,
            "createdAt": profile.created_at.isoformat(),
            "updatedAt": profile.updated_at.isoformat(),
        }

    @app.delete("/api/preferences/{device_id}")
    def delete_preferences(request: Request, device_id: str):
        if not _svc(request).preferences.delete(device_id):
            raise HTTPException(status_code=404, detail="Preferences not found")
        return {"success": True}

    @app.get("/api/preferences/{device_id}/favorites")
    def list_favorites(request: Request, device_id: str):
        profile = _profile_or_404(_svc(request), device_id)
        return {"favoritePinIds": profile.favorite_pin_ids, "count": len(profile.favorite_pin_ids)}

    @app.post("/api/preferences/{device_id}/favorites")
    def add_favorite(request: Request, device_id: str, payload: Dict = Body(...)):
        svc = _svc(request)
        try:
            body = FavoriteCreate.model_validate(payload)
        except ValidationError:
            raise HTTPException(status_code=400, detail="pinId is required")
        _profile_or_404(svc, device_id)
        profile = svc.preferences.add_favorite(device_id, body.pin_id)
        profile = recalculate_category_weights(profile, svc.preferences, svc.tours.get_pin)
        return {
            "success": True,
            "favoritePinIds": profile.favorite_pin_ids,
            "updatedCategoryWeights": profile.category_weights,
        }

    @app.delete("/api/preferences/{device_id}/favorites/{pin_id}")
    def remove_favorite(request: Request, device_id: str, pin_id: str):
        svc = _svc(request)
        profile = _profile_or_404(svc, device_id)
        if pin_id not in profile.favorite_pin_ids:
            raise HTTPException(status_code=404, detail="Pin not in favorites")
        profile = svc.preferences.remove_favorite(device_id, pin_id)
        profile = recalculate_category_weights(profile, svc.preferences, svc.tours.get_pin)
        return {"success": True, "favoritePinIds": profile.favorite_pin_ids}


app = create_app()
