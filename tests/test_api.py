import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from conftest import FakeContent, FakeNarrator
from voicepins.main import build_services, create_app
from voicepins.models import Pin
from voicepins.schemas import TourGenerationRequest
from voicepins.storage import LocalAudioStore


def _payload(**overrides) -> dict:
    body = {
        "deviceId": "dev1",
        "center": {"lat": 43.65, "lng": -79.38},
        "radiusMeters": 500,
        "pinCount": 3,
    }
    body.update(overrides)
    return body


@pytest.fixture
def services(settings):
    return build_services(
        settings,
        content=FakeContent(),
        narrator=FakeNarrator(),
        audio_store=LocalAudioStore(settings.AUDIO_DIR),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as c:
        yield c


def test_generate_then_poll_until_completed(client, services):
    resp = client.post("/api/tours/generate", json=_payload())
    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "pending"
    assert body["estimatedCompletionSeconds"] == 30
    assert body["pollUrl"] == f"/api/tours/jobs/{body['jobId']}"

    assert services.worker.drain(timeout=10)
    status = client.get(body["pollUrl"]).json()
    assert status["status"] == "completed"
    assert len(status["result"]["pins"]) == 3
    assert status["costs"]["estimatedCostUsd"] > 0
    assert "error" not in status
    assert "estimatedRemainingSeconds" not in status

    tours = client.get("/api/tours", params={"deviceId": "dev1"}).json()["tours"]
    assert [t["id"] for t in tours] == [status["result"]["tourId"]]
    assert tours[0]["pinCount"] == 3

    tour = client.get(f"/api/tours/{status['result']['tourId']}").json()
    assert len(tour["pins"]) == 3
    pins = client.get("/api/collections/default/pins").json()
    assert len(pins) == 3


def test_pending_job_reports_remaining_time(client, services):
    job = services.jobs.create(TourGenerationRequest.model_validate(_payload(pinCount=4)))
    body = client.get(f"/api/tours/jobs/{job.id}").json()
    assert body["status"] == "pending"
    assert body["estimatedRemainingSeconds"] == 40
    assert "result" not in body and "error" not in body and "costs" not in body


def test_unknown_job_is_404(client):
    assert client.get("/api/tours/jobs/job_nope").status_code == 404


@pytest.mark.parametrize("center", [{"lat": 91, "lng": 0}, {"lat": 0, "lng": -181}, {"lat": "x", "lng": 0}, None])
def test_invalid_coordinates_rejected_without_job(client, services, center):
    resp = client.post("/api/tours/generate", json=_payload(center=center))
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_REQUEST"
    assert services.jobs.list_by_device("dev1") == []


def test_missing_device_id_rejected(client):
    body = _payload()
    body.pop("deviceId")
    resp = client.post("/api/tours/generate", json=body)
    assert resp.status_code == 400


def test_radius_and_count_are_clamped(client, services):
    resp = client.post("/api/tours/generate", json=_payload(radiusMeters=50000, pinCount=50))
    assert resp.status_code == 202
    services.worker.drain(timeout=10)
    job = services.jobs.get(resp.json()["jobId"])
    assert job.request["radiusMeters"] == 2000
    assert job.request["pinCount"] == 10


def test_duplicate_idempotency_key_returns_conflict(client, services, monkeypatch):
    first = client.post("/api/tours/generate", json=_payload(idempotencyKey="abc-1"))
    assert first.status_code == 202
    services.worker.drain(timeout=10)

    spy = Mock(wraps=services.generator.start_generation)
    monkeypatch.setattr(services.generator, "start_generation", spy)
    second = client.post("/api/tours/generate", json=_payload(idempotencyKey="abc-1"))
    assert second.status_code == 409
    body = second.json()
    assert body["code"] == "DUPLICATE_REQUEST"
    assert body["existingJobId"] == first.json()["jobId"]
    assert body["status"] == "completed"
    spy.assert_not_called()


def test_rate_limit_after_n_requests(client, services, settings):
    for _ in range(settings.TOUR_GENERATION_RATE_LIMIT):
        assert client.post("/api/tours/generate", json=_payload(pinCount=1)).status_code == 202
    resp = client.post("/api/tours/generate", json=_payload(pinCount=1))
    assert resp.status_code == 429
    body = resp.json()
    assert body["code"] == "RATE_LIMITED"
    assert 0 < body["retryAfter"] <= settings.RATE_LIMIT_WINDOW_SECONDS
    assert resp.headers["Retry-After"] == str(body["retryAfter"])
    services.worker.drain(timeout=10)


def test_delete_tour(client, services):
    job_id = client.post("/api/tours/generate", json=_payload(pinCount=1)).json()["jobId"]
    services.worker.drain(timeout=10)
    tour_id = services.jobs.get(job_id).result["tourId"]
    assert client.delete(f"/api/tours/{tour_id}").json() == {"success": True}
    assert client.get(f"/api/tours/{tour_id}").status_code == 404
    assert client.delete(f"/api/tours/{tour_id}").status_code == 404


def test_list_tours_requires_device(client):
    assert client.get("/api/tours").status_code == 400


def test_preferences_flow(client, services, settings):
    services.tours.append_pins(settings.DEFAULT_COLLECTION_ID, [
        Pin(id="pin_food", collection_id=settings.DEFAULT_COLLECTION_ID, lat=0, lng=0, title="Deli", category="Food"),
    ])

    assert client.post("/api/preferences", json={"deviceId": "short"}).status_code == 400
    assert client.post("/api/preferences/device-0001/favorites", json={"pinId": "pin_food"}).status_code == 404

    created = client.post("/api/preferences", json={"deviceId": "device-0001"}).json()
    assert created["favoriteCount"] == 0

    added = client.post("/api/preferences/device-0001/favorites", json={"pinId": "pin_food"}).json()
    assert added["favoritePinIds"] == ["pin_food"]
    weights = added["updatedCategoryWeights"]
    assert max(weights, key=weights.get) == "Food"
    assert all(v > 0 for v in weights.values())

    favs = client.get("/api/preferences/device-0001/favorites").json()
    assert favs == {"favoritePinIds": ["pin_food"], "count": 1}

    assert client.delete("/api/preferences/device-0001/favorites/other").status_code == 404
    removed = client.delete("/api/preferences/device-0001/favorites/pin_food").json()
    assert removed["favoritePinIds"] == []
    profile = client.get("/api/preferences/device-0001").json()
    assert profile["categoryWeights"]["Food"] == pytest.approx(1 / 6)

    assert client.delete("/api/preferences/device-0001").json() == {"success": True}
    assert client.get("/api/preferences/device-0001").status_code == 404


def test_unknown_collection_is_404(client):
    assert client.get("/api/collections/nowhere/pins").status_code == 404


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_unit_count_field_name_is_accepted(client, services):
    body = _payload()
    body.pop("pinCount")
    body["unitCount"] = 3
    resp = client.post("/api/tours/generate", json=body)
    assert resp.status_code == 202
    assert resp.json()["estimatedCompletionSeconds"] == 30

    assert services.worker.drain(timeout=10)
    status = client.get(resp.json()["pollUrl"]).json()
    assert status["status"] == "completed"
    assert len(status["result"]["pins"]) == 3
    assert status["progress"]["totalPins"] == 3
    assert status["costs"]["estimatedCostUsd"] > 0


def test_concurrent_duplicates_start_one_job(client, services, monkeypatch):
    create = services.jobs.create

    def slow_create(*args, **kwargs):
        time.sleep(0.3)
        return create(*args, **kwargs)

    monkeypatch.setattr(services.jobs, "create", slow_create)
    barrier = threading.Barrier(2)
    codes = []

    def post():
        barrier.wait()
        codes.append(client.post("/api/tours/generate", json=_payload(pinCount=1, idempotencyKey="k1")).status_code)

    threads = [threading.Thread(target=post) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    services.worker.drain(timeout=10)

    assert sorted(codes) == [202, 409]
    assert len(services.jobs.list_by_device("dev1")) == 1


def test_rate_limited_request_does_not_keep_its_key(client, services, settings):
    for _ in range(settings.TOUR_GENERATION_RATE_LIMIT):
        client.post("/api/tours/generate", json=_payload(pinCount=1))
    assert client.post("/api/tours/generate", json=_payload(pinCount=1, idempotencyKey="late")).status_code == 429
    services.worker.drain(timeout=10)
    assert services.idempotency.reserve("late", "job_x") is None


def test_timestamps_are_utc(client):
    before = datetime.now(timezone.utc)
    created = client.post("/api/preferences", json={"deviceId": "device-0002"}).json()
    fetched = client.get("/api/preferences/device-0002").json()
    assert fetched["createdAt"] == created["createdAt"]
    stamp = datetime.fromisoformat(fetched["createdAt"])
    assert stamp.utcoffset() == timedelta(0)
    assert before - timedelta(seconds=1) <= stamp <= datetime.now(timezone.utc)
