"""
Tests for Navidrome Helper Backend API endpoints.

Tests cover:
- Health check
- Import submission and validation
- Job listing and detail polling
- Library listing and refresh
- Search annotation with library presence
"""

import time
from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from navidrome_helper_backend.main import create_app, search_catalogue

SONG_PAYLOAD = {
    "id": "s1",
    "type": "song",
    "title": "Silent Rivers",
    "artist": "Demo Ensemble",
    "albumId": "alb1",
    "albumTitle": "Quiet Album",
}


def wait_for_terminal(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/api/jobs/{job_id}").json()
        if job["status"] in ("completed", "failed"):
            return job
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


class TestHealthCheck:
    """Tests for the /health endpoint."""

    def test_health_check_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestImport:
    """Tests for the /api/import endpoint."""

    def test_import_returns_job_id(self, client):
        response = client.post("/api/import", json={"items": [SONG_PAYLOAD]})
        assert response.status_code == 202
        assert "jobId" in response.json()

    def test_empty_import_is_rejected(self, client):
        response = client.post("/api/import", json={"items": []})
        assert response.status_code == 400
        assert response.json()["detail"] == "no items provided"

    def test_missing_items_is_rejected(self, client):
        response = client.post("/api/import", json={})
        assert response.status_code == 400

    def test_invalid_body_is_rejected(self, client):
        response = client.post("/api/import", json={"items": [{"title": "no id"}]})
        assert response.status_code == 422

    def test_type_defaults_to_album(self, client):
        payload = {"id": "alb9", "title": "Untyped", "artist": "Someone"}
        job_id = client.post("/api/import", json={"items": [payload]}).json()["jobId"]

        job = client.get(f"/api/jobs/{job_id}").json()
        assert job["items"][0]["sourceType"] == "album"

    @pytest.mark.parametrize("item_type, expected", [("", "album"), ("  ", "album"), ("Album", "album"), ("SONG", "song")])
    def test_type_is_normalized(self, client, item_type, expected):
        payload = {"id": "x1", "type": item_type, "title": "Loose Track", "artist": "Solo"}
        job_id = client.post("/api/import", json={"items": [payload]}).json()["jobId"]

        job = client.get(f"/api/jobs/{job_id}").json()
        assert job["items"][0]["sourceType"] == expected

    def test_unknown_type_is_rejected(self, client):
        payload = {"id": "pl1", "type": "playlist", "title": "Mix", "artist": "Various"}
        response = client.post("/api/import", json={"items": [payload]})

        assert response.status_code == 422
        assert client.get("/api/jobs").json() == {"jobs": []}

    def test_import_after_shutdown_is_rejected_without_a_job(self, client):
        client.app.state.job_manager.stop(timeout=5)

        response = client.post("/api/import", json={"items": [SONG_PAYLOAD]})

        assert response.status_code == 503
        assert client.get("/api/jobs").json() == {"jobs": []}


class TestJobs:
    """Tests for job polling endpoints."""

    def test_list_jobs_empty(self, client):
        response = client.get("/api/jobs")
        assert response.status_code == 200
        assert response.json() == {"jobs": []}

    def test_get_unknown_job_is_404(self, client):
        response = client.get("/api/jobs/nonexistent-job-id")
        assert response.status_code == 404

    def test_job_runs_to_completion(self, client, settings):
        job_id = client.post("/api/import", json={"items": [SONG_PAYLOAD]}).json()["jobId"]

        job = wait_for_terminal(client, job_id)

        assert job["status"] == "completed"
        assert job["phase"] == "completed"
        assert job["progress"] == 1.0
        assert job["finishedAt"] is not None
        assert job["artist"] == "Demo Ensemble"
        assert job["album"] == "Quiet Album"
        assert [(item["sourceId"], item["sourceType"], item["album"]) for item in job["items"]] == [
            ("alb1", "album", "Quiet Album")
        ]
        assert job["logs"][-1]["message"] == "Job completed"
        assert (settings.music_root / "Demo Ensemble" / "Quiet Album").is_dir()

    def test_list_jobs_newest_first_without_details(self, client):
        first = client.post("/api/import", json={"items": [SONG_PAYLOAD]}).json()["jobId"]
        second = client.post("/api/import", json={"items": [{**SONG_PAYLOAD, "albumId": "alb2"}]}).json()["jobId"]

        jobs = client.get("/api/jobs").json()["jobs"]
        assert [job["id"] for job in jobs] == [second, first]
        assert all(job["items"] == [] and job["logs"] == [] for job in jobs)

        limited = client.get("/api/jobs", params={"limit": 1}).json()["jobs"]
        assert [job["id"] for job in limited] == [second]

    def test_duplicate_album_import_is_skipped(self, client):
        first = client.post("/api/import", json={"items": [SONG_PAYLOAD]}).json()["jobId"]
        assert wait_for_terminal(client, first)["message"] == "Completed"

        second = client.post("/api/import", json={"items": [SONG_PAYLOAD]}).json()["jobId"]
        job = wait_for_terminal(client, second)

        assert job["status"] == "completed"
        assert job["message"].startswith("Album already exists at")
        assert job["items"][0]["status"] == "skipped"


class TestLibrary:
    """Tests for the /api/library endpoints."""

    @pytest.fixture
    def albums(self, settings):
        album = settings.music_root / "Demo Ensemble" / "Lights & Echoes"
        album.mkdir(parents=True)
        (album / "01.mp3").write_bytes(b"")
        (album / "02.mp3").write_bytes(b"")
        return album

    def test_library_is_empty_before_refresh(self, client, albums):
        response = client.get("/api/library")
        assert response.status_code == 200
        assert response.json() == {"library": []}

    def test_library_is_indexed_at_startup(self, settings, fetcher, albums):
        app = create_app(replace(settings, refresh_on_start=True), fetcher=fetcher)

        with TestClient(app) as started:
            library = started.get("/api/library").json()["library"]

        assert [(entry["artist"], entry["album"]) for entry in library] == [("Demo Ensemble", "Lights & Echoes")]

    def test_refresh_endpoint(self, client, albums):
        response = client.post("/api/library/refresh")
        assert response.status_code == 200

        library = response.json()["library"]
        assert len(library) == 1
        assert library[0]["artist"] == "Demo Ensemble"
        assert library[0]["album"] == "Lights & Echoes"
        assert library[0]["trackCount"] == 2
        assert library[0]["path"] == str(albums)

    def test_list_with_refresh_flag(self, client, albums):
        response = client.get("/api/library", params={"refresh": "true"})
        assert [entry["album"] for entry in response.json()["library"]] == ["Lights & Echoes"]

    def test_search_flags_existing_albums(self, client, albums):
        client.post("/api/library/refresh")

        items = {item["id"]: item for item in client.get("/api/search", params={"q": "demo"}).json()["items"]}

        assert items["alb_demo_1"]["exists"] is True
        assert items["alb_demo_single_parent"]["exists"] is False
        assert items["alb_demo_single_parent"]["albumTitle"] == "Silent Rivers (Single)"
        assert "alb_electro_2024" not in items


def test_search_catalogue_without_query_returns_everything():
    assert [result.id for result in search_catalogue("")] == [
        "alb_demo_1",
        "alb_demo_single_parent",
        "alb_electro_2024",
    ]
