"""
Pytest configuration and fixtures for Navidrome Helper Backend tests.
"""

import os
import shutil
import tempfile
import time

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_TEST_ROOT = tempfile.mkdtemp(prefix="navidrome_helper_test_")
os.environ["DATA_DIR"] = os.path.join(_TEST_ROOT, "data")
os.environ["TEMP_DIR"] = os.path.join(_TEST_ROOT, "tmp")
os.environ["NAVIDROME_MUSIC_PATH"] = os.path.join(_TEST_ROOT, "music")
os.environ["PHASE_DELAY"] = "0"
os.environ["LIBRARY_REFRESH_ON_START"] = "false"

from navidrome_helper_backend.configuration import load_settings
from navidrome_helper_backend.database import Store
from navidrome_helper_backend.fetcher import PlaceholderSourceFetcher
from navidrome_helper_backend.job_manager import JobManager
from navidrome_helper_backend.main import create_app
from navidrome_helper_backend.models import ImportItem, JobStatus


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every directory at a per-test temp dir, with no simulated latency."""
    return load_settings(
        overrides={
            "paths": {
                "data_dir": str(tmp_path / "data"),
                "temp_dir": str(tmp_path / "tmp"),
                "music_root": str(tmp_path / "music"),
            },
            "jobs": {"phase_delay": 0, "cleanup_delay": 0, "enqueue_timeout": 0.05},
            "library": {"refresh_on_start": False},
        },
        environ={},
    )


@pytest.fixture
def store(settings):
    return Store(settings.database_path)


@pytest.fixture
def fetcher():
    return PlaceholderSourceFetcher(delay=0, cleanup_delay=0)


@pytest.fixture
def make_manager(store, settings, fetcher):
    """Factory for job managers sharing the test store; stops every manager on teardown."""
    managers = []

    def _make(start=True, **kwargs):
        options = {"fetcher": fetcher, "queue_size": 4, "enqueue_timeout": 0.05}
        options.update(kwargs)
        manager = JobManager(
            store=options.pop("store", store),
            music_root=settings.music_root,
            staging_root=settings.temp_dir,
            **options,
        )
        if start:
            manager.start()
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        manager.stop(timeout=5)


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def wait_for_job(store):
    """Poll the store until a job reaches a terminal status."""

    def _wait(job_id, timeout=5.0, job_store=None):
        job_store = job_store or store
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            job = job_store.get_job(job_id)
            if job and job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
                return job
            time.sleep(0.01)
        raise AssertionError(f"job {job_id} did not finish within {timeout} seconds")

    return _wait


@pytest.fixture
def client(settings, fetcher):
    """Create a test client for a fresh app; entering it runs startup and shutdown."""
    app = create_app(settings, fetcher=fetcher)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def song_item():
    return ImportItem(
        id="s1",
        type="song",
        title="Silent Rivers",
        artist="Demo Ensemble",
        album_id="alb1",
        album_title="Quiet Album",
    )


@pytest.fixture
def album_item():
    return ImportItem(id="alb_demo_1", type="album", title="Lights & Echoes", artist="Demo Ensemble")
