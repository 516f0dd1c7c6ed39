from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from .configuration import Settings, load_settings
from .database import Store
from .errors import (
    EmptyImportError,
    JobManagerStoppedError,
    LibraryUnavailableError,
    NavidromeHelperError,
    QueueFullError,
    RefreshCancelledError,
)
from .fetcher import PlaceholderSourceFetcher, SourceFetcher
from .job_manager import JobManager
from .library import LibraryIndexer
from .models import (
    ImportAccepted,
    ImportRequest,
    Job,
    JobList,
    LibraryEntry,
    LibraryList,
    SearchResponse,
    SearchResult,
)
from .utils import normalize_name

logger = logging.getLogger(__name__)

STRANDED_JOB_MESSAGE = "Interrupted by a restart before completion"
SHUTDOWN_TIMEOUT = 30.0

DEMO_CATALOGUE: List[Dict[str, object]] = [
    {
        "id": "alb_demo_1",
        "type": "album",
        "title": "Lights & Echoes",
        "artist": "Demo Ensemble",
        "album_id": "alb_demo_1",
        "album_title": "Lights & Echoes",
        "cover_url": "https://placehold.co/200x200?text=Album",
        "tracks": 10,
        "duration": 2300,
    },
    {
        "id": "alb_demo_single_parent",
        "type": "song",
        "title": "Silent Rivers",
        "artist": "Demo Ensemble",
        "album_id": "alb_demo_single_parent",
        "album_title": "Silent Rivers (Single)",
        "cover_url": "https://placehold.co/200x200?text=Single",
        "tracks": 1,
        "duration": 210,
    },
    {
        "id": "alb_electro_2024",
        "type": "album",
        "title": "Cities in Motion",
        "artist": "Pulse Runner",
        "album_id": "alb_electro_2024",
        "album_title": "Cities in Motion",
        "cover_url": "https://placehold.co/200x200?text=Album",
        "tracks": 12,
        "duration": 2600,
    },
]


def search_catalogue(query: str) -> List[SearchResult]:
    """Demo search: every catalogue entry whose artist or titles contain the normalized query."""
    needle = normalize_name(query)
    results = []
    for raw in DEMO_CATALOGUE:
        result = SearchResult.model_validate(raw)
        haystack = normalize_name(f"{result.artist} {result.title} {result.album_title or ''}")
        if not needle or needle in haystack:
            results.append(result)
    return results


def annotate_exists(results: List[SearchResult], indexer: LibraryIndexer) -> List[SearchResult]:
    """Flag results whose album is already in the library index."""
    for result in results:
        album = result.title
        if result.type == "song" and result.album_title:
            album = result.album_title
        try:
            result.exists = indexer.exists(result.artist, album)
        except sqlite3.Error:
            logger.exception("Library lookup failed for %s - %s", result.artist, album)
            result.exists = False
    return results


def create_app(settings: Optional[Settings] = None, fetcher: Optional[SourceFetcher] = None) -> FastAPI:
    """
    Wire the store, job manager and library indexer into a FastAPI application.

    The worker thread starts when the application starts up and is stopped on
    shutdown; jobs stranded by a previous process are marked failed first.
    """
    settings = settings or load_settings()
    store = Store(settings.database_path)
    manager = JobManager(
        store=store,
        music_root=settings.music_root,
        staging_root=settings.temp_dir,
        fetcher=fetcher or PlaceholderSourceFetcher(settings.phase_delay, settings.cleanup_delay),
        queue_size=settings.queue_size,
        enqueue_timeout=settings.enqueue_timeout,
    )
    indexer = LibraryIndexer(settings.music_root, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        stranded = store.fail_stranded_jobs(STRANDED_JOB_MESSAGE)
        if stranded:
            logger.warning("Marked %d stranded jobs as failed", len(stranded))
        manager.start()
        if settings.refresh_on_start:
            try:
                await run_in_threadpool(indexer.refresh, timeout=settings.refresh_timeout)
            except (NavidromeHelperError, sqlite3.Error) as exc:
                logger.warning("Library refresh at start failed: %s", exc)
        yield
        logger.info("Shutting down...")
        manager.stop(timeout=SHUTDOWN_TIMEOUT)

    app = FastAPI(title="Navidrome Helper API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.store = store
    app.state.job_manager = manager
    app.state.indexer = indexer

    app.include_router(router)
    return app


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_job_manager(request: Request) -> JobManager:
    return request.app.state.job_manager


def get_indexer(request: Request) -> LibraryIndexer:
    return request.app.state.indexer


router = APIRouter()


def _refresh_library(indexer: LibraryIndexer, settings: Settings) -> List[LibraryEntry]:
    try:
        return indexer.refresh(timeout=settings.refresh_timeout)
    except RefreshCancelledError as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    except (LibraryUnavailableError, sqlite3.Error) as exc:
        logger.exception("Library refresh failed")
        raise HTTPException(status_code=500, detail="failed to refresh library") from exc


@router.get("/health")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/api/search", response_model=SearchResponse)
def search(q: str = "", indexer: LibraryIndexer = Depends(get_indexer)) -> SearchResponse:
    return SearchResponse(items=annotate_exists(search_catalogue(q), indexer))


@router.post("/api/import", response_model=ImportAccepted, status_code=202)
def create_import(payload: ImportRequest, manager: JobManager = Depends(get_job_manager)) -> ImportAccepted:
    try:
        job = manager.submit_import(payload.items)
    except EmptyImportError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (QueueFullError, JobManagerStoppedError) as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except sqlite3.Error as exc:
        logger.exception("Failed to create job")
        raise HTTPException(status_code=500, detail="failed to create job") from exc
    return ImportAccepted(job_id=job.id)


@router.get("/api/jobs", response_model=JobList)
def list_jobs(
    limit: Optional[int] = Query(None, ge=1, le=500),
    manager: JobManager = Depends(get_job_manager),
    settings: Settings = Depends(get_settings),
) -> JobList:
    try:
        jobs = manager.list_jobs(limit or settings.list_limit)
    except sqlite3.Error as exc:
        logger.exception("Failed to list jobs")
        raise HTTPException(status_code=500, detail="failed to list jobs") from exc
    return JobList(jobs=jobs)


@router.get("/api/jobs/{job_id}", response_model=Job)
def get_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> Job:
    try:
        job = manager.get_job(job_id)
    except sqlite3.Error as exc:
        logger.exception("Failed to fetch job %s", job_id)
        raise HTTPException(status_code=500, detail="failed to fetch job") from exc
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("/api/library", response_model=LibraryList)
def list_library(
    refresh: bool = False,
    indexer: LibraryIndexer = Depends(get_indexer),
    settings: Settings = Depends(get_settings),
) -> LibraryList:
    if refresh:
        _refresh_library(indexer, settings)
    try:
        entries = indexer.list_entries()
    except sqlite3.Error as exc:
        logger.exception("Failed to list library")
        raise HTTPException(status_code=500, detail="failed to list library") from exc
    return LibraryList(library=entries)


@router.post("/api/library/refresh", response_model=LibraryList)
def refresh_library(
    indexer: LibraryIndexer = Depends(get_indexer),
    settings: Settings = Depends(get_settings),
) -> LibraryList:
    return LibraryList(library=_refresh_library(indexer, settings))


app = create_app()
