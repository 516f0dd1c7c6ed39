"""
Navidrome Helper Backend - REST API for importing albums into a Navidrome library

This package provides a FastAPI-based web service that accepts album and song
import requests and processes each one as a background job. It enables:

- Import submission with song-to-album deduplication
- Sequential, phase-by-phase job execution on a single worker thread
- Durable job, line item and log tracking in SQLite for client polling
- Indexing of the music library to flag albums that are already present

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - job_manager: Job queue, worker and phase state machine
    - database: SQLite state store (jobs, items, logs, library index)
    - library: Music root scanner that installs library snapshots
    - fetcher: Pluggable source fetch/download/extract capability
    - models: Pydantic models for request/response validation
    - configuration: Config loading and merging logic
    - utils: Name normalization, filesystem and timestamp helpers

Usage:
    Run the API server with:
        python -m navidrome_helper_backend

    Or directly through uvicorn:
        uvicorn navidrome_helper_backend.main:app --port 8080

Architecture Principles:
    - One writer: every store mutation is serialized and transactional
    - Every phase transition is persisted before its work starts
    - Terminal job states are final
    - The fetch/download backend is injected, never hard-wired
"""
