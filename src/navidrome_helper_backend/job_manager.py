"""
Import job orchestration and lifecycle management.

This module manages the end-to-end lifecycle of album import jobs:
- Validating and deduplicating requested items
- Persisting new jobs before they are queued
- A bounded in-process queue drained by a single worker thread
- The fixed phase sequence each job moves through, with every transition
  persisted (state update plus log line) before the phase's side effect runs
- Placement of extracted content into the music library, including the
  duplicate-album short circuit

The JobManager owns its queue and worker; nothing here is module-global, so
tests and the web application each create their own instance.
"""

from __future__ import annotations

import logging
import queue
import shutil
from dataclasses import dataclass
from pathlib import Path
from threading import Event, Thread
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from .database import Store
from .errors import EmptyImportError, JobManagerStoppedError, PlacementError, QueueFullError
from .fetcher import PlaceholderSourceFetcher, SourceFetcher
from .models import ImportItem, ItemStatus, Job, JobItem, JobPhase, JobStatus, SourceType
from .utils import ensure_directory, sanitize_path_component

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"

# Fixed progress checkpoint for each phase.
PHASE_PROGRESS: Dict[JobPhase, float] = {
    JobPhase.QUEUED: 0.0,
    JobPhase.FETCHING_SOURCE: 0.05,
    JobPhase.DOWNLOADING: 0.2,
    JobPhase.EXTRACTING: 0.45,
    JobPhase.PLACING: 0.7,
    JobPhase.CLEANUP: 0.95,
    JobPhase.COMPLETED: 1.0,
}

PHASE_SEQUENCE: List[JobPhase] = list(PHASE_PROGRESS)

_STOP = object()


def dedupe_items(items: Sequence[ImportItem]) -> List[JobItem]:
    """
    Collapse requested items into the job's line items.

    Items sharing a source id collapse to the first occurrence. A song that
    names its parent album is imported as that album, keyed by the album id,
    so a job never holds both a song and the album it belongs to.

    Args:
        items: Requested items, in request order

    Returns:
        Job items in order of first occurrence
    """
    seen: Dict[str, JobItem] = {}
    for item in items:
        source_type = (item.type or SourceType.ALBUM.value).lower()
        if source_type == SourceType.SONG.value and item.album_id:
            if item.album_id in seen:
                continue
            seen[item.album_id] = JobItem(
                source_id=item.album_id,
                source_type=SourceType.ALBUM.value,
                title=item.album_title or "",
                artist=item.artist,
                album=item.album_title or "",
                cover_url=item.cover_url or "",
                status=ItemStatus.QUEUED,
                message="queued",
            )
            continue
        if item.id in seen:
            continue
        album = item.album_title or (item.title if source_type == SourceType.ALBUM.value else "")
        seen[item.id] = JobItem(
            source_id=item.id,
            source_type=source_type,
            title=item.title,
            artist=item.artist,
            album=album,
            cover_url=item.cover_url or "",
            status=ItemStatus.QUEUED,
            message="queued",
        )
    return list(seen.values())


def build_job(items: Sequence[ImportItem]) -> Job:
    """
    Build a new queued job from requested items.

    Raises:
        EmptyImportError: If no items were requested
    """
    if not items:
        raise EmptyImportError("no items provided")
    job_items = dedupe_items(items)
    artist = next((item.artist for item in job_items if item.artist), "")
    album = next((item.title for item in job_items if item.title), "")
    return Job(
        id=uuid4().hex,
        status=JobStatus.QUEUED,
        phase=JobPhase.QUEUED,
        message="queued",
        progress=PHASE_PROGRESS[JobPhase.QUEUED],
        artist=artist,
        album=album,
        items=job_items,
    )


@dataclass
class _JobRun:
    """Mutable bookkeeping for the job the worker is currently processing."""

    job: Job
    staging_dir: Path
    progress: float = 0.0
    finished: bool = False


class JobManager:
    """
    Central coordinator for import job lifecycle management.

    Jobs are persisted by :meth:`submit_import`, queued, and processed one at
    a time, end to end, by a single background thread. Each phase transition
    is written to the store in one transaction before the phase's work starts,
    so a crash can strand a job mid-phase but never corrupt it.

    Attributes:
        store: Durable job and library state
        music_root: Managed library root where albums are placed
        staging_root: Parent of per-job staging directories
        fetcher: Capability that produces extracted content for a job
    """

    def __init__(
        self,
        store: Store,
        music_root: Path,
        staging_root: Path,
        fetcher: Optional[SourceFetcher] = None,
        queue_size: int = 16,
        enqueue_timeout: Optional[float] = 5.0,
    ) -> None:
        """
        Initialize the job manager.

        Args:
            store: State store shared with the web layer
            music_root: Directory albums are placed under
            staging_root: Directory for temporary per-job content
            fetcher: Source fetcher (default: placeholder that simulates work)
            queue_size: Capacity of the pending-job queue
            enqueue_timeout: Seconds to wait for queue space before failing
                fast; None waits indefinitely
        """
        self.store = store
        self.music_root = ensure_directory(Path(music_root)).resolve()
        self.staging_root = ensure_directory(Path(staging_root)).resolve()
        self.fetcher: SourceFetcher = fetcher or PlaceholderSourceFetcher()
        self.enqueue_timeout = enqueue_timeout
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=queue_size)
        self._stop_event = Event()
        self._worker: Optional[Thread] = None

    # ------------------------------------------------------------- lifecycle

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        """Start the worker thread. Calling start on a running manager is a no-op."""
        if self.is_running:
            return
        if self._stop_event.is_set():
            raise RuntimeError("Job manager has been stopped and cannot be restarted.")
        self._worker = Thread(target=self._worker_loop, name="import-job-worker", daemon=True)
        self._worker.start()
        logger.info("Import worker started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the worker after the job it is processing reaches a terminal state.

        Jobs still waiting in the queue are not processed; they remain queued
        in the store.
        """
        self._stop_event.set()
        try:
            self._queue.put_nowait(_STOP)
        except queue.Full:
            # A full queue means the worker is busy; it checks the stop event before its next job.
            pass
        if self._worker is not None:
            self._worker.join(timeout)
            if self._worker.is_alive():
                logger.warning("Import worker did not stop within %s seconds", timeout)
            else:
                logger.info("Import worker stopped")

    # ------------------------------------------------------------ submission

    def submit_import(self, items: Sequence[ImportItem]) -> Job:
        """
        Create, persist and enqueue an import job.

        Args:
            items: Requested albums and songs

        Returns:
            The persisted job (status queued, phase queued, progress 0)

        Raises:
            EmptyImportError: If no items were requested
            JobManagerStoppedError: If the manager has been stopped; nothing is persisted
            QueueFullError: If the queue stayed full; the job is marked failed
            sqlite3.Error: If the job could not be persisted
        """
        job = build_job(items)
        self._ensure_accepting()
        self.store.insert_job(job)
        logger.info("Created job %s for %s - %s (%d items)", job.id, job.artist, job.album, len(job.items))
        try:
            self.enqueue(job)
        except (QueueFullError, JobManagerStoppedError) as exc:
            self.store.record_transition(
                job.id,
                JobStatus.FAILED,
                JobPhase.FAILED,
                str(exc),
                job.progress,
                finished=True,
                log_message=f"Job failed: {exc}",
            )
            raise
        return job

    def enqueue(self, job: Job) -> None:
        """
        Queue an already-persisted job for processing.

        Raises:
            QueueFullError: If no space freed up within ``enqueue_timeout``
            JobManagerStoppedError: If the manager has been stopped
        """
        self._ensure_accepting()
        try:
            self._queue.put(job, timeout=self.enqueue_timeout)
        except queue.Full as exc:
            raise QueueFullError("Job queue is full, try again later") from exc

    def _ensure_accepting(self) -> None:
        if self._stop_event.is_set():
            raise JobManagerStoppedError("Job manager is stopped; no new jobs are accepted.")

    def list_jobs(self, limit: int = 50) -> List[Job]:
        return self.store.list_jobs(limit)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.store.get_job(job_id)

    # ---------------------------------------------------------------- worker

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP or self._stop_event.is_set():
                    return
                self._run_job(item)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()

    def _run_job(self, job: Job) -> None:
        """
        Drive one job through every phase to a terminal state.

        Any exception ends the job as failed; the worker then moves on to the
        next queued job. Nothing is retried.
        """
        run = _JobRun(job=job, staging_dir=self.staging_root / job.id)
        logger.info("Starting job %s", job.id)
        try:
            self._mark_items(run, ItemStatus.RUNNING, "running")

            self._advance(run, JobPhase.FETCHING_SOURCE, "Fetching source")
            self.fetcher.fetch_source(job, run.staging_dir)

            self._advance(run, JobPhase.DOWNLOADING, "Downloading archive")
            self.fetcher.download(job, run.staging_dir)

            self._advance(run, JobPhase.EXTRACTING, "Extracting archive")
            content_dir = self.fetcher.extract(job, run.staging_dir)

            target_dir = self.target_directory(job)
            self._advance(run, JobPhase.PLACING, f"Placing files into {target_dir}")
            if target_dir.exists():
                message = f"Album already exists at {target_dir}, skipping"
                self._finish(run, JobStatus.COMPLETED, JobPhase.COMPLETED, message, message, ItemStatus.SKIPPED)
                shutil.rmtree(run.staging_dir, ignore_errors=True)
                logger.info("Job %s skipped: %s", job.id, message)
                return
            self._place(run, content_dir, target_dir)

            self._advance(run, JobPhase.CLEANUP, "Cleaning up temporary files")
            self.fetcher.cleanup(job, run.staging_dir)

            self._finish(run, JobStatus.COMPLETED, JobPhase.COMPLETED, "Completed", "Job completed", ItemStatus.COMPLETED)
            logger.info("Job %s completed", job.id)
        except Exception as exc:
            logger.exception("Job %s failed", job.id)
            self._fail(run, exc)

    def target_directory(self, job: Job) -> Path:
        """
        Directory the job's album is placed in: ``<music root>/<artist>/<album>``.

        Raises:
            PlacementError: If the sanitized path would leave the music root
        """
        artist = sanitize_path_component(job.artist, UNKNOWN_ARTIST)
        album = sanitize_path_component(job.album, UNKNOWN_ALBUM)
        target = (self.music_root / artist / album).resolve()
        if self.music_root not in target.parents:
            raise PlacementError(f"target path {target} escapes music root {self.music_root}")
        return target

    def _place(self, run: _JobRun, content_dir: Path, target_dir: Path) -> None:
        """
        Copy extracted content into ``target_dir``.

        Files are written to a hidden sibling directory that is renamed into
        place only once every copy succeeded. A failed placement leaves nothing
        at ``target_dir``.
        """
        partial_dir = target_dir.with_name(f".{target_dir.name}.{run.job.id}.partial")
        try:
            partial_dir.mkdir(parents=True)
        except OSError as exc:
            raise PlacementError(f"create target dir: {exc}") from exc
        try:
            self.store.add_job_log(run.job.id, f"Writing files to {target_dir}")
            for source in sorted(content_dir.iterdir()):
                destination = partial_dir / source.name
                if source.is_dir():
                    shutil.copytree(source, destination)
                else:
                    shutil.copy2(source, destination)
            partial_dir.rename(target_dir)
        except OSError as exc:
            raise PlacementError(f"write files: {exc}") from exc
        finally:
            if partial_dir.exists():
                shutil.rmtree(partial_dir, ignore_errors=True)

    # ----------------------------------------------------------- transitions

    def _advance(self, run: _JobRun, phase: JobPhase, message: str) -> None:
        progress = PHASE_PROGRESS[phase]
        self.store.record_transition(run.job.id, JobStatus.RUNNING, phase, message, progress)
        run.progress = progress
        logger.debug("Job %s entered %s (%.2f)", run.job.id, phase.value, progress)

    def _finish(
        self,
        run: _JobRun,
        status: JobStatus,
        phase: JobPhase,
        message: str,
        log_message: str,
        item_status: ItemStatus,
    ) -> None:
        if run.finished:
            return
        progress = PHASE_PROGRESS[JobPhase.COMPLETED] if status is JobStatus.COMPLETED else run.progress
        self._mark_items(run, item_status, message)
        self.store.record_transition(run.job.id, status, phase, message, progress, finished=True, log_message=log_message)
        run.finished = True
        run.progress = progress

    def _fail(self, run: _JobRun, exc: BaseException) -> None:
        if run.finished:
            return
        detail = str(exc) or exc.__class__.__name__
        try:
            self._finish(run, JobStatus.FAILED, JobPhase.FAILED, detail, f"Job failed: {detail}", ItemStatus.FAILED)
        except Exception:
            # The store itself is failing; the job stays stranded in its last persisted phase.
            logger.exception("Could not record failure of job %s", run.job.id)
        shutil.rmtree(run.staging_dir, ignore_errors=True)

    def _mark_items(self, run: _JobRun, status: ItemStatus, message: str) -> None:
        for item in run.job.items:
            self.store.update_job_item(run.job.id, item.source_id, status, message)
