"""
SQLite persistence for import jobs and the library index.

This module provides the durable state store behind the import pipeline:
job records, their line items, append-only job logs and the library index
snapshot. Every mutating operation runs inside a single transaction while
holding one process-wide writer lock, so writes are serialized no matter which
component issues them. Reads open their own connection and, thanks to WAL
mode, only ever observe committed transactions.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Iterable, Iterator, List, Optional

from .models import (
    ItemStatus,
    Job,
    JobItem,
    JobLogLine,
    JobPhase,
    JobStatus,
    LibraryEntry,
)
from .utils import ensure_directory, format_timestamp, normalize_name, parse_timestamp, utcnow

# Default database path
DEFAULT_DB_PATH = Path("data/navidrome-helper.db")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        phase TEXT NOT NULL,
        message TEXT,
        progress REAL NOT NULL DEFAULT 0,
        artist TEXT,
        album TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        finished_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_jobs_created_at
    ON jobs(created_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS job_items (
        job_id TEXT NOT NULL,
        source_id TEXT NOT NULL,
        source_type TEXT NOT NULL,
        title TEXT,
        artist TEXT,
        album TEXT,
        cover_url TEXT,
        status TEXT NOT NULL,
        message TEXT,
        position INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (job_id, source_id),
        FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_logs (
        job_id TEXT NOT NULL,
        message TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_job_logs_job_id
    ON job_logs(job_id, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS library_index (
        artist TEXT NOT NULL,
        album TEXT NOT NULL,
        path TEXT NOT NULL,
        track_count INTEGER NOT NULL,
        updated_at TEXT NOT NULL,
        artist_norm TEXT NOT NULL,
        album_norm TEXT NOT NULL,
        PRIMARY KEY (artist_norm, album_norm)
    )
    """,
)

_JOB_COLUMNS = "id, status, phase, message, progress, artist, album, created_at, updated_at, finished_at"


class Store:
    """
    SQLite-backed store for jobs, job items, job logs and the library index.

    Thread-safe: writes are serialized through a lock and each run in one
    transaction; reads use separate connections and may run concurrently.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        ensure_directory(self.db_path.parent)
        self._write_lock = Lock()
        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Hold the writer lock for the lifetime of one write transaction."""
        with self._write_lock, self._get_connection() as conn:
            yield conn

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        """Open a read transaction so multi-statement reads share one snapshot."""
        with self._get_connection() as conn:
            conn.execute("BEGIN")
            yield conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._write() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    # ------------------------------------------------------------------ jobs

    def insert_job(self, job: Job) -> Job:
        """
        Persist a new job and all of its items in one transaction.

        The created/updated timestamps of the job and its items are set here.
        If any item fails to insert, nothing is written.

        Args:
            job: The fully built job, with its deduplicated items

        Returns:
            The same job, with timestamps and item job ids filled in
        """
        now = utcnow()
        stamp = format_timestamp(now)
        job.created_at = job.updated_at = parse_timestamp(stamp)
        job.finished_at = None

        with self._write() as conn:
            conn.execute(
                f"INSERT INTO jobs ({_JOB_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, NULL)",
                (
                    job.id,
                    job.status.value,
                    job.phase.value,
                    job.message,
                    job.progress,
                    job.artist,
                    job.album,
                    stamp,
                    stamp,
                ),
            )
            for position, item in enumerate(job.items):
                item.job_id = job.id
                item.created_at = item.updated_at = job.created_at
                conn.execute(
                    """
                    INSERT INTO job_items (
                        job_id, source_id, source_type, title, artist, album,
                        cover_url, status, message, position, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.id,
                        item.source_id,
                        item.source_type,
                        item.title,
                        item.artist,
                        item.album,
                        item.cover_url,
                        item.status.value,
                        item.message,
                        position,
                        stamp,
                        stamp,
                    ),
                )
        return job

    @staticmethod
    def _update_state(
        conn: sqlite3.Connection,
        job_id: str,
        status: JobStatus,
        phase: JobPhase,
        message: str,
        progress: float,
        finished: bool,
        stamp: str,
    ) -> None:
        if finished:
            # The first terminal timestamp wins.
            conn.execute(
                """
                UPDATE jobs
                SET status = ?, phase = ?, message = ?, progress = ?,
                    updated_at = ?, finished_at = COALESCE(finished_at, ?)
                WHERE id = ?
                """,
                (status.value, phase.value, message, progress, stamp, stamp, job_id),
            )
        else:
            conn.execute(
                """
                UPDATE jobs
                SET status = ?, phase = ?, message = ?, progress = ?, updated_at = ?
                WHERE id = ?
                """,
                (status.value, phase.value, message, progress, stamp, job_id),
            )

    def update_job_state(
        self,
        job_id: str,
        status: JobStatus,
        phase: JobPhase,
        message: str,
        progress: float,
        finished: bool = False,
    ) -> None:
        """
        Update a job's coarse status, phase, message and progress.

        ``updated_at`` is always refreshed; ``finished_at`` is set only when
        ``finished`` is true and the job has not been finished before.
        """
        with self._write() as conn:
            self._update_state(conn, job_id, status, phase, message, progress, finished, format_timestamp(utcnow()))

    def add_job_log(self, job_id: str, message: str) -> None:
        """
        Append one log line to a job.

        Args:
            job_id: The job ID
            message: Log message
        """
        with self._write() as conn:
            conn.execute(
                "INSERT INTO job_logs (job_id, message, created_at) VALUES (?, ?, ?)",
                (job_id, message, format_timestamp(utcnow())),
            )

    def record_transition(
        self,
        job_id: str,
        status: JobStatus,
        phase: JobPhase,
        message: str,
        progress: float,
        finished: bool = False,
        log_message: Optional[str] = None,
    ) -> None:
        """
        Apply a state update and append its log line in one transaction.

        Args:
            log_message: Log line to append; defaults to ``message``
        """
        stamp = format_timestamp(utcnow())
        with self._write() as conn:
            self._update_state(conn, job_id, status, phase, message, progress, finished, stamp)
            conn.execute(
                "INSERT INTO job_logs (job_id, message, created_at) VALUES (?, ?, ?)",
                (job_id, log_message if log_message is not None else message, stamp),
            )

    def update_job_item(self, job_id: str, source_id: str, status: ItemStatus, message: str) -> None:
        """
        Update the status and message of one job item.

        Unknown (job_id, source_id) pairs are ignored.
        """
        with self._write() as conn:
            conn.execute(
                """
                UPDATE job_items SET status = ?, message = ?, updated_at = ?
                WHERE job_id = ? AND source_id = ?
                """,
                (status.value, message, format_timestamp(utcnow()), job_id, source_id),
            )

    def list_jobs(self, limit: int = 50) -> List[Job]:
        """
        List the most recent jobs, newest first, without items or logs.

        Args:
            limit: Maximum number of jobs to return
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def get_job(self, job_id: str) -> Optional[Job]:
        """
        Retrieve a job with its items and logs.

        Args:
            job_id: The job ID

        Returns:
            The job, or None if it does not exist
        """
        with self._read() as conn:
            row = conn.execute(f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if not row:
                return None
            job = self._row_to_job(row)
            job.items = [
                self._row_to_item(item)
                for item in conn.execute(
                    "SELECT * FROM job_items WHERE job_id = ? ORDER BY position ASC",
                    (job_id,),
                ).fetchall()
            ]
            job.logs = [
                JobLogLine(
                    job_id=log["job_id"],
                    message=log["message"],
                    created_at=parse_timestamp(log["created_at"]),
                )
                for log in conn.execute(
                    "SELECT job_id, message, created_at FROM job_logs WHERE job_id = ? ORDER BY created_at ASC, rowid ASC",
                    (job_id,),
                ).fetchall()
            ]
        return job

    def fail_stranded_jobs(self, message: str) -> List[str]:
        """
        Mark every non-terminal job as failed.

        Used at startup: jobs left queued or running by a previous process can
        no longer make progress because the in-memory queue did not survive.

        Returns:
            IDs of the jobs that were marked failed
        """
        stamp = format_timestamp(utcnow())
        with self._write() as conn:
            ids = [
                row["id"]
                for row in conn.execute(
                    "SELECT id FROM jobs WHERE status NOT IN (?, ?)",
                    (JobStatus.COMPLETED.value, JobStatus.FAILED.value),
                ).fetchall()
            ]
            for job_id in ids:
                conn.execute(
                    """
                    UPDATE jobs
                    SET status = ?, phase = ?, message = ?, updated_at = ?,
                        finished_at = COALESCE(finished_at, ?)
                    WHERE id = ?
                    """,
                    (JobStatus.FAILED.value, JobPhase.FAILED.value, message, stamp, stamp, job_id),
                )
                conn.execute(
                    "INSERT INTO job_logs (job_id, message, created_at) VALUES (?, ?, ?)",
                    (job_id, message, stamp),
                )
        return ids

    # --------------------------------------------------------------- library

    def replace_library_index(self, entries: Iterable[LibraryEntry]) -> int:
        """
        Replace the whole library index with a new snapshot in one transaction.

        Normalized artist/album keys are derived here. When two entries share
        a normalized key, the first one is kept.

        Returns:
            Number of rows in the new snapshot
        """
        inserted = 0
        with self._write() as conn:
            conn.execute("DELETE FROM library_index")
            for entry in entries:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO library_index (
                        artist, album, path, track_count, updated_at, artist_norm, album_norm
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.artist,
                        entry.album,
                        entry.path,
                        entry.track_count,
                        format_timestamp(entry.updated_at),
                        normalize_name(entry.artist),
                        normalize_name(entry.album),
                    ),
                )
                inserted += cursor.rowcount
        return inserted

    def list_library(self) -> List[LibraryEntry]:
        """List all library entries ordered by normalized artist, then album."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT artist, album, path, track_count, updated_at
                FROM library_index ORDER BY artist_norm, album_norm
                """
            ).fetchall()
        return [
            LibraryEntry(
                artist=row["artist"],
                album=row["album"],
                path=row["path"],
                track_count=row["track_count"],
                updated_at=parse_timestamp(row["updated_at"]),
            )
            for row in rows
        ]

    def library_exists(self, artist_norm: str, album_norm: str) -> bool:
        """Report whether the normalized artist/album pair is in the index."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM library_index WHERE artist_norm = ? AND album_norm = ? LIMIT 1",
                (artist_norm, album_norm),
            ).fetchone()
        return row is not None

    # --------------------------------------------------------------- helpers

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a jobs row to a Job without items or logs."""
        return Job(
            id=row["id"],
            status=JobStatus(row["status"]),
            phase=JobPhase(row["phase"]),
            message=row["message"] or "",
            progress=row["progress"],
            artist=row["artist"] or "",
            album=row["album"] or "",
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            finished_at=parse_timestamp(row["finished_at"]),
        )

    def _row_to_item(self, row: sqlite3.Row) -> JobItem:
        return JobItem(
            job_id=row["job_id"],
            source_id=row["source_id"],
            source_type=row["source_type"],
            title=row["title"] or "",
            artist=row["artist"] or "",
            album=row["album"] or "",
            cover_url=row["cover_url"] or "",
            status=ItemStatus(row["status"]),
            message=row["message"] or "",
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )
