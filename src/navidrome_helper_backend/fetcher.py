"""
Source fetching capability used by the import pipeline.

The pipeline only knows the :class:`SourceFetcher` protocol: given a job and a
private staging directory, resolve the source, download it, extract it to a
local path and finally clean up. Real download backends plug in here; the
bundled :class:`PlaceholderSourceFetcher` simulates the latency of each step
and stages a README describing the job so the rest of the pipeline (placement
in particular) can run end to end.
"""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Protocol

from .errors import FetchError
from .models import Job
from .utils import ensure_directory

logger = logging.getLogger(__name__)

PLACEHOLDER_FILENAME = "IMPORT_README.txt"


class SourceFetcher(Protocol):
    """Produces extracted content for a job at a local path, or raises FetchError."""

    def fetch_source(self, job: Job, staging_dir: Path) -> None:
        ...

    def download(self, job: Job, staging_dir: Path) -> None:
        ...

    def extract(self, job: Job, staging_dir: Path) -> Path:
        ...

    def cleanup(self, job: Job, staging_dir: Path) -> None:
        ...


class PlaceholderSourceFetcher:
    """
    Stand-in fetcher that sleeps for each step and writes a placeholder file.

    Args:
        delay: Seconds slept in the fetch, download and extract steps
        cleanup_delay: Seconds slept before removing the staging directory
    """

    def __init__(self, delay: float = 0.3, cleanup_delay: float = 0.15) -> None:
        self.delay = delay
        self.cleanup_delay = cleanup_delay

    def _sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def fetch_source(self, job: Job, staging_dir: Path) -> None:
        self._sleep(self.delay)

    def download(self, job: Job, staging_dir: Path) -> None:
        self._sleep(self.delay)

    def extract(self, job: Job, staging_dir: Path) -> Path:
        self._sleep(self.delay)
        content_dir = staging_dir / "extracted"
        try:
            ensure_directory(content_dir)
            lines = [
                f"Placeholder import for job {job.id}",
                f"Artist: {job.artist}",
                f"Album: {job.album}",
                "Items:",
                *(f"  - {item.source_type} {item.source_id}: {item.title}" for item in job.items),
                "This is a stub; wire actual download/extract logic.",
            ]
            (content_dir / PLACEHOLDER_FILENAME).write_text("\n".join(lines) + "\n", encoding="utf-8")
        except OSError as exc:
            raise FetchError(f"stage placeholder content: {exc}") from exc
        return content_dir

    def cleanup(self, job: Job, staging_dir: Path) -> None:
        self._sleep(self.cleanup_delay)
        if staging_dir.exists():
            shutil.rmtree(staging_dir)
            logger.debug("Removed staging directory %s", staging_dir)
