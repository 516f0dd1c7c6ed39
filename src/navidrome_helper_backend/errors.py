"""Exception types raised by the import pipeline and library indexer."""

from __future__ import annotations


class NavidromeHelperError(Exception):
    """Base class for errors raised by this package."""


class EmptyImportError(NavidromeHelperError, ValueError):
    """An import request carried no items."""


class QueueFullError(NavidromeHelperError):
    """The job queue stayed full for longer than the enqueue timeout."""


class FetchError(NavidromeHelperError):
    """The source fetcher could not produce content for a job."""


class PlacementError(NavidromeHelperError):
    """Extracted content could not be placed into the music library."""


class RefreshCancelledError(NavidromeHelperError):
    """A library refresh was cancelled or ran past its deadline."""


class LibraryUnavailableError(NavidromeHelperError):
    """The music root could not be read."""


class JobManagerStoppedError(NavidromeHelperError, RuntimeError):
    """The job manager has been stopped and accepts no new jobs."""
