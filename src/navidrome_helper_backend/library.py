"""
Library indexing for the managed music root.

The music root is laid out as ``<root>/<artist>/<album>/...``. A refresh walks
that tree, counts audio tracks beneath every album directory and installs the
result as a new library index snapshot in one store transaction. Unreadable
artist or album directories are skipped; the refresh as a whole only fails if
the root itself cannot be read, or if it is cancelled, in which case the
previous snapshot stays in place.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from threading import Event
from typing import List, Optional

from .database import Store
from .errors import LibraryUnavailableError, RefreshCancelledError
from .models import LibraryEntry
from .utils import is_audio_file, is_hidden, normalize_name, utcnow

logger = logging.getLogger(__name__)


def count_audio_files(root: Path) -> int:
    """
    Count audio files anywhere beneath ``root``, pruning hidden directories.

    Unreadable subdirectories are skipped.

    Raises:
        OSError: If ``root`` itself cannot be read
    """

    def on_error(error: OSError) -> None:
        if error.filename is not None and Path(error.filename) == root:
            raise error
        logger.debug("Skipping unreadable directory %s", error.filename)

    count = 0
    for _dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        dirnames[:] = [name for name in dirnames if not is_hidden(name)]
        count += sum(1 for name in filenames if is_audio_file(name))
    return count


def _visible_subdirectories(path: Path) -> List[os.DirEntry]:
    with os.scandir(path) as entries:
        children = [entry for entry in entries if not is_hidden(entry.name) and entry.is_dir()]
    return sorted(children, key=lambda entry: entry.name)


class LibraryIndexer:
    """
    Scans the music root and replaces the store's library index.

    Attributes:
        music_root: Managed library root
        store: Store receiving the library snapshot
    """

    def __init__(self, music_root: Path, store: Store) -> None:
        self.music_root = Path(music_root)
        self.store = store

    def refresh(self, cancel_event: Optional[Event] = None, timeout: Optional[float] = None) -> List[LibraryEntry]:
        """
        Rebuild the library index from the filesystem.

        Cancellation is checked before each artist and each album directory.

        Args:
            cancel_event: Set by the caller to abort the scan
            timeout: Seconds after which the scan is abandoned

        Returns:
            The entries of the newly installed snapshot

        Raises:
            RefreshCancelledError: If cancelled or past the deadline; the index is untouched
            LibraryUnavailableError: If the music root cannot be read
        """
        deadline = time.monotonic() + timeout if timeout is not None else None

        def check_cancelled() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise RefreshCancelledError("library refresh cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                raise RefreshCancelledError(f"library refresh exceeded {timeout} seconds")

        try:
            artist_dirs = _visible_subdirectories(self.music_root)
        except OSError as exc:
            raise LibraryUnavailableError(f"read music root {self.music_root}: {exc}") from exc

        now = utcnow()
        entries: List[LibraryEntry] = []
        for artist in artist_dirs:
            check_cancelled()
            try:
                album_dirs = _visible_subdirectories(Path(artist.path))
            except OSError:
                logger.warning("Skipping unreadable artist directory %s", artist.path)
                continue
            for album in album_dirs:
                check_cancelled()
                try:
                    track_count = count_audio_files(Path(album.path))
                except OSError:
                    logger.warning("Skipping unreadable album directory %s", album.path)
                    continue
                entries.append(
                    LibraryEntry(
                        artist=artist.name,
                        album=album.name,
                        path=album.path,
                        track_count=track_count,
                        updated_at=now,
                    )
                )

        check_cancelled()
        self.store.replace_library_index(entries)
        logger.info("Library index refreshed: %d albums", len(entries))
        return entries

    def list_entries(self) -> List[LibraryEntry]:
        return self.store.list_library()

    def exists(self, artist: str, album: str) -> bool:
        """Report whether a display artist/album pair is already in the library."""
        artist_norm = normalize_name(artist)
        album_norm = normalize_name(album)
        if not artist_norm or not album_norm:
            return False
        return self.store.library_exists(artist_norm, album_norm)
