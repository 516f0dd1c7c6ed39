"""
Utility functions for name normalization and filesystem-safe path handling.

This module provides helper functions for:
- Normalizing artist/album names into comparison keys
- Sanitizing user-provided names for use as directory components
- Ensuring directory creation with proper error handling
- Recognising audio files by extension
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

# Extensions counted as audio tracks when indexing the library
AUDIO_EXTENSIONS = frozenset({".mp3", ".flac", ".ogg", ".wav", ".alac", ".aac", ".m4a"})

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def normalize_name(name: str) -> str:
    """
    Reduce a free-text name to a canonical comparison key.

    The key is lowercase, every character that is not a letter, digit or
    whitespace becomes a space, and runs of whitespace collapse to one space.

    Example:
        >>> normalize_name("Demo_Ensemble - Lights&Echoes!!")
        'demo ensemble lights echoes'
        >>> normalize_name("  ")
        ''
    """
    lowered = name.strip().lower()
    if not lowered:
        return ""
    kept = "".join(char if char.isalnum() or char.isspace() else " " for char in lowered)
    return " ".join(kept.split())


def sanitize_path_component(name: str, fallback: str) -> str:
    """
    Make a display name safe to use as a single directory name.

    Parent-directory sequences are removed and path separators replaced with
    underscores so the result can never escape the directory it is joined to.

    Args:
        name: The original artist or album name
        fallback: Value returned when nothing usable is left

    Example:
        >>> sanitize_path_component("AC/DC", "Unknown Artist")
        'AC_DC'
        >>> sanitize_path_component("../..", "Unknown Album")
        'Unknown Album'
    """
    cleaned = name.replace("..", "").replace("/", "_").replace("\\", "_").strip()
    if cleaned in {"", "."}:
        return fallback
    return cleaned


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def is_audio_file(filename: str) -> bool:
    return Path(filename).suffix.lower() in AUDIO_EXTENSIONS


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Serialize a datetime as fixed-precision UTC text (sorts lexicographically)."""
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
