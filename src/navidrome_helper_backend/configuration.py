"""
Runtime configuration loading for the Navidrome helper backend.

Defaults come from ``config/config.yaml`` (searched in the parent directories
of this package, the same way a checkout or an installed tree is laid out) and
fall back to the built-in values below. Environment variables, optionally
loaded from a ``.env`` file, override individual keys.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .utils import ensure_directory

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:5]]

CONFIG_PATH = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)

BUILTIN_DEFAULTS: Dict[str, Any] = {
    "server": {"port": 8080, "log_level": "INFO"},
    "paths": {
        "data_dir": "data",
        "temp_dir": "tmp",
        "music_root": "navidrome_music",
        "database_name": "navidrome-helper.db",
    },
    "jobs": {
        "queue_size": 16,
        "enqueue_timeout": 5.0,
        "phase_delay": 0.3,
        "cleanup_delay": 0.15,
        "list_limit": 50,
    },
    "library": {"refresh_timeout": 15.0, "refresh_on_start": True},
}

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float:
    """
    Parse a duration such as ``"90"``, ``"30s"``, ``"10m"`` or ``"1.5h"``.

    Returns:
        The duration in seconds.

    Raises:
        ValueError: If the value is not a recognised duration.
    """
    match = _DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit or "s"]


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "t", "true", "yes", "on"}:
        return True
    if lowered in {"0", "f", "false", "no", "off"}:
        return False
    raise ValueError(f"invalid boolean: {value!r}")


# env var -> (dotted config key, parser)
ENV_OVERRIDES: Dict[str, tuple[str, Callable[[str], Any]]] = {
    "PORT": ("server.port", int),
    "LOG_LEVEL": ("server.log_level", str),
    "DATA_DIR": ("paths.data_dir", str),
    "TEMP_DIR": ("paths.temp_dir", str),
    "NAVIDROME_MUSIC_PATH": ("paths.music_root", str),
    "JOB_QUEUE_SIZE": ("jobs.queue_size", int),
    "PHASE_DELAY": ("jobs.phase_delay", parse_duration),
    "LIBRARY_REFRESH_TIMEOUT": ("library.refresh_timeout", parse_duration),
    "LIBRARY_REFRESH_ON_START": ("library.refresh_on_start", parse_bool),
}


@dataclass(frozen=True)
class Settings:
    """Resolved, typed view of the merged configuration."""

    port: int
    log_level: str
    data_dir: Path
    temp_dir: Path
    music_root: Path
    database_path: Path
    queue_size: int
    enqueue_timeout: float
    phase_delay: float
    cleanup_delay: float
    list_limit: int
    refresh_timeout: float
    refresh_on_start: bool


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    base = OmegaConf.create(BUILTIN_DEFAULTS)
    if CONFIG_PATH is None:
        return base
    return DictConfig(OmegaConf.merge(base, OmegaConf.load(CONFIG_PATH)))


def _env_overrides(environ: Dict[str, str]) -> DictConfig:
    overrides = OmegaConf.create({})
    for name, (key, parser) in ENV_OVERRIDES.items():
        raw = environ.get(name, "")
        if raw == "":
            continue
        try:
            value = parser(raw)
        except ValueError:
            # Unparseable values keep the default.
            continue
        OmegaConf.update(overrides, key, value, force_add=True)
    return overrides


def make_runtime_config(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> DictConfig:
    """
    Merge defaults, environment overrides and explicit overrides, in that order.

    Args:
        overrides: Nested mapping applied last (used by tests and embedders).
        environ: Environment to read; defaults to ``os.environ`` after loading ``.env``.
    """
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)

    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    merged = OmegaConf.merge(base, _env_overrides(environ), OmegaConf.create(overrides or {}))
    return DictConfig(merged)


def _absolute_directory(value: str) -> Path:
    return ensure_directory(Path(value)).resolve()


def load_settings(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Settings:
    """
    Build :class:`Settings` and make sure the data, temp and music directories exist.
    """
    config = make_runtime_config(overrides, environ)
    data_dir = _absolute_directory(config.paths.data_dir)
    return Settings(
        port=int(config.server.port),
        log_level=str(config.server.log_level).upper(),
        data_dir=data_dir,
        temp_dir=_absolute_directory(config.paths.temp_dir),
        music_root=_absolute_directory(config.paths.music_root),
        database_path=data_dir / str(config.paths.database_name),
        queue_size=int(config.jobs.queue_size),
        enqueue_timeout=float(config.jobs.enqueue_timeout),
        phase_delay=float(config.jobs.phase_delay),
        cleanup_delay=float(config.jobs.cleanup_delay),
        list_limit=int(config.jobs.list_limit),
        refresh_timeout=float(config.library.refresh_timeout),
        refresh_on_start=bool(config.library.refresh_on_start),
    )
