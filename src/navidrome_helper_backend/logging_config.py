"""
Logging configuration for the backend process.

Installs one stdout handler with ISO timestamps on the root logger; modules
log through ``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger, replacing any handlers already installed."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.addHandler(handler)

    # Per-request access lines are noise next to the job logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
