"""Run the API server: ``python -m navidrome_helper_backend``."""

from __future__ import annotations

import uvicorn

from .configuration import load_settings
from .logging_config import configure_logging


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "navidrome_helper_backend.main:app",
        host="0.0.0.0",
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
