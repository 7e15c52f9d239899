from __future__ import annotations

import logging

from .config import settings


def configure_logging(level_name: str | None = None) -> None:
    """Configure process-wide logging for the API and the node agent.

    Works alongside uvicorn's default logging.
    """
    level_name = (level_name or settings.LOG_LEVEL or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # requests -> urllib3 logs every connection at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
