import logging
import os
import sys


def configure_logging() -> None:
    """Single stdout handler for every repobox service; no-op when already configured."""
    if logging.getLogger().handlers:
        return
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stdout,
    )
