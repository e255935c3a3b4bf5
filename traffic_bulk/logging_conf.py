"""Logging setup shared by the CLI and the API."""
import logging
import sys

from traffic_bulk.config import config

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("aiosqlite", "asyncio", "playwright", "urllib3")


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once."""
    level_name = (level or config.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
