"""Logging configuration."""
import logging
import sys
from typing import Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Vendor clients log every request at INFO
QUIET_LOGGERS = ("httpx", "openai", "twilio.http_client", "aiosqlite")


def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    """Configure application logging on stdout."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
