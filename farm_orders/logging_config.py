"""
Order Service — logging setup

One stdout handler for the whole process (container friendly); chatty
third-party loggers are turned down to WARNING.
"""

import logging
import sys

from . import config

LOG_FORMAT = "%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s"


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for noisy in ("sqlalchemy.engine", "asyncio", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
