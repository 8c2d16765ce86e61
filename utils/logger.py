"""
Project-wide logger

Every module logs through this single named logger:

    from utils.logger import logger
"""

import logging
import sys

from config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(module)s:%(lineno)d - %(message)s"


def setup_logger(name: str = "flowtune", level: str = settings.LOG_LEVEL) -> logging.Logger:
    """Create (or reuse) the named logger with console and optional file output"""
    log = logging.getLogger(name)
    log.setLevel(level.upper())

    if not log.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        log.addHandler(console)

        if settings.LOG_FILE:
            file_handler = logging.FileHandler(settings.LOG_FILE, encoding="utf-8")
            file_handler.setFormatter(formatter)
            log.addHandler(file_handler)

    return log


logger = setup_logger()
