"""
logging_config.py - Logging setup for the rental service.

Configures one format for every module, writes to stdout (container friendly)
and optionally to a file, and quiets the chattier third-party libraries.
"""

import logging
import sys
from typing import Optional


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Configures the root logger.

    Args:
        level (str): Log level name, e.g. "INFO" or "DEBUG".
        log_file (str | None): Optional path of an additional log file.
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        handlers=handlers,
        force=True,
    )

    # Reduce verbosity from external libraries
    for noisy in ("aio_pika", "aiormq", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
