"""Logging setup shared by the command line tools."""
from __future__ import annotations

import datetime
import logging
import logging.handlers
import os
import sys

from gamerelay.config import LoggingConfig

LOG_FORMAT = (
    '[%(asctime)s.%(msecs)03d] %(levelname)-5s (%(name)s) :: %(message)s'
)
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


def init_logging(config: LoggingConfig, filename: str) -> None:
    """Configure the root logger.

    Logs go to stdout and, when `config.log_dir` is set, to a file in that
    directory rotated weekly on Sunday at midnight.

    Args:
        config: Logging configuration.
        filename: Name of the log file within `config.log_dir`.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_dir is not None:
        os.makedirs(config.log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                os.path.join(config.log_dir, filename),
                when='W6',
                atTime=datetime.time(hour=0, minute=0, second=0),
            ),
        )

    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        level=config.default_level,
        handlers=handlers,
    )

    logging.getLogger('websockets').setLevel(config.websockets_level)
    logging.getLogger('aiortc').setLevel(config.aiortc_level)
    logging.getLogger('aioice').setLevel(config.aiortc_level)


def resolve_level(level: int | str) -> int:
    """Return the numeric value of a level given by name or number."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f'Unknown logging level: {level}.')
    return value
