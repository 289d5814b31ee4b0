"""
Logging setup — console plus a daily log file for the ``cadence`` logger.

Library modules only ever call ``logging.getLogger(__name__)``; nothing is
configured until the embedding application calls ``setup_logging``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from cadence.core.config import LoggingConfig


def setup_logging(
    log_dir: Path | None = None,
    console_level: int | str = logging.WARNING,
    file_level: int | str = logging.DEBUG,
) -> logging.Logger:
    """
    Setup Cadence logging.

    Args:
        log_dir: Directory for log files (default: ~/.cadence/logs)
        console_level: Minimum level for console output
        file_level: Minimum level for file output

    Returns:
        The configured logger
    """
    log_dir = (log_dir or Path.home() / ".cadence" / "logs").expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("cadence")
    logger.setLevel(logging.DEBUG)

    # Replace handlers from a previous call instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console_handler)

    log_file = log_dir / f"cadence_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(file_handler)

    logger.info(f"Logging initialized. File: {log_file}")

    return logger


def setup_logging_from_config(config: LoggingConfig) -> logging.Logger:
    """Apply a ``LoggingConfig`` section."""
    return setup_logging(log_dir=config.path, console_level=config.console_level.upper())
