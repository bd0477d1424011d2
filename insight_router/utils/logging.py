"""Loguru sinks for the insight-router CLI and library."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = "<level>{level: <8}</level> | {message}"
VERBOSE_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(
    level: str = "WARNING",
    log_file: Optional[Path] = None,
    verbose: bool = False
) -> None:
    """
    Replace loguru's default sink with the router's.

    The console stays quiet (warnings and up, level and message only) so it
    does not crowd the rich output of the CLI commands. ``--verbose`` turns
    on debug routing decisions with their source location; a log file, when
    given, always records everything.

    Args:
        level: Minimum console level when not verbose
        log_file: Optional path for a rotating log file
        verbose: Show DEBUG on the console
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else level,
        format=VERBOSE_CONSOLE_FORMAT if verbose else CONSOLE_FORMAT,
        backtrace=verbose,
        diagnose=False,
    )

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level="DEBUG",
            format=FILE_FORMAT,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
