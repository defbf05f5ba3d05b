"""
Logging setup.

Modules log through ``logging.getLogger(__name__)``; this configures the
``unipac`` logger once per process with a rich handler on stderr, so log
records never mix with command output on stdout.
"""

import logging
from typing import Union

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "unipac"


def setup_logging(level: Union[int, str] = logging.WARNING) -> logging.Logger:
    """Configure the package logger.

    Args:
        level: Level name or number. Unknown names fall back to WARNING.

    Returns:
        The configured ``unipac`` logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    logger = logging.getLogger(LOGGER_NAME)
    # Reconfiguring replaces the previous handler instead of stacking another
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=level <= logging.DEBUG,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.setLevel(level)

    logging.captureWarnings(True)
    return logger
