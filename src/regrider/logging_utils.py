"""Logging setup for the regrider command line."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_CONSOLE: Optional[Console] = None


def get_console() -> Console:
    global _CONSOLE
    if _CONSOLE is None:
        _CONSOLE = Console(stderr=True)
    return _CONSOLE


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Send regrider log records to a rich console handler on stderr."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handler = RichHandler(
        show_path=False,
        rich_tracebacks=True,
        console=get_console(),
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="%H:%M:%S"))

    logger = logging.getLogger("regrider")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)
