"""Logging configuration for worktree-keeper."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """
    Configure logging for the command-line tool.

    Args:
        verbose: If True, show INFO level messages
        debug: If True, show DEBUG level messages with logger names and paths
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=debug,
        show_path=debug,
        rich_tracebacks=debug,
    )
    handler.setLevel(level)
    fmt = "[%(name)s] %(message)s" if debug else "%(message)s"
    handler.setFormatter(logging.Formatter(fmt=fmt))
    root_logger.addHandler(handler)

    # GitPython logs every command at debug level
    logging.getLogger("git").setLevel(logging.INFO if debug else logging.WARNING)
