"""
Rich logging for agentwire.

Modules log through get_logger(__name__) and nothing is configured on
import. A host that wants readable connect, reconnect and wait traces calls
setup_logging(); it only touches the ``agentwire`` logger tree, never the
root logger of the host application.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "agentwire"


def setup_logging(
    level: int = logging.INFO,
    *,
    console: Optional[Console] = None,
    show_path: bool = False,
    rich_tracebacks: bool = True,
) -> logging.Logger:
    """
    Attach a RichHandler to the agentwire logger.

    Calling again only changes the level; a second handler is never added.

    Args:
        level: Level for the whole agentwire tree
        console: Console to render to (stderr if None)
        show_path: Show the emitting file and line
        rich_tracebacks: Render exceptions logged by callbacks with rich

    Returns:
        The agentwire logger
    """
    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(level)

    if any(isinstance(handler, RichHandler) for handler in package_logger.handlers):
        return package_logger

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=show_path,
        rich_tracebacks=rich_tracebacks,
        markup=False,
        log_time_format="[%X]",
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    package_logger.addHandler(handler)
    package_logger.propagate = False
    return package_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_module_level(module_name: str, level: int) -> None:
    """
    Override the level of one module, e.g. to trace only the transport.

    Names may be given relative to the package: ``"connection"`` and
    ``"agentwire.connection"`` are the same logger.
    """
    if module_name != LOGGER_NAME and not module_name.startswith(f"{LOGGER_NAME}."):
        module_name = f"{LOGGER_NAME}.{module_name}"
    logging.getLogger(module_name).setLevel(level)
