"""
Logging configuration for the command line front end.

Library modules only create ``logging.getLogger(__name__)`` loggers; the
host application decides where records go.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", console: Optional[Console] = None) -> None:
    """Route all log records through a single rich handler."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # SQL echo is controlled by the database config, not the root level
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
