from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "yomitori"


def build_console() -> Console:
    return Console(stderr=True)


def configure_logging(debug: bool = False, console: Console | None = None) -> logging.Handler:
    """Send log records to stderr through rich; INFO for this package, WARNING for everything else."""
    handler = RichHandler(
        console=console or build_console(),
        show_time=debug,
        show_path=debug,
        rich_tracebacks=debug,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.WARNING)
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if debug else logging.INFO)
    return handler
