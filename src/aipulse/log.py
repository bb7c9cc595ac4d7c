from __future__ import annotations

from pathlib import Path
import logging

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO", log_file: str | None = None, console: bool = False) -> None:
    """File logging always (the dashboard owns the terminal); rich console output on request."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    if console:
        root.addHandler(RichHandler(show_path=False, rich_tracebacks=True))

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
