"""Logging configuration for SchoolSync."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler


class _ConsoleNoiseFilter(logging.Filter):
    """Keep our own logs on the console; other libraries only show errors."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("schoolsync"):
            return True
        # Third-party loggers and captured warnings
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/schoolsync",
    console_level: int | str = logging.INFO,
    file_level: int = logging.DEBUG,
    console: Console | None = None,
) -> None:
    """
    Configure logging with:
    - Console handler: rich output, filtered for interactive use
    - File handler: full logs for debugging

    Call this once, before the first log call.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "schoolsync.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    ch = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    ch.setLevel(console_level)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(fh)

    logging.captureWarnings(True)
