"""Logging configuration for the command-line entry point."""
from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional

# Loggers owned by this project; everything else is third-party noise.
APP_LOGGERS = (
    "cli", "dates", "engine", "filters", "hooks", "logging_setup", "models", "modifications",
    "render", "reports", "settings", "storage", "theme",
)
LEVELS = {-1: logging.ERROR, 0: logging.WARNING, 1: logging.INFO}


class _ConsoleNoiseFilter(logging.Filter):
    """Keep app logs at the chosen level; third-party logs only at ERROR+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.split('.', 1)[0] in APP_LOGGERS:
            return True
        return record.levelno >= logging.ERROR


def level_for(verbosity: int) -> int:
    if verbosity >= 2:
        return logging.DEBUG
    return LEVELS.get(verbosity, logging.ERROR)


def setup_logging(verbosity: int = 0, log_file: Optional[Path] = None) -> None:
    """Console handler on stderr, plus a DEBUG file handler when requested.

    Call this once, before the first command runs.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(level_for(verbosity))
    ch.setFormatter(logging.Formatter("%(levelname)s: %(message)s") if verbosity < 2 else fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    if log_file is not None:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_file), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    logging.captureWarnings(True)
    logging.getLogger(__name__).debug("logging configured (verbosity=%d, file=%s)", verbosity, log_file)
