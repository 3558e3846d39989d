"""Process-wide logging configuration for the command line entry point."""
from __future__ import annotations

from pathlib import Path
import logging
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def resolve_level(name: str | None) -> int:
    """Map a level name to a :mod:`logging` level; unknown names mean ``info``."""
    return LEVELS.get((name or "").strip().lower(), logging.INFO)


def configure_logging(level: str | None = "info", log_file: str | Path | None = None) -> logging.Logger:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    logging.basicConfig(level=resolve_level(level), format=LOG_FORMAT, handlers=handlers, force=True)
    return logging.getLogger("depbuild")
