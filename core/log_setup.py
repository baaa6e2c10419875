"""Logging setup for llmrt.

Diagnostics go to stderr (and optionally a file). stdout carries only the
processed text, so nothing here ever writes to it.
"""

import logging
import os
from pathlib import Path


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(level) -> int:
    if isinstance(level, int):
        return level
    try:
        return _LEVELS[str(level).lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}") from None


def configure_logging(level="warning", log_file: str = None) -> None:
    """Install a stderr handler (and a file handler) on the root logger once."""
    root = logging.getLogger()
    root.setLevel(parse_level(level))

    # Avoid duplicate handlers if called more than once
    if getattr(root, "_llmrt_configured", False):
        return

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    if log_file:
        Path(os.path.dirname(os.path.abspath(log_file))).mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    setattr(root, "_llmrt_configured", True)
    logging.getLogger(__name__).debug("Logging initialized (level=%s, file=%s)", level, log_file)
