"""Logging utilities for linkscan commands."""

from __future__ import annotations

import logging
import os
from pathlib import Path

_LOGGER_NAME = "linkscan"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the linkscan hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def debug_requested() -> bool:
    """Return True when the environment asks for debug output (CI step debugging)."""
    if os.environ.get("LINKSCAN_DEBUG") == "1":
        return True
    if os.environ.get("ACTIONS_STEP_DEBUG", "").lower() == "true":
        return True
    return os.environ.get("RUNNER_DEBUG") == "1"


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Configure the linkscan logger with console output and optional file sink."""
    level = logging.DEBUG if verbose or debug_requested() else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Reset handlers to avoid duplicate output when the CLI is invoked multiple times.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter("[linkscan] %(levelname)s %(message)s"))
    logger.addHandler(stream_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


__all__ = ["configure_logging", "debug_requested", "get_logger"]
