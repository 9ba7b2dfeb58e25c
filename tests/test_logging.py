"""Tests for linkscan.logging."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from linkscan.logging import configure_logging, debug_requested, get_logger


@pytest.fixture(autouse=True)
def _clear_debug_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LINKSCAN_DEBUG", "ACTIONS_STEP_DEBUG", "RUNNER_DEBUG"):
        monkeypatch.delenv(name, raising=False)


def test_debug_requested_reads_ci_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    assert debug_requested() is False
    monkeypatch.setenv("ACTIONS_STEP_DEBUG", "TRUE")
    assert debug_requested() is True


def test_configure_logging_levels_and_file_sink(tmp_path: Path) -> None:
    log_file = tmp_path / "linkscan.log"

    logger = configure_logging(verbose=True, log_file=log_file)
    get_logger("test").debug("hello from test")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
    assert "hello from test" in log_file.read_text(encoding="utf-8")

    logger = configure_logging()
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
