from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from tests._fixtures.http_server import LocalServer
from tests._fixtures.repo_builder import RepoBuilder

_PROXY_VARS = ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy")


@pytest.fixture
def repo_builder(tmp_path: Path) -> RepoBuilder:
    """Provide a reusable repo builder rooted at the pytest tmp_path."""
    return RepoBuilder(tmp_path)


@pytest.fixture
def no_proxy(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make requests talk to local addresses directly."""
    for name in _PROXY_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")


@pytest.fixture
def http_server(no_proxy: None) -> Iterator[LocalServer]:
    """Serve canned responses on 127.0.0.1."""
    server = LocalServer(slow_delay=2.0).start()
    try:
        yield server
    finally:
        server.stop()
