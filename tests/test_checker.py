"""Tests for linkscan.checker."""

from __future__ import annotations

import queue
import socket
import threading
from typing import Any, Dict, List

import requests

from linkscan.checker import (
    BROWSER_USER_AGENT,
    LinkChecker,
    build_session,
    classify_error,
    unique_urls,
)
from linkscan.config import CheckerConfig
from linkscan.models import Result, Source, Stats
from linkscan.scope import CancelScope
from tests._fixtures.http_server import LocalServer, closed_port


def _collect(checker: LinkChecker, urls: List[str], **kwargs: Any) -> Dict[str, Result]:
    results: List[Result] = []
    lock = threading.Lock()

    def _on_result(result: Result) -> None:
        with lock:
            results.append(result)

    checker.check(urls, kwargs.pop("sources", None), on_result=_on_result, **kwargs)
    return {result.url: result for result in results}


def test_check_classifies_mixed_urls(http_server: LocalServer) -> None:
    ok_url = http_server.url("/ok")
    forbidden_url = http_server.url("/forbidden")
    slow_url = http_server.url("/slow")
    dns_url = "http://nonexistent-host.invalid/"
    checker = LinkChecker(CheckerConfig(max_concurrency=4, request_timeout=0.5))

    results = _collect(checker, [ok_url, dns_url, slow_url, forbidden_url])

    assert set(results) == {ok_url, dns_url, slow_url, forbidden_url}
    assert results[ok_url].ok is True
    assert results[ok_url].status == 200
    assert results[ok_url].content_type.startswith("text/plain")
    assert results[forbidden_url].ok is True
    assert results[forbidden_url].status == 403
    assert results[slow_url].ok is False
    assert results[slow_url].status == 408
    assert results[slow_url].error == "request timeout"
    assert results[dns_url].ok is False
    assert results[dns_url].status == 404
    assert results[dns_url].error == "host not found"


def test_check_accepts_rate_limited_and_rejects_missing(http_server: LocalServer) -> None:
    urls = [http_server.url(path) for path in ("/limited", "/unauthorized", "/missing", "/broken", "/redirect")]
    checker = LinkChecker(CheckerConfig(max_concurrency=2, request_timeout=2.0))

    results = _collect(checker, urls)

    assert results[http_server.url("/limited")].ok is True
    assert results[http_server.url("/unauthorized")].ok is True
    assert results[http_server.url("/missing")].ok is False
    assert results[http_server.url("/missing")].status == 404
    assert results[http_server.url("/broken")].status == 500
    assert results[http_server.url("/redirect")].ok is True
    assert results[http_server.url("/redirect")].status == 200


def test_check_sends_browser_headers_and_attaches_sources(http_server: LocalServer) -> None:
    url = http_server.url("/ok")
    sources = {url: [Source("b.md", 2, 1), Source("a.md", 1, 4)]}

    results = _collect(LinkChecker(), [url, url, ""], sources=sources)

    assert list(results) == [url]
    assert results[url].method == "GET"
    assert results[url].sources == [Source("a.md", 1, 4), Source("b.md", 2, 1)]
    assert len(http_server.requests) == 1
    assert http_server.requests[0]["user-agent"] == BROWSER_USER_AGENT
    assert http_server.requests[0]["accept"] == "*/*"


def test_check_reports_refused_connections(no_proxy: None) -> None:
    url = f"http://127.0.0.1:{closed_port()}/"

    results = _collect(LinkChecker(CheckerConfig(request_timeout=2.0)), [url])

    assert results[url].ok is False
    assert results[url].status == 503
    assert results[url].error == "connection refused"


def test_check_publishes_stats_and_drops_when_full(http_server: LocalServer) -> None:
    urls = [http_server.url(f"/ok?n={index}") for index in range(5)]
    stats: "queue.Queue[Stats]" = queue.Queue(maxsize=2)

    emitted = LinkChecker(CheckerConfig(max_concurrency=1)).check(
        urls, None, on_result=lambda result: None, stats=stats
    )

    assert emitted == 5
    assert stats.qsize() == 2
    assert stats.get_nowait() == Stats(pending=4, processed=1)


def test_check_emits_nothing_once_cancelled() -> None:
    cancel = CancelScope()
    calls: List[str] = []

    class _Response:
        status_code = 200
        headers = {"Content-Type": "text/html"}

        def __enter__(self) -> "_Response":
            return self

        def __exit__(self, *exc: object) -> None:
            return None

    class _Session:
        def request(self, method: str, url: str, **kwargs: Any) -> _Response:
            calls.append(url)
            cancel.cancel()
            return _Response()

        def close(self) -> None:
            return None

    checker = LinkChecker(CheckerConfig(max_concurrency=1), session_factory=lambda config: _Session())
    results = _collect(checker, ["https://example.com/a", "https://example.com/b"], cancel=cancel)

    assert results == {}
    assert calls == ["https://example.com/a"]


def test_check_with_no_urls_returns_immediately() -> None:
    assert LinkChecker().check([], None, on_result=lambda result: None) == 0


def test_iter_results_yields_every_url(http_server: LocalServer) -> None:
    urls = [http_server.url("/ok"), http_server.url("/missing")]

    results = list(LinkChecker().iter_results(urls, None))

    assert sorted(result.url for result in results) == sorted(urls)


def test_classify_error_maps_transport_failures() -> None:
    dns = requests.ConnectionError(socket.gaierror(-2, "Name or service not known"))
    refused = requests.ConnectionError(ConnectionRefusedError(111, "Connection refused"))

    assert classify_error(dns) == (404, "host not found")
    assert classify_error(requests.ReadTimeout("read timed out")) == (408, "request timeout")
    assert classify_error(requests.ConnectTimeout("connect timed out")) == (408, "request timeout")
    assert classify_error(refused) == (503, "connection refused")
    assert classify_error(requests.ConnectionError("boom")) == (0, "boom")


def test_build_session_sizes_pool_to_workers() -> None:
    session = build_session(CheckerConfig(max_concurrency=0))
    try:
        adapter = session.get_adapter("https://example.com")
        assert adapter._pool_connections == 16
        assert adapter._pool_maxsize == 8
    finally:
        session.close()


def test_unique_urls_is_sorted() -> None:
    url_map = {"https://b.example.com": [], "https://a.example.com": [], "": []}

    assert unique_urls(url_map) == ["https://a.example.com", "https://b.example.com"]
