"""Concurrent HTTP validation of discovered URLs."""

from __future__ import annotations

import queue
import socket
import threading
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import NameResolutionError

from .config import CheckerConfig
from .logging import get_logger
from .models import Result, Source, Stats
from .scope import CancelScope

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0 Safari/537.36"
)
REQUEST_HEADERS = {"User-Agent": BROWSER_USER_AGENT, "Accept": "*/*"}

STATUS_HOST_NOT_FOUND = 404
STATUS_TIMEOUT = 408
STATUS_UNAVAILABLE = 503

# The target exists but is access- or rate-limited.
ACCEPTED_STATUSES = frozenset({401, 403, 408, 429})

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "no such host",
    "getaddrinfo failed",
    "failed to resolve",
    "temporary failure in name resolution",
    "server misbehaving",
)

ResultCallback = Callable[[Result], None]

logger = get_logger("checker")


class LinkChecker:
    """Validates a set of URLs with a bounded pool of worker threads."""

    method = "GET"

    def __init__(
        self,
        config: CheckerConfig | None = None,
        *,
        session_factory: Callable[[CheckerConfig], requests.Session] | None = None,
    ) -> None:
        self.config = config or CheckerConfig()
        self._session_factory = session_factory or build_session
        if self.config.max_retries:
            logger.debug("max_retries=%d is accepted but not applied", self.config.max_retries)

    def check(
        self,
        urls: Iterable[str],
        sources: Mapping[str, Sequence[Source]] | None,
        *,
        on_result: ResultCallback,
        stats: "queue.Queue[Stats] | None" = None,
        cancel: CancelScope | None = None,
    ) -> int:
        """Check every unique URL and return how many results were emitted.

        Blocks until all workers have drained the job queue or observed
        cancellation. Results arrive in completion order.
        """
        cancel = cancel or CancelScope()
        jobs: "queue.Queue[str]" = queue.Queue()
        seen: set[str] = set()
        for url in urls:
            if not url or url in seen:
                continue
            seen.add(url)
            jobs.put(url)

        if not seen:
            return 0

        counters = _Counters(pending=len(seen))
        session = self._session_factory(self.config)
        worker_count = min(self.config.worker_count, len(seen))
        logger.debug("Checking %d URLs with %d workers", len(seen), worker_count)

        def _worker() -> None:
            while not cancel.cancelled:
                try:
                    url = jobs.get_nowait()
                except queue.Empty:
                    return
                result = self._check_one(session, url, sources)
                if cancel.cancelled:
                    return
                on_result(result)
                snapshot = counters.complete()
                if stats is not None:
                    try:
                        stats.put_nowait(snapshot)
                    except queue.Full:
                        pass

        threads = [
            threading.Thread(target=_worker, name=f"linkscan-check-{index}", daemon=True)
            for index in range(worker_count)
        ]
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        finally:
            session.close()
        return counters.processed

    def iter_results(
        self,
        urls: Iterable[str],
        sources: Mapping[str, Sequence[Source]] | None,
        *,
        cancel: CancelScope | None = None,
    ) -> Iterator[Result]:
        """Yield results as workers produce them; the stream ends when checking is done."""
        inbox: "queue.Queue[Result | None]" = queue.Queue()
        url_list = list(urls)

        def _run() -> None:
            try:
                self.check(url_list, sources, on_result=inbox.put, cancel=cancel)
            finally:
                inbox.put(None)

        thread = threading.Thread(target=_run, name="linkscan-check", daemon=True)
        thread.start()
        while True:
            item = inbox.get()
            if item is None:
                break
            yield item
        thread.join()

    def _check_one(
        self,
        session: requests.Session,
        url: str,
        sources: Mapping[str, Sequence[Source]] | None,
    ) -> Result:
        ok, status, error, content_type = self._fetch(session, url)
        if status in ACCEPTED_STATUSES and not error:
            ok = True
        found_in: List[Source] = sorted(sources.get(url, ())) if sources else []
        return Result(
            url=url,
            ok=ok,
            status=status,
            error=error,
            method=self.method,
            content_type=content_type,
            sources=found_in,
        )

    def _fetch(self, session: requests.Session, url: str) -> Tuple[bool, int, str, str]:
        try:
            response = session.request(
                self.method,
                url,
                headers=REQUEST_HEADERS,
                timeout=self.config.request_timeout,
                stream=True,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            status, error = classify_error(exc)
            logger.debug("%s failed: %s", url, exc)
            return False, status, error, ""
        with response:
            status = response.status_code
            content_type = response.headers.get("Content-Type", "")
        return 200 <= status < 400, status, "", content_type


def classify_error(exc: BaseException) -> Tuple[int, str]:
    """Map a transport failure to a synthetic status and message."""
    chain = list(_error_chain(exc))
    messages = " ".join(str(item).lower() for item in chain)

    if any(isinstance(item, (socket.gaierror, NameResolutionError)) for item in chain) or any(
        marker in messages for marker in _DNS_MARKERS
    ):
        return STATUS_HOST_NOT_FOUND, "host not found"
    if isinstance(exc, requests.Timeout) or any(isinstance(item, TimeoutError) for item in chain):
        return STATUS_TIMEOUT, "request timeout"
    if any(isinstance(item, ConnectionRefusedError) for item in chain) or "connection refused" in messages:
        return STATUS_UNAVAILABLE, "connection refused"
    return 0, str(exc)


def _error_chain(exc: BaseException) -> Iterator[BaseException]:
    pending: List[BaseException] = [exc]
    seen: set[int] = set()
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        for linked in (current.__cause__, current.__context__, getattr(current, "reason", None)):
            if isinstance(linked, BaseException):
                pending.append(linked)
        for arg in current.args:
            if isinstance(arg, BaseException):
                pending.append(arg)


def build_session(config: CheckerConfig) -> requests.Session:
    """Return a session whose connection pool is sized to the worker count."""
    workers = config.worker_count
    adapter = HTTPAdapter(pool_connections=workers * 2, pool_maxsize=workers, max_retries=0)
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class _Counters:
    def __init__(self, pending: int) -> None:
        self._lock = threading.Lock()
        self.pending = pending
        self.processed = 0

    def complete(self) -> Stats:
        with self._lock:
            self.pending -= 1
            self.processed += 1
            return Stats(pending=self.pending, processed=self.processed)


def unique_urls(url_map: Dict[str, Sequence[Source]]) -> List[str]:
    """Return the URLs of an extraction map in a stable order."""
    return sorted(url for url in url_map if url)


__all__ = [
    "ACCEPTED_STATUSES",
    "BROWSER_USER_AGENT",
    "LinkChecker",
    "build_session",
    "classify_error",
    "unique_urls",
]
