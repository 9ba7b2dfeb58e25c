"""Scan orchestration: sequence extraction and validation as restartable runs.

The orchestrator is an explicit state machine driven by an inbox of typed
events::

    IDLE -> SCANNING -> CHECKING -> DONE
    DONE -> SCANNING                       (manual or file-change restart)
    any  -> CANCELLING -> SCANNING         (restart before DONE)

Each run ("generation") owns a fresh ``RunSession``. Worker threads only read
the session's cancellation scope and post events tagged with their generation;
all counters are written by the thread that calls ``dispatch``. Events from an
older generation are dropped, so stragglers of a cancelled run can never leak
into the totals of the current one.

In watch mode the file watcher is paused while completion hooks run and
re-armed with a fresh baseline afterwards, so reports written under the root
do not trigger another run.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Callable, List, Optional, Union

from .checker import LinkChecker, unique_urls
from .config import CheckerConfig, find_ignore_config
from .extract import URLExtractor
from .ignore import compile_rules
from .logging import get_logger
from .models import Result, RunSummary, Stats, TargetSpec
from .scope import CancelScope
from .watcher import FileWatcher

DEFAULT_RESTART_TIMEOUT = 2.0
DEFAULT_TICK_INTERVAL = 1.0
_STATS_BACKLOG = 64


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CHECKING = "checking"
    CANCELLING = "cancelling"
    DONE = "done"


@dataclass(frozen=True)
class FileScanned:
    generation: int
    path: str


@dataclass(frozen=True)
class ExtractionDone:
    generation: int
    url_count: int


@dataclass(frozen=True)
class ResultReady:
    generation: int
    result: Result


@dataclass(frozen=True)
class StatsUpdated:
    generation: int
    stats: Stats


@dataclass(frozen=True)
class RunFailed:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class RunFinished:
    generation: int


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class ChangeDetected:
    path: str


@dataclass(frozen=True)
class RestartRequested:
    reason: str = "manual"


@dataclass(frozen=True)
class QuitRequested:
    pass


Event = Union[
    FileScanned,
    ExtractionDone,
    ResultReady,
    StatsUpdated,
    RunFailed,
    RunFinished,
    Tick,
    ChangeDetected,
    RestartRequested,
    QuitRequested,
]


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class RunSession:
    """State of one scan-then-check pass. A restart creates a new instance."""

    generation: int
    started_at: datetime = field(default_factory=_now)
    finished_at: Optional[datetime] = None
    total: int = 0
    ok: int = 0
    fail: int = 0
    pending: int = 0
    processed: int = 0
    last_processed: int = 0
    files_scanned: int = 0
    url_count: int = 0
    rps: float = 0.0
    peak_rps: float = 0.0
    low_rps: Optional[float] = None
    results: List[Result] = field(default_factory=list)
    error: Optional[BaseException] = None
    cancel: CancelScope = field(default_factory=CancelScope)
    complete: threading.Event = field(default_factory=threading.Event)
    stats: "queue.Queue[Stats]" = field(default_factory=lambda: queue.Queue(maxsize=_STATS_BACKLOG))

    def failures(self) -> List[Result]:
        return [result for result in self.results if not result.ok]

    def summary(self, root: str) -> RunSummary:
        finished = self.finished_at or _now()
        elapsed = (finished - self.started_at).total_seconds()
        avg = self.processed / elapsed if elapsed > 0 else 0.0
        return RunSummary(
            root=root,
            started_at=self.started_at,
            finished_at=finished,
            processed=self.processed,
            ok=self.ok,
            fail=self.fail,
            avg_rps=avg,
            peak_rps=self.peak_rps,
            low_rps=self.low_rps if self.low_rps is not None else 0.0,
            files_scanned=self.files_scanned,
            url_count=self.url_count,
            error=str(self.error) if self.error is not None else None,
        )


Listener = Callable[[Event, Optional[RunSession]], None]
CompletionHook = Callable[[RunSummary, List[Result]], None]


class ScanOrchestrator:
    """Drives extraction then validation and handles cancel-and-restart."""

    def __init__(
        self,
        target: TargetSpec,
        config: CheckerConfig | None = None,
        *,
        extractor: URLExtractor | None = None,
        checker: LinkChecker | None = None,
        watch: bool = False,
        restart_timeout: float = DEFAULT_RESTART_TIMEOUT,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        watch_interval: float = 1.0,
    ) -> None:
        self.target = target
        self.extractor = extractor or URLExtractor()
        self.checker = checker or LinkChecker(config)
        self.watch = watch
        self.restart_timeout = restart_timeout
        self.tick_interval = tick_interval
        self.watch_interval = watch_interval
        self.state = RunState.IDLE
        self.session: Optional[RunSession] = None
        self.last_summary: Optional[RunSummary] = None
        self.logger = get_logger("session")
        self._inbox: "queue.Queue[Event]" = queue.Queue()
        self._listeners: List[Listener] = []
        self._completion_hooks: List[CompletionHook] = []
        self._generation = 0
        self._quit = False
        self._watcher: Optional[FileWatcher] = None

    def add_listener(self, listener: Listener) -> None:
        """Register a callback invoked after every applied event (for renderers)."""
        self._listeners.append(listener)

    def on_complete(self, hook: CompletionHook) -> None:
        """Register a callback receiving the summary and failed results of each finished run."""
        self._completion_hooks.append(hook)

    def start(self) -> RunSession:
        """Begin the first run."""
        return self._begin_run()

    def request_restart(self, reason: str = "manual") -> None:
        self._inbox.put(RestartRequested(reason))

    def request_quit(self) -> None:
        self._inbox.put(QuitRequested())

    def post(self, event: Event) -> None:
        self._inbox.put(event)

    def run(self) -> Optional[RunSummary]:
        """Drive the event loop.

        Outside watch mode this returns once the run reaches DONE (raising the
        run's setup error, if any). In watch mode it keeps restarting on change
        until ``request_quit`` is called.
        """
        if self.session is None:
            self.start()

        watcher: FileWatcher | None = None
        if self.watch:
            watcher = FileWatcher(
                self.target,
                config_path=find_ignore_config(self.target.root),
                interval=self.watch_interval,
                on_change=lambda path: self._inbox.put(ChangeDetected(path)),
            )
            watcher.start()
            self._watcher = watcher

        last_tick = time.monotonic()
        try:
            while not self._quit:
                try:
                    event = self._inbox.get(timeout=0.1)
                except queue.Empty:
                    event = None
                if event is not None:
                    self.dispatch(event)
                self._drain_stats()
                now = time.monotonic()
                if now - last_tick >= self.tick_interval:
                    last_tick = now
                    self.dispatch(Tick())
                if self.state is RunState.DONE and not self.watch:
                    break
        finally:
            if watcher is not None:
                watcher.stop()
                self._watcher = None
            if self.session is not None and self.state is not RunState.DONE:
                self.session.cancel.cancel()

        if not self.watch and self.session is not None and self.session.error is not None:
            raise self.session.error
        return self.last_summary

    def dispatch(self, event: Event) -> None:
        """Apply a single event to the state machine."""
        session = self.session
        generation = getattr(event, "generation", None)
        if generation is not None and (session is None or generation != session.generation):
            return
        if isinstance(event, StatsUpdated) and self.state is RunState.DONE:
            return

        if isinstance(event, FileScanned):
            session.files_scanned += 1
        elif isinstance(event, ExtractionDone):
            self.state = RunState.CHECKING
            session.url_count = event.url_count
            session.pending = event.url_count
            if event.url_count == 0:
                self.logger.info("No URLs found.")
            else:
                self.logger.debug("Extraction found %d unique URLs", event.url_count)
        elif isinstance(event, ResultReady):
            session.total += 1
            if event.result.ok:
                session.ok += 1
            else:
                session.fail += 1
            session.results.append(event.result)
        elif isinstance(event, StatsUpdated):
            session.pending = event.stats.pending
            session.processed = max(session.processed, event.stats.processed)
        elif isinstance(event, RunFailed):
            session.error = event.error
            self.logger.error("Run %d failed: %s", event.generation, event.error)
        elif isinstance(event, RunFinished):
            self._finish(session)
        elif isinstance(event, Tick):
            self._sample_rate()
        elif isinstance(event, ChangeDetected):
            self.logger.info("Change detected: %s", event.path)
            self._restart()
        elif isinstance(event, RestartRequested):
            self.logger.info("Rescan requested (%s)", event.reason)
            self._restart()
        elif isinstance(event, QuitRequested):
            self._quit = True
            if session is not None:
                session.cancel.cancel()

        for listener in self._listeners:
            listener(event, self.session)

    def _begin_run(self) -> RunSession:
        self._generation += 1
        session = RunSession(generation=self._generation)
        self.session = session
        self.state = RunState.SCANNING
        self.logger.debug("Starting run %d for %s", session.generation, self.target.root)
        thread = threading.Thread(
            target=self._execute,
            args=(session,),
            name=f"linkscan-run-{session.generation}",
            daemon=True,
        )
        thread.start()
        return session

    def _execute(self, session: RunSession) -> None:
        generation = session.generation
        cancel = session.cancel

        def _on_file(rel_path: str) -> None:
            if cancel.cancelled:
                return
            self._inbox.put(FileScanned(generation, rel_path))

        def _on_result(result: Result) -> None:
            self._inbox.put(ResultReady(generation, result))

        try:
            rules = compile_rules(self.target.root, respect_gitignore=self.target.respect_gitignore)
            url_map = self.extractor.extract(self.target, rules, on_file=_on_file, cancel=cancel)
            if cancel.cancelled:
                return
            self._inbox.put(ExtractionDone(generation, len(url_map)))
            self.checker.check(
                unique_urls(url_map),
                url_map,
                on_result=_on_result,
                stats=session.stats,
                cancel=cancel,
            )
        except Exception as exc:
            self._inbox.put(RunFailed(generation, exc))
        finally:
            session.complete.set()
            self._inbox.put(RunFinished(generation))

    def _restart(self) -> None:
        previous = self.session
        if previous is not None:
            self.state = RunState.CANCELLING
            previous.cancel.cancel()
            if not previous.complete.wait(self.restart_timeout):
                self.logger.warning(
                    "Run %d did not stop within %.1fs; starting a new run anyway",
                    previous.generation,
                    self.restart_timeout,
                )
        self._begin_run()

    def _finish(self, session: RunSession) -> None:
        if session.cancel.cancelled and session.error is None:
            return
        self.state = RunState.DONE
        session.finished_at = _now()
        session.pending = 0
        session.processed = max(session.processed, session.total)
        summary = session.summary(str(self.target.root))
        self.last_summary = summary
        self.logger.debug(
            "Run %d finished: %d processed, %d ok, %d failed",
            session.generation,
            summary.processed,
            summary.ok,
            summary.fail,
        )
        failures = session.failures()
        # Hooks may write reports under the watched root; those writes must not count as changes.
        if self._watcher is not None:
            self._watcher.pause()
        try:
            for hook in self._completion_hooks:
                hook(summary, failures)
        finally:
            if self._watcher is not None:
                self._watcher.rearm()

    def _sample_rate(self) -> None:
        session = self.session
        if session is None or self.state is not RunState.CHECKING:
            return
        delta = session.processed - session.last_processed
        session.last_processed = session.processed
        session.rps = float(delta)
        session.peak_rps = max(session.peak_rps, session.rps)
        if session.low_rps is None or session.rps < session.low_rps:
            session.low_rps = session.rps

    def _drain_stats(self) -> None:
        session = self.session
        if session is None:
            return
        while True:
            try:
                stats = session.stats.get_nowait()
            except queue.Empty:
                return
            self.dispatch(StatsUpdated(session.generation, stats))


__all__ = [
    "ChangeDetected",
    "Event",
    "ExtractionDone",
    "FileScanned",
    "QuitRequested",
    "RestartRequested",
    "ResultReady",
    "RunFailed",
    "RunFinished",
    "RunSession",
    "RunState",
    "ScanOrchestrator",
    "StatsUpdated",
    "Tick",
]
