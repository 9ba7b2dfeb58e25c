"""Polling file watcher used by watch mode."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .config import IGNORE_CONFIG_NAME
from .ignore import RuleSet, compile_rules
from .logging import get_logger
from .models import TargetSpec

_EXCLUDED_DIRS = {".git"}
_RULE_FILES = {".gitignore", IGNORE_CONFIG_NAME}

Signature = Tuple[int, int]

logger = get_logger("watcher")


class FileWatcher:
    """Reports writes to target files and to the ignore config.

    Each poll compares ``(mtime_ns, size)`` per file against the previous
    snapshot. New or modified files count as writes; deletions are ignored.
    Paths excluded by the ignore rules are neither stat'ed nor reported, and
    the rules are recompiled whenever the ignore config or a root
    ``.gitignore`` changes.

    ``pause`` suspends the background loop; ``rearm`` takes a fresh baseline
    and resumes it, so writes made while paused are never reported.
    """

    def __init__(
        self,
        target: TargetSpec,
        *,
        config_path: Path | None = None,
        interval: float = 1.0,
        on_change: Callable[[str], None] | None = None,
    ) -> None:
        self.target = target
        self.root = Path(target.root).expanduser().resolve()
        self.config_path = config_path.resolve() if config_path is not None else None
        self.interval = interval
        self.on_change = on_change
        self._lock = threading.Lock()
        self._paused = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.rules = self._compile_rules()
        self._snapshot = self._take_snapshot()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="linkscan-watch", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval * 2)
            self._thread = None

    def pause(self) -> None:
        """Stop reporting changes until ``rearm`` is called."""
        with self._lock:
            self._paused = True

    def rearm(self) -> None:
        """Take a new baseline snapshot and resume reporting."""
        with self._lock:
            self.rules = self._compile_rules()
            self._snapshot = self._take_snapshot()
            self._paused = False

    def poll(self) -> List[str]:
        """Return relevant paths written since the previous poll."""
        with self._lock:
            return self._poll_locked()

    def is_relevant(self, key: str) -> bool:
        """True for the ignore config or a non-ignored file selected by the target globs."""
        if self.config_path is not None and key == str(self.config_path):
            return True
        if key == IGNORE_CONFIG_NAME:
            return True
        if Path(key).is_absolute():
            return False
        if self.rules.matches_path(key):
            return False
        return self.target.matches(key)

    def _poll_locked(self) -> List[str]:
        current = self._take_snapshot()
        previous = self._snapshot
        changed = [key for key, signature in current.items() if previous.get(key) != signature]
        config_key = str(self.config_path) if self.config_path is not None else None
        if any(key in _RULE_FILES or key == config_key for key in changed):
            logger.debug("Ignore rules changed; recompiling")
            self.rules = self._compile_rules()
            current = self._take_snapshot()
        self._snapshot = current
        return sorted(key for key in changed if self.is_relevant(key))

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            with self._lock:
                if self._paused:
                    continue
                changes = self._poll_locked()
            if not changes:
                continue
            logger.debug("Detected changes: %s", ", ".join(changes))
            if self.on_change is not None:
                self.on_change(changes[0])

    def _compile_rules(self) -> RuleSet:
        return compile_rules(self.root, respect_gitignore=self.target.respect_gitignore)

    def _take_snapshot(self) -> Dict[str, Signature]:
        snapshot: Dict[str, Signature] = {}
        if self.root.is_file():
            _record(snapshot, self.root.name, self.root)
        elif self.root.is_dir():
            for dirpath, dirnames, filenames in os.walk(self.root):
                current_dir = Path(dirpath)
                rel_dir = current_dir.relative_to(self.root).as_posix() if current_dir != self.root else ""
                kept_dirs = []
                for name in dirnames:
                    if name in _EXCLUDED_DIRS:
                        continue
                    rel_path = f"{rel_dir}/{name}" if rel_dir else name
                    if self.rules.prunes_dir(rel_path):
                        continue
                    kept_dirs.append(name)
                dirnames[:] = kept_dirs
                for filename in filenames:
                    path = current_dir / filename
                    if path == self.config_path:
                        continue
                    rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
                    if self.rules.matches_path(rel_path):
                        continue
                    _record(snapshot, rel_path, path)
        if self.config_path is not None:
            _record(snapshot, str(self.config_path), self.config_path)
        return snapshot


def _record(snapshot: Dict[str, Signature], key: str, path: Path) -> None:
    try:
        stat_result = path.stat()
    except OSError:
        return
    snapshot[key] = (stat_result.st_mtime_ns, stat_result.st_size)


__all__ = ["FileWatcher"]
