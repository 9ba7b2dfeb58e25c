"""Core data models shared across linkscan components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .globs import match_any


@dataclass(frozen=True)
class TargetSpec:
    """Root path plus inclusion globs describing what a run scans."""

    root: Path
    globs: Tuple[str, ...] = ()
    respect_gitignore: bool = True

    def matches(self, rel_path: str) -> bool:
        """Return True when ``rel_path`` is selected by the inclusion globs."""
        if not self.globs:
            return True
        return match_any(self.globs, rel_path)


@dataclass(frozen=True, order=True)
class Source:
    """One place a URL was found (1-based line and column)."""

    path: str
    line: int
    column: int

    def label(self) -> str:
        return f"{self.path}:{self.line}:{self.column}"


@dataclass
class Result:
    """Classified outcome of checking a single URL."""

    url: str
    ok: bool
    status: int
    error: str = ""
    method: str = "GET"
    content_type: str = ""
    sources: List[Source] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "ok": self.ok,
            "status": self.status,
            "error": self.error,
            "method": self.method,
            "contentType": self.content_type,
            "sources": [source.label() for source in self.sources],
        }


@dataclass(frozen=True)
class Stats:
    """Progress snapshot published by the validation engine."""

    pending: int
    processed: int


@dataclass
class RunSummary:
    """Totals for a finished run, handed to report writers."""

    root: str
    started_at: datetime
    finished_at: datetime
    processed: int
    ok: int
    fail: int
    avg_rps: float
    peak_rps: float
    low_rps: float
    files_scanned: int
    url_count: int
    error: Optional[str] = None

    @property
    def duration(self) -> float:
        return max((self.finished_at - self.started_at).total_seconds(), 0.0)
