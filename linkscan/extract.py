"""URL discovery: walk a file tree, pull URL-like tokens and sanitize them."""

from __future__ import annotations

import os
import re
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from .ignore import RuleSet, compile_rules
from .logging import get_logger
from .models import Source, TargetSpec
from .scope import CancelScope

MAX_FILE_SIZE = 2 * 1024 * 1024

_EXCLUDED_DIRS = {".git"}

_MARKDOWN_SUFFIXES = {".md", ".markdown", ".mdx"}

_BARE_URL = re.compile(r"\bhttps?://[^\s<>\[\]{}\"']+", re.IGNORECASE)
_MARKDOWN_LINK = re.compile(r"!?\[[^\]]*\]\((.*?)\)", re.IGNORECASE | re.DOTALL)
_ANGLE_URL = re.compile(r"<(https?://[^>\s]+)>", re.IGNORECASE)
_QUOTED_URL = re.compile(r"\"(https?://[^\"\s]+)\"|'(https?://[^'\s]+)'", re.IGNORECASE)
_HTML_HREF = re.compile(r"href\s*=\s*\"([^\"]+)\"|href\s*=\s*'([^']+)'", re.IGNORECASE)
_HTML_SRC = re.compile(r"src\s*=\s*\"([^\"]+)\"|src\s*=\s*'([^']+)'", re.IGNORECASE)

_FENCED_CODE = re.compile(r"^[ \t]*(`{3,}|~{3,}).*?^[ \t]*\1[ \t]*$", re.MULTILINE | re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`\n]+`")

_HOSTNAME = re.compile(
    r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)+",
    re.IGNORECASE,
)

_LEADING_JUNK = "'\"*_~`,;:!?)]}."
_TRAILING_JUNK = ",.;:!?]'\"*_~`"
_PAIRS = {")": "(", "]": "[", "}": "{", ">": "<"}
_OPENERS = {opener: closer for closer, opener in _PAIRS.items()}

logger = get_logger("extract")

FileCallback = Callable[[str], None]


@dataclass(frozen=True)
class Candidate:
    """A raw URL-like token and the offset where it starts."""

    token: str
    offset: int


def find_candidates(content: str) -> List[Candidate]:
    """Return raw tokens from every pattern source; overlaps are expected."""
    found: List[Candidate] = []
    for match in _MARKDOWN_LINK.finditer(content):
        target = match.group(1)
        stripped = target.lstrip()
        if not stripped:
            continue
        # A link destination ends at the first whitespace; the rest is a title.
        destination = stripped.split(None, 1)[0]
        found.append(Candidate(destination, match.start(1) + len(target) - len(stripped)))
    for pattern in (_HTML_HREF, _HTML_SRC, _ANGLE_URL, _QUOTED_URL):
        for match in pattern.finditer(content):
            found.extend(_group_candidates(match))
    for match in _BARE_URL.finditer(content):
        found.append(Candidate(match.group(0), match.start()))
    return found


def _group_candidates(match: re.Match[str]) -> Iterator[Candidate]:
    for index in range(1, (match.re.groups or 0) + 1):
        value = match.group(index)
        if value is not None:
            yield Candidate(value, match.start(index))
            return


def sanitize_url(token: str) -> Optional[str]:
    """Return the cleaned URL for ``token`` or None when it is not a checkable URL."""
    value = token.strip()
    if len(value) >= 2 and value.startswith("<") and value.endswith(">"):
        value = value[1:-1]
    if len(value) >= 2 and value[0] in {'"', "'"} and value[-1] == value[0]:
        value = value[1:-1]

    value = trim_delimiters(value)
    lowered = value.lower()
    if not (lowered.startswith("http://") or lowered.startswith("https://")):
        return None

    try:
        parts = urlsplit(value)
        hostname = parts.hostname
    except ValueError:
        return None

    host_part = parts.netloc.rpartition("@")[2]
    if not host_part or any(char in host_part for char in "[]{}"):
        return None
    if not hostname or _HOSTNAME.fullmatch(hostname) is None:
        return None
    return value


def trim_delimiters(value: str) -> str:
    """Strip punctuation and unbalanced brackets from both ends until stable."""
    previous = None
    while value != previous:
        previous = value
        value = _trim_leading(value)
        value = _trim_trailing(value)
    return value


def _trim_leading(value: str) -> str:
    while value:
        first = value[0]
        if first in _LEADING_JUNK:
            value = value[1:]
            continue
        closer = _OPENERS.get(first)
        if closer is not None and value.count(first) > value.count(closer):
            value = value[1:]
            continue
        break
    return value


def _trim_trailing(value: str) -> str:
    while value:
        last = value[-1]
        opener = _PAIRS.get(last)
        if opener is not None:
            if value.count(last) > value.count(opener):
                value = value[:-1]
                continue
            break
        if last in _TRAILING_JUNK:
            value = value[:-1]
            continue
        break
    return value


def line_col(content: str, offset: int) -> Tuple[int, int]:
    """Return the 1-based (line, column) of the character ``offset`` within ``content``.

    The column counts UTF-8 bytes from the start of the line, so non-ASCII
    text before a URL shifts it the same way a byte-oriented editor would.
    """
    if offset <= 0:
        return 1, 1
    offset = min(offset, len(content))
    line = content.count("\n", 0, offset) + 1
    line_start = content.rfind("\n", 0, offset) + 1
    return line, len(content[line_start:offset].encode("utf-8")) + 1


def blank_code(content: str) -> str:
    """Replace fenced blocks and inline code spans with spaces, keeping offsets."""

    def _blank(match: re.Match[str]) -> str:
        return re.sub(r"[^\n]", " ", match.group(0))

    content = _FENCED_CODE.sub(_blank, content)
    return _INLINE_CODE.sub(_blank, content)


class URLExtractor:
    """Walks a target tree and maps each sanitized URL to where it appears."""

    def __init__(self, *, max_file_size: int = MAX_FILE_SIZE, skip_code: bool = False) -> None:
        self.max_file_size = max_file_size
        self.skip_code = skip_code

    def extract(
        self,
        target: TargetSpec,
        rules: RuleSet | None = None,
        on_file: FileCallback | None = None,
        cancel: CancelScope | None = None,
    ) -> Dict[str, List[Source]]:
        """Return ``url -> sorted sources`` for every included file under the target root."""
        root_path = Path(target.root).expanduser().resolve()
        if not root_path.exists():
            raise FileNotFoundError(f"Scan root not found: {target.root}")
        if rules is None:
            rules = compile_rules(root_path, respect_gitignore=target.respect_gitignore)

        occurrences: Dict[str, Set[Source]] = defaultdict(set)
        for path, rel_path in self._iter_files(root_path, target, rules, cancel):
            if cancel is not None and cancel.cancelled:
                break
            if on_file is not None:
                on_file(rel_path)
            content = self._read_text(path)
            if content is None:
                continue
            for url, source in self._scan_content(content, rel_path, path.suffix.lower()):
                if rules.matches_url(url):
                    continue
                occurrences[url].add(source)

        return {url: sorted(sources) for url, sources in occurrences.items()}

    def _iter_files(
        self,
        root: Path,
        target: TargetSpec,
        rules: RuleSet,
        cancel: CancelScope | None,
    ) -> Iterator[Tuple[Path, str]]:
        if root.is_file():
            if self._accepts(root, root.name, target, rules):
                yield root, root.name
            return

        for dirpath, dirnames, filenames in os.walk(root):
            if cancel is not None and cancel.cancelled:
                return
            current_dir = Path(dirpath)
            rel_dir = current_dir.relative_to(root).as_posix() if current_dir != root else ""

            kept_dirs = []
            for name in sorted(dirnames):
                if name in _EXCLUDED_DIRS:
                    continue
                rel_path = f"{rel_dir}/{name}" if rel_dir else name
                if rules.prunes_dir(rel_path):
                    continue
                kept_dirs.append(name)
            dirnames[:] = kept_dirs

            for filename in sorted(filenames):
                rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
                path = current_dir / filename
                if self._accepts(path, rel_path, target, rules):
                    yield path, rel_path

    def _accepts(self, path: Path, rel_path: str, target: TargetSpec, rules: RuleSet) -> bool:
        if rules.matches_path(rel_path):
            return False
        try:
            size = path.stat().st_size
        except OSError as exc:
            logger.debug("Skipping %s: %s", rel_path, exc)
            return False
        if size > self.max_file_size:
            logger.debug("Skipping %s: %d bytes exceeds limit", rel_path, size)
            return False
        return target.matches(rel_path)

    def _read_text(self, path: Path) -> Optional[str]:
        try:
            with path.open("rb") as handle:
                data = handle.read(self.max_file_size + 1)
        except OSError as exc:
            logger.debug("Unable to read %s: %s", path, exc)
            return None
        if len(data) > self.max_file_size or b"\x00" in data:
            return None
        return data.decode("utf-8", errors="replace")

    def _scan_content(
        self, content: str, rel_path: str, suffix: str
    ) -> Iterator[Tuple[str, Source]]:
        if self.skip_code and suffix in _MARKDOWN_SUFFIXES:
            content = blank_code(content)
        for candidate in find_candidates(content):
            url = sanitize_url(candidate.token)
            if url is None:
                continue
            line, column = line_col(content, candidate.offset)
            yield url, Source(rel_path, line, column)


__all__ = [
    "Candidate",
    "MAX_FILE_SIZE",
    "URLExtractor",
    "blank_code",
    "find_candidates",
    "line_col",
    "sanitize_url",
    "trim_delimiters",
]
