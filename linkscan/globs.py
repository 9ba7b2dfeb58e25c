"""Glob matching with ``**`` (any depth) support for repository-relative paths."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable

_GLOB_META = frozenset("*?[")


def has_glob_meta(value: str) -> bool:
    """Return True when ``value`` contains glob wildcard characters."""
    return any(char in _GLOB_META for char in value)


def glob_match(pattern: str, path: str) -> bool:
    """Match a slash-separated ``path`` against ``pattern``.

    ``*`` and ``?`` never cross a ``/``; a ``**`` segment matches zero or more
    whole directories, so ``**/*.md`` matches both ``README.md`` and
    ``docs/guide/intro.md``.
    """
    normalized = path.replace("\\", "/")
    return _compile(pattern).match(normalized) is not None


def match_any(patterns: Iterable[str], path: str) -> bool:
    """Return True when ``path`` matches at least one of ``patterns``."""
    return any(glob_match(pattern, path) for pattern in patterns)


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(_translate(pattern))


def _translate(pattern: str) -> str:
    parts: list[str] = []
    index = 0
    length = len(pattern)
    while index < length:
        char = pattern[index]
        if char == "*":
            end = index
            while end < length and pattern[end] == "*":
                end += 1
            starts_segment = index == 0 or pattern[index - 1] == "/"
            if end - index >= 2 and starts_segment:
                if end < length and pattern[end] == "/":
                    parts.append("(?:.*/)?")
                    end += 1
                elif end == length:
                    parts.append(".*")
                else:
                    parts.append("[^/]*")
            else:
                parts.append("[^/]*")
            index = end
            continue
        if char == "?":
            parts.append("[^/]")
        elif char == "[":
            closing = _find_class_end(pattern, index)
            if closing < 0:
                parts.append(re.escape(char))
            else:
                body = pattern[index + 1 : closing].replace("\\", "\\\\")
                if body[:1] in {"!", "^"}:
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                index = closing
        else:
            parts.append(re.escape(char))
        index += 1
    return "(?s:" + "".join(parts) + r")\Z"


def _find_class_end(pattern: str, start: int) -> int:
    index = start + 1
    if index < len(pattern) and pattern[index] in {"!", "^"}:
        index += 1
    if index < len(pattern) and pattern[index] == "]":
        index += 1
    while index < len(pattern) and pattern[index] != "]":
        index += 1
    return index if index < len(pattern) else -1


__all__ = ["glob_match", "has_glob_meta", "match_any"]
