"""Ignore rules compiled from .gitignore, .git/info/exclude and .linkscanignore."""

from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .config import ConfigError, config_summary, find_ignore_config, load_ignore_config
from .globs import glob_match
from .logging import get_logger

logger = get_logger("ignore")


@dataclass
class IgnoreRule:
    """Represents a single gitignore-style path pattern."""

    pattern: str
    directory_only: bool
    anchored: bool
    negate: bool
    has_slash: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if not self.pattern:
            return False
        if self._matches_entry(rel_path, is_dir):
            return True
        # Anything beneath a matched directory is matched as well.
        return any(self._matches_entry(parent, True) for parent in _parents(rel_path))

    def _matches_entry(self, target: str, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False
        if self.anchored or self.has_slash:
            if glob_match(self.pattern, target):
                return True
            if is_dir and self.pattern.endswith("/**"):
                return glob_match(self.pattern[:-3], target)
            return False
        return glob_match(self.pattern, target.rsplit("/", 1)[-1])


@dataclass
class RuleSet:
    """Compiled path and URL ignore rules for a single run."""

    path_rules: List[IgnoreRule] = field(default_factory=list)
    url_patterns: List[str] = field(default_factory=list)
    config_path: Optional[Path] = None

    def matches_path(self, rel_path: str, is_dir: bool = False) -> bool:
        """Return True when ``rel_path`` is excluded; the last matching rule wins."""
        target = rel_path.replace("\\", "/").strip("/")
        if not target:
            return False
        ignored = False
        for rule in self.path_rules:
            if rule.matches(target, is_dir):
                ignored = not rule.negate
        return ignored

    def prunes_dir(self, rel_dir: str) -> bool:
        """Return True when the whole subtree under ``rel_dir`` can be skipped."""
        return self.matches_path(rel_dir, is_dir=True)

    def matches_url(self, url: str) -> bool:
        """Return True when ``url`` matches an exact, substring or wildcard pattern."""
        for pattern in self.url_patterns:
            if not pattern:
                continue
            if pattern in url:
                return True
            if fnmatchcase(url, pattern):
                return True
        return False


def build_ignore_rule(pattern: str, negate: bool = False) -> IgnoreRule | None:
    pattern = pattern.strip()
    if not pattern:
        return None

    directory_only = pattern.endswith("/")
    if directory_only:
        pattern = pattern.rstrip("/")

    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern.lstrip("/")

    if not pattern:
        return None

    return IgnoreRule(
        pattern=pattern,
        directory_only=directory_only,
        anchored=anchored,
        negate=negate,
        has_slash="/" in pattern,
    )


def parse_ignore_lines(lines: Sequence[str]) -> List[IgnoreRule]:
    rules: List[IgnoreRule] = []
    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        negate = line.startswith("!")
        if negate:
            line = line[1:]
        rule = build_ignore_rule(line, negate=negate)
        if rule is not None:
            rules.append(rule)
    return rules


def _read_ignore_file(path: Path) -> List[IgnoreRule]:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []
    except OSError as exc:
        logger.debug("Unable to read %s: %s", path, exc)
        return []
    logger.debug("Loaded ignore rules from %s", path)
    return parse_ignore_lines(text.splitlines())


def compile_rules(root: Path | str, *, respect_gitignore: bool = True) -> RuleSet:
    """Compile the ignore rules that apply to a scan rooted at ``root``."""
    root_path = Path(root).expanduser().resolve()
    rules = RuleSet()

    if respect_gitignore and root_path.is_dir():
        rules.path_rules.extend(_read_ignore_file(root_path / ".gitignore"))
        rules.path_rules.extend(_read_ignore_file(root_path / ".git" / "info" / "exclude"))

    config_path = find_ignore_config(root_path)
    if config_path is None:
        return rules

    rules.config_path = config_path
    try:
        config = load_ignore_config(config_path)
    except ConfigError as exc:
        logger.warning("Ignoring malformed %s: %s", config_path, exc)
        return rules

    logger.debug("Ignore config: %s", config_summary(config))
    for pattern in config.ignore_paths:
        rule = build_ignore_rule(pattern)
        if rule is not None:
            rules.path_rules.append(rule)
    rules.url_patterns.extend(config.ignore_urls)
    return rules


def _parents(rel_path: str) -> Iterator[str]:
    parts = rel_path.split("/")
    for end in range(1, len(parts)):
        yield "/".join(parts[:end])


__all__ = ["IgnoreRule", "RuleSet", "build_ignore_rule", "compile_rules", "parse_ignore_lines"]
