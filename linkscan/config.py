"""Configuration loading for linkscan (.linkscanignore and checker settings)."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .logging import get_logger

IGNORE_CONFIG_NAME = ".linkscanignore"

DEFAULT_CONCURRENCY = 16
FALLBACK_CONCURRENCY = 8
DEFAULT_TIMEOUT = 10.0

_TRAILING_COMMA = re.compile(r",(\s*[\]}])")

logger = get_logger("config")


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class IgnoreConfig:
    """Represents the ignore settings defined in .linkscanignore."""

    path: Optional[Path] = None
    ignore_paths: List[str] = field(default_factory=list)
    ignore_urls: List[str] = field(default_factory=list)


@dataclass
class CheckerConfig:
    """Settings for the concurrent validation engine."""

    max_concurrency: int = DEFAULT_CONCURRENCY
    request_timeout: float = DEFAULT_TIMEOUT
    # Accepted for compatibility; failed requests are never retried.
    max_retries: int = 0

    @property
    def worker_count(self) -> int:
        if self.max_concurrency <= 0:
            return FALLBACK_CONCURRENCY
        return self.max_concurrency


def find_ignore_config(start: Path) -> Optional[Path]:
    """Return the nearest .linkscanignore at or above ``start``."""
    current = start.expanduser().resolve()
    if current.is_file():
        current = current.parent
    while True:
        candidate = current / IGNORE_CONFIG_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_ignore_config(path: Path) -> IgnoreConfig:
    """Load ignore settings from ``path``.

    Raises ``ConfigError`` when the document cannot be parsed even by the
    relaxed fallbacks.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Unable to read {path}: {exc}") from exc

    if not text.strip():
        return IgnoreConfig(path=path)

    data = _parse_relaxed(text, path)
    if not isinstance(data, dict):
        raise ConfigError(f"{path.name} must contain an object at the root")

    return IgnoreConfig(
        path=path,
        ignore_paths=_as_pattern_list(data.get("ignorePaths")),
        ignore_urls=_as_pattern_list(data.get("ignoreURLs")),
    )


def _parse_relaxed(text: str, path: Path) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        first_error = exc

    logger.debug("Strict JSON parse of %s failed (%s); retrying leniently", path, first_error)
    try:
        return json.loads(_TRAILING_COMMA.sub(r"\1", text))
    except json.JSONDecodeError:
        pass

    try:
        # YAML flow syntax accepts JSON plus trailing commas and unquoted keys.
        return yaml.safe_load(text.replace("\t", "  "))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {first_error}") from exc


def _as_pattern_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Sequence):
        return []
    patterns: List[str] = []
    for item in value:
        if not isinstance(item, (str, int, float)):
            continue
        text = str(item).strip()
        if text:
            patterns.append(text)
    return patterns


def config_summary(config: IgnoreConfig) -> Dict[str, object]:
    """Return a loggable view of the ignore config."""
    return {
        "path": str(config.path) if config.path else None,
        "ignorePaths": list(config.ignore_paths),
        "ignoreURLs": list(config.ignore_urls),
    }


__all__ = [
    "CheckerConfig",
    "ConfigError",
    "IGNORE_CONFIG_NAME",
    "IgnoreConfig",
    "config_summary",
    "find_ignore_config",
    "load_ignore_config",
]
