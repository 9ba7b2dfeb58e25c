"""JSON and Markdown reports for finished runs."""

from __future__ import annotations

import html
import json
import re
from pathlib import Path
from typing import Dict, List, Sequence

from .models import Result, RunSummary, Source

REPORT_MARKER = "<!-- linkscan-report -->"
FAILURES_HEADING = "### Failures by URL"

_UNSAFE_NAME = re.compile(r"[^a-z0-9._-]+")


def default_report_path(root: str, suffix: str) -> Path:
    """Derive ``<root-name>.<suffix>`` with unsafe characters replaced."""
    base = Path(root).name.strip().lower()
    if not base or base == ".":
        base = "results"
    safe = _UNSAFE_NAME.sub("_", base)
    return Path(f"{safe}.{suffix}")


def write_json(path: Path, failures: Sequence[Result]) -> Path:
    """Write the failed results as a JSON array."""
    payload = [result.to_dict() for result in failures]
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return path


def render_markdown(
    failures: Sequence[Result],
    summary: RunSummary,
    *,
    json_path: Path | None = None,
    repo_blob_base: str | None = None,
) -> str:
    """Return a GitHub-flavoured Markdown report for a finished run."""
    lines: List[str] = [
        REPORT_MARKER,
        "## linkscan report",
        "",
        f"- **Root**: {_escape(summary.root)}",
        f"- **Started**: {summary.started_at:%Y-%m-%d %H:%M:%S %Z}",
        f"- **Finished**: {summary.finished_at:%Y-%m-%d %H:%M:%S %Z}",
        f"- **Processed**: {summary.processed}  •  **OK**: {summary.ok}  •  **Fail**: {summary.fail}",
        (
            f"- **Rates**: avg {summary.avg_rps:.1f}/s  •  peak {summary.peak_rps:.1f}/s"
            f"  •  low {summary.low_rps:.1f}/s"
        ),
        f"- **Files scanned**: {summary.files_scanned}",
    ]
    if json_path is not None:
        lines.append(f"- **JSON**: {_escape(json_path.name)}")
    lines.extend(["", FAILURES_HEADING, ""])

    if not failures:
        lines.append("No broken links found.")
        lines.append("")

    for url, result, sources in _group_by_url(failures):
        prefix = f"{result.status} " if result.status > 0 else ""
        message = _escape(result.error) if result.error else "HTTP error"
        lines.append(f"- {prefix}{_escape(result.method)} `{_escape(url)}`: {message}")
        lines.append("  <details><summary>files</summary>")
        lines.append("")
        for source in sources:
            lines.append(f"  - [{_escape(source.label())}]({_source_link(source, repo_blob_base)})")
        lines.append("")
        lines.append("  </details>")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def write_markdown(
    path: Path,
    failures: Sequence[Result],
    summary: RunSummary,
    *,
    json_path: Path | None = None,
    repo_blob_base: str | None = None,
) -> Path:
    content = render_markdown(
        failures, summary, json_path=json_path, repo_blob_base=repo_blob_base
    )
    path.write_text(content, encoding="utf-8")
    return path


def _group_by_url(failures: Sequence[Result]) -> List[tuple[str, Result, List[Source]]]:
    grouped: Dict[str, tuple[Result, set[Source]]] = {}
    for result in failures:
        entry = grouped.setdefault(result.url, (result, set()))
        entry[1].update(result.sources)
    return [(url, grouped[url][0], sorted(grouped[url][1])) for url in sorted(grouped)]


def _source_link(source: Source, repo_blob_base: str | None) -> str:
    path = source.path.replace(" ", "%20").replace("(", "%28").replace(")", "%29")
    anchor = f"#L{source.line}"
    if repo_blob_base and repo_blob_base.strip():
        return f"{repo_blob_base.strip().rstrip('/')}/{path}{anchor}"
    return f"./{path}{anchor}"


def _escape(value: str) -> str:
    return html.escape(value, quote=True)


__all__ = [
    "FAILURES_HEADING",
    "REPORT_MARKER",
    "default_report_path",
    "render_markdown",
    "write_json",
    "write_markdown",
]
