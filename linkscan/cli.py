"""CLI entrypoints for linkscan commands."""

from __future__ import annotations

import argparse
import os
import sys
import threading
from pathlib import Path
from typing import List, Optional, Sequence

from .config import DEFAULT_CONCURRENCY, DEFAULT_TIMEOUT, CheckerConfig
from .extract import URLExtractor
from .globs import has_glob_meta
from .logging import configure_logging, get_logger
from .models import Result, RunSummary, TargetSpec
from .report import default_report_path, write_json, write_markdown
from .session import (
    ChangeDetected,
    Event,
    ExtractionDone,
    ResultReady,
    RestartRequested,
    RunFinished,
    RunSession,
    RunState,
    ScanOrchestrator,
)

_ALL_FILES = "**/*"

logger = get_logger("cli")


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_scan_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "targets",
        nargs="*",
        help="Directory, file, or glob patterns to scan (comma-separated allowed; defaults to **/*).",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help="Maximum concurrent requests.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="HTTP request timeout in seconds.",
    )
    parser.add_argument(
        "--json-out",
        nargs="?",
        const="",
        default=None,
        help="Write failed results as JSON (defaults to <root>.json when no path is given).",
    )
    parser.add_argument(
        "--md-out",
        nargs="?",
        const="",
        default=None,
        help="Write a Markdown report (defaults to <root>.md when no path is given).",
    )
    parser.add_argument(
        "--repo-blob-base",
        default=None,
        help="Base URL for source links in the Markdown report (e.g. https://github.com/owner/repo/blob/<sha>).",
    )
    parser.add_argument(
        "--no-gitignore",
        dest="respect_gitignore",
        action="store_false",
        help="Do not apply .gitignore and .git/info/exclude while scanning.",
    )
    parser.add_argument(
        "--skip-code",
        action="store_true",
        help="Ignore URLs inside Markdown code spans and fenced code blocks.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linkscan",
        description="Find URLs in files and report the ones that are broken.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    check_parser = subparsers.add_parser(
        "check",
        help="Scan for URLs and validate them without interaction (CI friendly).",
    )
    _add_verbose_option(check_parser, suppress_default=True)
    _add_scan_options(check_parser)
    check_parser.add_argument(
        "--fail-on-failures",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Exit non-zero when any link fails.",
    )

    run_parser = subparsers.add_parser(
        "run",
        help="Scan and validate with live progress; press r + Enter to rescan, q + Enter to quit.",
    )
    _add_verbose_option(run_parser, suppress_default=True)
    _add_scan_options(run_parser)
    run_parser.add_argument(
        "--watch",
        action="store_true",
        help="Rescan whenever a matching file or the ignore config changes.",
    )

    return parser


def resolve_target(raw_targets: Sequence[str], *, respect_gitignore: bool = True) -> TargetSpec:
    """Turn CLI targets into a root plus inclusion globs.

    A single existing directory becomes the root (scanning everything under
    it) and a single existing file is scanned on its own; anything else is
    treated as glob patterns relative to the current directory.
    """
    patterns: List[str] = []
    for raw in raw_targets:
        for part in raw.split(","):
            cleaned = _to_slash(part)
            if cleaned:
                patterns.append(cleaned)

    if not patterns:
        return TargetSpec(Path("."), (_ALL_FILES,), respect_gitignore)

    if len(patterns) == 1 and not has_glob_meta(patterns[0]):
        candidate = Path(patterns[0])
        if candidate.is_dir():
            return TargetSpec(candidate, (_ALL_FILES,), respect_gitignore)
        if candidate.is_file():
            return TargetSpec(candidate, (), respect_gitignore)

    return TargetSpec(Path("."), tuple(patterns), respect_gitignore)


def _to_slash(value: str) -> str:
    value = value.strip().replace("\\", "/")
    if value.startswith("./"):
        value = value[2:]
    return value


class _ReportWriter:
    """Completion hook that writes the requested JSON/Markdown reports."""

    def __init__(self, root: Path, json_out: Optional[str], md_out: Optional[str], repo_blob_base: Optional[str]) -> None:
        self.json_path = self._resolve(root, json_out, "json")
        self.md_path = self._resolve(root, md_out, "md")
        self.repo_blob_base = repo_blob_base or os.environ.get("LINKSCAN_REPO_BLOB_BASE_URL")

    @staticmethod
    def _resolve(root: Path, value: Optional[str], suffix: str) -> Optional[Path]:
        if value is None:
            return None
        if value.strip():
            return Path(value)
        return default_report_path(str(root.resolve()), suffix)

    def __call__(self, summary: RunSummary, failures: List[Result]) -> None:
        if self.json_path is not None:
            write_json(self.json_path, failures)
            logger.info("JSON report written to %s", self.json_path)
        if self.md_path is not None:
            write_markdown(
                self.md_path,
                failures,
                summary,
                json_path=self.json_path,
                repo_blob_base=self.repo_blob_base,
            )
            logger.info("Markdown report written to %s", self.md_path)


class _CheckProgress:
    """Prints CI-style progress notices every 5% of checked URLs."""

    def __init__(self) -> None:
        self.expected = 0
        self.last_pct = 0

    def __call__(self, event: Event, session: RunSession | None) -> None:
        if session is None:
            return
        if isinstance(event, ExtractionDone):
            self.expected = event.url_count
            self.last_pct = 0
        elif isinstance(event, ResultReady) and self.expected:
            result = event.result
            logger.debug(
                "Checked %s status=%d ok=%s error=%s sources=%d",
                result.url,
                result.status,
                result.ok,
                result.error,
                len(result.sources),
            )
            pct = session.total * 100 // self.expected
            while pct >= self.last_pct + 5 and self.last_pct < 100:
                self.last_pct += 5
                print(f"::notice:: Checking progress: {self.last_pct}% ({session.total}/{self.expected})")


class _LiveProgress:
    """Line-oriented renderer for ``linkscan run``."""

    def __init__(self, orchestrator: ScanOrchestrator) -> None:
        self.orchestrator = orchestrator

    def __call__(self, event: Event, session: RunSession | None) -> None:
        if session is None:
            return
        if isinstance(event, (RestartRequested, ChangeDetected)):
            print("Rescanning...")
        elif isinstance(event, ExtractionDone):
            print(f"Scanned {session.files_scanned} files, checking {event.url_count} URLs...")
        elif isinstance(event, ResultReady):
            result = event.result
            marker = "OK  " if result.ok else "FAIL"
            print(
                f"{marker} {result.status:3d} {result.url}  "
                f"[{session.total}/{session.url_count}, {session.rps:.1f}/s]"
            )
        elif isinstance(event, RunFinished) and self.orchestrator.state is RunState.DONE:
            summary = session.summary(str(self.orchestrator.target.root))
            print(_format_summary(summary))
            if self.orchestrator.watch:
                print("Watching for changes (r + Enter to rescan, q + Enter to quit)...")


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _format_summary(summary: RunSummary) -> str:
    lines = [
        f"Duration: {summary.duration:.3f}s",
        f"Processed: {summary.processed}  OK: {summary.ok}  Fail: {summary.fail}",
        f"Rates: avg {summary.avg_rps:.1f}/s  peak {summary.peak_rps:.1f}/s  low {summary.low_rps:.1f}/s",
        f"Files scanned: {summary.files_scanned}",
    ]
    return "\n".join(lines)


def _start_key_listener(orchestrator: ScanOrchestrator) -> None:
    def _listen() -> None:
        for line in sys.stdin:
            command = line.strip().lower()
            if command == "r":
                orchestrator.request_restart("manual")
            elif command == "q":
                orchestrator.request_quit()
                return
        orchestrator.request_quit()

    threading.Thread(target=_listen, name="linkscan-keys", daemon=True).start()


def _build_orchestrator(args: argparse.Namespace, *, watch: bool) -> ScanOrchestrator:
    target = resolve_target(args.targets, respect_gitignore=bool(args.respect_gitignore))
    config = CheckerConfig(max_concurrency=args.concurrency, request_timeout=args.timeout)
    orchestrator = ScanOrchestrator(
        target,
        config,
        extractor=URLExtractor(skip_code=bool(args.skip_code)),
        watch=watch,
    )
    orchestrator.on_complete(
        _ReportWriter(Path(target.root), args.json_out, args.md_out, args.repo_blob_base)
    )
    return orchestrator


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for linkscan commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    if args.command == "check":
        orchestrator = _build_orchestrator(args, watch=False)
        orchestrator.add_listener(_CheckProgress())
        try:
            summary = orchestrator.run()
        except (FileNotFoundError, NotADirectoryError) as exc:
            parser.exit(1, f"{exc}\n")
        except OSError as exc:
            parser.exit(1, f"linkscan check failed: {exc}\nRun with --verbose for more details.\n")
        if summary is None or summary.url_count == 0:
            return
        print(f"Checked {_plural(summary.processed, 'URL')}: {summary.ok} OK, {summary.fail} failed")
        if args.fail_on_failures and summary.fail > 0:
            parser.exit(1, f"{_plural(summary.fail, 'link')} failed\n")
    elif args.command == "run":
        orchestrator = _build_orchestrator(args, watch=bool(args.watch))
        orchestrator.add_listener(_LiveProgress(orchestrator))
        if sys.stdin.isatty():
            _start_key_listener(orchestrator)
        print(f"Scanning {orchestrator.target.root}{' (watch mode)' if args.watch else ''}")
        try:
            orchestrator.run()
        except KeyboardInterrupt:
            parser.exit(130, "Interrupted\n")
        except (FileNotFoundError, NotADirectoryError) as exc:
            parser.exit(1, f"{exc}\n")
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


if __name__ == "__main__":
    main(sys.argv[1:])
