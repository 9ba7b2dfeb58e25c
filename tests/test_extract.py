"""Tests for linkscan.extract."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pytest

from linkscan.config import IGNORE_CONFIG_NAME
from linkscan.extract import URLExtractor, find_candidates, line_col, sanitize_url
from linkscan.models import Source, TargetSpec
from linkscan.scope import CancelScope
from tests._fixtures.repo_builder import RepoBuilder


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("https://example.com/path),", "https://example.com/path"),
        ("https://en.wikipedia.org/wiki/Foo_(bar)", "https://en.wikipedia.org/wiki/Foo_(bar)"),
        ("<https://example.com/a>", "https://example.com/a"),
        ('"https://example.com/q?x=1".', "https://example.com/q?x=1"),
        ("**https://example.com/bold**", "https://example.com/bold"),
        ("https://example.com:8080/path", "https://example.com:8080/path"),
        ("HTTP://Example.COM/Upper", "HTTP://Example.COM/Upper"),
        ("https://{tenant}.example.com/", None),
        ("https://[tenant].example.com/", None),
        ("ftp://example.com/file", None),
        ("mailto:someone@example.com", None),
        ("https://localhost/x", None),
        ("https://exa_mple.com/", None),
        ("https://", None),
    ],
)
def test_sanitize_url(token: str, expected: Optional[str]) -> None:
    assert sanitize_url(token) == expected


@pytest.mark.parametrize(
    "token",
    [
        "https://example.com/path),",
        "'https://example.com/a/b?c=d#frag';",
        "https://en.wikipedia.org/wiki/Foo_(bar)).",
    ],
)
def test_sanitize_url_is_idempotent(token: str) -> None:
    once = sanitize_url(token)
    assert once is not None
    assert sanitize_url(once) == once


def test_find_candidates_cuts_markdown_titles() -> None:
    content = '[docs](https://example.com/a "Title") and <https://example.com/b>'

    tokens = {sanitize_url(candidate.token) for candidate in find_candidates(content)} - {None}

    assert tokens == {"https://example.com/a", "https://example.com/b"}


def test_line_col_is_one_based() -> None:
    content = "first line\n  see https://example.com/page here\n"
    offset = content.index("https://")

    assert line_col(content, offset) == (2, 7)
    assert line_col(content, 0) == (1, 1)


def test_line_col_counts_utf8_bytes() -> None:
    content = "intro\nnaïve café https://example.com/x\n"
    offset = content.index("https://")

    assert line_col(content, offset) == (2, 14)


def test_extract_collects_every_source(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            "README.md": "See https://example.com/shared for details.\n",
            "docs/guide.md": """
            # Guide

            Read [the docs](https://example.com/shared).
            """,
        }
    )

    url_map = repo_builder.extract()

    assert list(url_map) == ["https://example.com/shared"]
    assert url_map["https://example.com/shared"] == [
        Source("README.md", 1, 5),
        Source("docs/guide.md", 3, 17),
    ]


def test_extract_reads_html_attributes(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            "index.html": (
                '<a href="https://example.com/h">home</a>\n'
                "<img src='https://example.com/i.png'>\n"
            ),
        }
    )

    url_map = repo_builder.extract()

    assert sorted(url_map) == ["https://example.com/h", "https://example.com/i.png"]
    assert url_map["https://example.com/h"] == [Source("index.html", 1, 10)]


def test_extract_applies_target_globs(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            "README.md": "https://example.com/md\n",
            "notes.txt": "https://example.com/txt\n",
        }
    )

    url_map = repo_builder.extract("**/*.md")

    assert list(url_map) == ["https://example.com/md"]


def test_extract_honours_ignore_config(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            IGNORE_CONFIG_NAME: '{"ignorePaths": ["docs", "skip.md"], "ignoreURLs": ["*acme*"]}',
            "docs/a/b.md": "https://example.com/hidden\n",
            "skip.md": "https://example.com/skipped\n",
            "README.md": "https://acme.example.com/x https://example.com/kept\n",
        }
    )

    url_map = repo_builder.extract()

    assert list(url_map) == ["https://example.com/kept"]


def test_extract_honours_gitignore_and_prunes_git(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            ".gitignore": "build/\n",
            "build/out.md": "https://example.com/build\n",
            ".git/config": "url = https://example.com/remote\n",
            "README.md": "https://example.com/readme\n",
        }
    )

    url_map = repo_builder.extract()

    assert list(url_map) == ["https://example.com/readme"]


def test_extract_skips_binary_and_oversized_files(tmp_path: Path) -> None:
    root = tmp_path / "repo"
    root.mkdir()
    (root / "image.bin").write_bytes(b"\x00\x01https://example.com/binary\n")
    (root / "big.md").write_text("https://example.com/big " + "x" * 200 + "\n", encoding="utf-8")
    (root / "small.md").write_text("https://example.com/small\n", encoding="utf-8")
    seen: List[str] = []

    url_map = URLExtractor(max_file_size=64).extract(TargetSpec(root), on_file=seen.append)

    assert list(url_map) == ["https://example.com/small"]
    assert "big.md" not in seen
    assert sorted(seen) == ["image.bin", "small.md"]


def test_extract_skip_code_blanks_markdown_code(repo_builder: RepoBuilder) -> None:
    content = """
    ```
    https://example.com/fenced
    ```
    Inline `https://example.com/inline` and https://example.com/prose.
    """
    repo_builder.write({"README.md": content, "notes.txt": "`https://example.com/plain`\n"})

    default_map = repo_builder.extract()
    skipping_map = URLExtractor(skip_code=True).extract(repo_builder.target())

    assert "https://example.com/fenced" in default_map
    assert "https://example.com/inline" in default_map
    assert sorted(skipping_map) == ["https://example.com/plain", "https://example.com/prose"]
    assert skipping_map["https://example.com/prose"] == [Source("README.md", 4, 41)]


def test_extract_single_file_root(repo_builder: RepoBuilder) -> None:
    repo_builder.write({"docs/page.md": "https://example.com/one\n", "other.md": "https://example.com/two\n"})

    url_map = URLExtractor().extract(TargetSpec(repo_builder.path() / "docs" / "page.md"))

    assert url_map == {"https://example.com/one": [Source("page.md", 1, 1)]}


def test_extract_stops_when_cancelled(repo_builder: RepoBuilder) -> None:
    repo_builder.write({"a.md": "https://example.com/a\n", "b.md": "https://example.com/b\n"})
    cancel = CancelScope()
    cancel.cancel()
    seen: List[str] = []

    url_map = URLExtractor().extract(repo_builder.target(), on_file=seen.append, cancel=cancel)

    assert url_map == {}
    assert seen == []


def test_extract_missing_root_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        URLExtractor().extract(TargetSpec(tmp_path / "missing"))
