from __future__ import annotations

import pytest

from mantle.ingestion.file_indexer import (
    detect_language,
    get_extension,
    index_file_tree,
    index_file_tree_with_tokens,
    is_excluded_by_extension,
    is_excluded_by_path,
)
from mantle.services.github_content import TreeEntry


def _blob(path: str, size: int = 100) -> TreeEntry:
    return TreeEntry(path=path, sha=f"sha-{path}", size=size)


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("src/app.py", "py"),
        ("README", ""),
        (".gitignore", ""),
        (".eslintrc.json", "json"),
        ("static/app.min.js", "min.js"),
        ("types/index.d.ts", "ts"),
        ("dist/app.js.map", "js.map"),
        ("Photo.PNG", "png"),
    ],
)
def test_get_extension(path: str, expected: str) -> None:
    assert get_extension(path) == expected


def test_detect_language_prefers_filename() -> None:
    assert detect_language("docker/Dockerfile") == "dockerfile"
    assert detect_language("package.json") == "json"
    assert detect_language("src/main.go") == "go"
    assert detect_language("web/App.tsx") == "typescript"
    assert detect_language("LICENSE") is None
    assert detect_language("notes.unknownext") is None


def test_path_exclusions_are_substring_matches() -> None:
    assert is_excluded_by_path("web/node_modules/react/index.js") is True
    assert is_excluded_by_path("yarn.lock") is True
    assert is_excluded_by_path("src/app.py") is False
    assert is_excluded_by_path("src/generated/api.py", ["generated/"]) is True


def test_binary_extensions_are_excluded() -> None:
    assert is_excluded_by_extension("assets/logo.png") is True
    assert is_excluded_by_extension("static/app.min.js") is True
    assert is_excluded_by_extension("Makefile") is False
    assert is_excluded_by_extension("data/dump.parquet", ["PARQUET"]) is True


def test_index_file_tree_counts_each_exclusion_once() -> None:
    entries = [
        _blob("src/app.py", 1000),
        _blob("README.md", 500),
        _blob("node_modules/left-pad/index.js"),
        _blob("assets/logo.png"),
        _blob("data/huge.json", 2 * 1024 * 1024),
        TreeEntry(path="src", sha="tree-sha", size=0, type="tree"),
    ]

    result = index_file_tree(entries)

    assert [f.file_path for f in result.files] == ["src/app.py", "README.md"]
    assert [f.language for f in result.files] == ["python", "markdown"]
    assert result.stats.total_files == 5
    assert result.stats.included_files == 2
    assert result.stats.excluded_by_path == 1
    assert result.stats.excluded_by_extension == 1
    assert result.stats.excluded_by_size == 1


def test_hidden_files_can_be_dropped() -> None:
    entries = [_blob(".env"), _blob("config/.prettierrc"), _blob("app.py")]

    kept = index_file_tree(entries)
    dropped = index_file_tree(entries, include_hidden=False)

    assert len(kept.files) == 3
    assert [f.file_path for f in dropped.files] == ["app.py"]
    assert dropped.stats.excluded_by_path == 2


def test_max_file_size_is_inclusive() -> None:
    result = index_file_tree([_blob("a.py", 10), _blob("b.py", 11)], max_file_size=10)

    assert [f.file_path for f in result.files] == ["a.py"]


def test_index_with_tokens_counts_only_included_files() -> None:
    entries = [
        _blob("src/app.py", 1000),
        _blob("README.md", 500),
        _blob("assets/logo.png", 10_000),
    ]

    result = index_file_tree_with_tokens(entries)

    assert result.token_count is not None
    assert result.token_count.total_bytes == 1500
    assert result.token_count.estimated_tokens == 375
    assert result.token_count.exceeds_limit is False
