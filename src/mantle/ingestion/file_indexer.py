"""File tree indexer.

Turns a raw GitHub tree listing into the file records stored for a
repository: directories, vendored and generated paths, binary files and
oversized files are dropped, and each remaining file gets a language.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from mantle.ingestion.token_counter import TOKEN_LIMIT, TokenCountResult, calculate_token_count
from mantle.services.github_content import TreeEntry

DEFAULT_MAX_FILE_SIZE = 1024 * 1024

# Substring matches against the full path
DEFAULT_PATH_EXCLUSIONS: tuple[str, ...] = (
    # Package managers
    "node_modules/",
    "vendor/",
    ".pnpm/",
    # Build outputs
    "dist/",
    "build/",
    "out/",
    ".next/",
    ".nuxt/",
    ".svelte-kit/",
    ".output/",
    ".vercel/",
    # Testing / coverage
    "coverage/",
    "__pycache__/",
    ".pytest_cache/",
    ".nyc_output/",
    # Virtual environments
    ".venv/",
    "venv/",
    "env/",
    ".virtualenv/",
    # Editors
    ".idea/",
    ".vscode/",
    ".git/",
    # Lock files
    "package-lock.json",
    "yarn.lock",
    "bun.lockb",
    "pnpm-lock.yaml",
    "Gemfile.lock",
    "poetry.lock",
    "Cargo.lock",
    "composer.lock",
    # Generated
    ".d.ts.map",
    ".js.map",
    ".css.map",
    "routeTree.gen.ts",
)

BINARY_EXTENSIONS = frozenset(
    {
        # Images
        "png", "jpg", "jpeg", "gif", "ico", "svg", "webp", "bmp", "tiff", "avif",
        # Fonts
        "woff", "woff2", "ttf", "otf", "eot",
        # Media
        "mp3", "mp4", "wav", "avi", "mov", "webm", "ogg", "flac",
        # Archives
        "zip", "tar", "gz", "rar", "7z", "bz2", "xz",
        # Binaries
        "exe", "dll", "so", "dylib", "bin", "dmg", "msi",
        # Compiled
        "pyc", "pyo", "class", "o", "obj", "a", "lib",
        # Documents
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
        # Databases
        "db", "sqlite", "sqlite3",
        # Minified
        "min.js", "min.css",
    }
)  # fmt: skip

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "mts": "typescript",
    "cts": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "py": "python",
    "pyw": "python",
    "pyi": "python",
    "rb": "ruby",
    "rake": "ruby",
    "gemspec": "ruby",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "kt": "kotlin",
    "kts": "kotlin",
    "swift": "swift",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "cc": "cpp",
    "cxx": "cpp",
    "hpp": "cpp",
    "hh": "cpp",
    "hxx": "cpp",
    "cs": "csharp",
    "php": "php",
    "sql": "sql",
    "md": "markdown",
    "mdx": "markdown",
    "json": "json",
    "jsonc": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "toml": "toml",
    "html": "html",
    "htm": "html",
    "css": "css",
    "scss": "scss",
    "sass": "scss",
    "less": "less",
    "graphql": "graphql",
    "gql": "graphql",
    "proto": "protobuf",
    "sh": "shell",
    "bash": "shell",
    "zsh": "shell",
    "fish": "shell",
    "lua": "lua",
    "pl": "perl",
    "pm": "perl",
    "r": "r",
    "scala": "scala",
    "sc": "scala",
    "clj": "clojure",
    "cljs": "clojure",
    "cljc": "clojure",
    "ex": "elixir",
    "exs": "elixir",
    "erl": "erlang",
    "hrl": "erlang",
    "hs": "haskell",
    "lhs": "haskell",
    "ml": "ocaml",
    "mli": "ocaml",
    "fs": "fsharp",
    "fsi": "fsharp",
    "fsx": "fsharp",
    "dart": "dart",
    "vue": "vue",
    "svelte": "svelte",
    "xml": "xml",
    "xsl": "xml",
    "xslt": "xml",
    "ini": "ini",
    "cfg": "ini",
    "conf": "config",
    "env": "dotenv",
    "tf": "terraform",
    "tfvars": "terraform",
    "dockerfile": "dockerfile",
    "nix": "nix",
    "zig": "zig",
    "v": "v",
    "nim": "nim",
    "cr": "crystal",
    "jl": "julia",
}

# Exact, case-sensitive filename matches; checked before extensions
FILENAME_TO_LANGUAGE: dict[str, str] = {
    "Dockerfile": "dockerfile",
    "Makefile": "makefile",
    "Rakefile": "ruby",
    "Gemfile": "ruby",
    "Brewfile": "ruby",
    "CMakeLists": "cmake",
    "Justfile": "just",
    "Vagrantfile": "ruby",
    ".gitignore": "gitignore",
    ".gitattributes": "gitattributes",
    ".editorconfig": "editorconfig",
    ".prettierrc": "json",
    ".eslintrc": "json",
    ".babelrc": "json",
    "tsconfig.json": "json",
    "package.json": "json",
}

_COMPOUND_EXTENSIONS = (
    (".min.js", "min.js"),
    (".min.css", "min.css"),
    (".d.ts", "ts"),
    (".d.ts.map", "d.ts.map"),
    (".js.map", "js.map"),
    (".css.map", "css.map"),
)


@dataclass(frozen=True)
class IndexedFile:
    file_path: str
    language: str | None
    size_bytes: int


@dataclass
class IndexerStats:
    total_files: int = 0
    included_files: int = 0
    excluded_by_path: int = 0
    excluded_by_extension: int = 0
    excluded_by_size: int = 0


@dataclass(frozen=True)
class IndexerResult:
    files: list[IndexedFile]
    stats: IndexerStats
    token_count: TokenCountResult | None = field(default=None)


def _filename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def get_extension(path: str) -> str:
    """Lowercase extension without the leading dot, or ``""``."""
    filename = _filename(path)

    # Hidden files such as .gitignore have no extension
    if filename.startswith(".") and "." not in filename[1:]:
        return ""

    lower = filename.lower()
    for suffix, ext in _COMPOUND_EXTENSIONS:
        if lower.endswith(suffix):
            return ext

    dot = filename.rfind(".")
    if dot <= 0:
        return ""
    return filename[dot + 1 :].lower()


def detect_language(path: str) -> str | None:
    filename = _filename(path)
    if filename in FILENAME_TO_LANGUAGE:
        return FILENAME_TO_LANGUAGE[filename]

    ext = get_extension(path)
    if ext:
        return EXTENSION_TO_LANGUAGE.get(ext)
    return None


def is_excluded_by_path(path: str, extra_patterns: Sequence[str] = ()) -> bool:
    return any(pattern in path for pattern in (*DEFAULT_PATH_EXCLUSIONS, *extra_patterns))


def is_excluded_by_extension(path: str, extra_extensions: Sequence[str] = ()) -> bool:
    ext = get_extension(path)
    if not ext:
        return False
    if ext in BINARY_EXTENSIONS:
        return True
    return ext in {e.lower() for e in extra_extensions}


def index_file_tree(
    entries: Iterable[TreeEntry],
    *,
    exclude_patterns: Sequence[str] = (),
    binary_extensions: Sequence[str] = (),
    include_hidden: bool = True,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
) -> IndexerResult:
    """
    Filter a tree listing down to indexable files.

    Filters apply in order: hidden files (when ``include_hidden`` is off),
    path exclusions, binary extensions, then the size ceiling. Each file
    is counted against the first filter that rejects it.
    """
    stats = IndexerStats()
    files: list[IndexedFile] = []

    for entry in entries:
        if entry.type == "tree":
            continue

        stats.total_files += 1
        path = entry.path

        if not include_hidden and _filename(path).startswith("."):
            stats.excluded_by_path += 1
            continue

        if is_excluded_by_path(path, exclude_patterns):
            stats.excluded_by_path += 1
            continue

        if is_excluded_by_extension(path, binary_extensions):
            stats.excluded_by_extension += 1
            continue

        if entry.size > max_file_size:
            stats.excluded_by_size += 1
            continue

        files.append(
            IndexedFile(file_path=path, language=detect_language(path), size_bytes=entry.size)
        )
        stats.included_files += 1

    return IndexerResult(files=files, stats=stats)


def index_file_tree_with_tokens(
    entries: Iterable[TreeEntry],
    *,
    token_limit: int = TOKEN_LIMIT,
    **options,
) -> IndexerResult:
    """Index a tree and compute its token estimate in one pass."""
    result = index_file_tree(entries, **options)
    return IndexerResult(
        files=result.files,
        stats=result.stats,
        token_count=calculate_token_count(result.files, limit=token_limit),
    )
