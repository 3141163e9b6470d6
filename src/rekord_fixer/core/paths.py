"""
Path conversion between the filesystem and the library database.

The library database stores paths with forward slashes regardless of the
host platform, so every path that reaches SQL goes through to_db_path().
"""

import os
import posixpath
from pathlib import Path
from typing import Iterable, List

# Fixed FileType codes used by the djmdContent table
FILE_TYPES = {
    ".mp3": 1,
    ".m4a": 4,
    ".flac": 5,
    ".wav": 11,
    ".aiff": 12,
}

WRITE_TEST_NAME = ".write_test"


def _to_slashes(path: str) -> str:
    return str(path).replace("\\", "/")


def to_db_path(path: str | os.PathLike, trailing_slash: bool = False) -> str:
    """Convert a filesystem path to the slash-style form stored in the database.

    Args:
        path: Filesystem path (absolute or relative)
        trailing_slash: Append a single "/" (used for folder prefix matching)

    Returns:
        Forward-slash path, or "" for empty input
    """
    raw = _to_slashes(os.fspath(path)).strip()
    if not raw:
        return ""

    # normpath keeps exactly two leading slashes, so UNC shares survive
    cleaned = posixpath.normpath(raw)
    if trailing_slash and not cleaned.endswith("/"):
        cleaned += "/"
    return cleaned


def normalize_path(path: str | os.PathLike | None) -> str:
    """Clean a path for display and comparison.

    Trims whitespace, resolves "." and ".." segments and duplicate separators.
    Unlike to_db_path() the trailing slash is always dropped.
    """
    if path is None:
        return ""
    raw = _to_slashes(os.fspath(path)).strip()
    if not raw:
        return ""
    cleaned = to_db_path(raw)
    if len(cleaned) > 1:
        cleaned = cleaned.rstrip("/")
    return cleaned


def strip_extension(file_name: str) -> str:
    """Return the file name without its last extension (case preserved)."""
    name = posixpath.basename(_to_slashes(file_name))
    stem, ext = posixpath.splitext(name)
    return stem if ext else name


def file_type_for_extension(name_or_ext: str) -> int:
    """Map a file name or extension to its FileType code (0 if unknown)."""
    value = name_or_ext.strip().lower()
    if not value.startswith("."):
        value = posixpath.splitext(_to_slashes(value))[1]
    return FILE_TYPES.get(value, 0)


def list_files_with_extensions(
    directory: str | os.PathLike,
    extensions: Iterable[str],
    recursive: bool = False,
) -> List[Path]:
    """List files in a directory whose extension is in the given set.

    Args:
        directory: Folder to scan
        extensions: Extensions with leading dot, compared case-insensitively
        recursive: Descend into subdirectories

    Returns:
        Sorted list of matching file paths
    """
    wanted = {ext.lower() for ext in extensions}
    root = Path(directory)
    pattern = root.rglob("*") if recursive else root.iterdir()
    return sorted(
        p for p in pattern if p.is_file() and p.suffix.lower() in wanted
    )


def is_dir_writable(directory: str | os.PathLike) -> bool:
    """Check whether files can be created in a directory."""
    marker = Path(directory) / WRITE_TEST_NAME
    try:
        marker.write_bytes(b"")
        marker.unlink()
        return True
    except OSError:
        return False


def ensure_directory(path: str | os.PathLike) -> Path:
    """Create a directory (and parents) if missing and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory
