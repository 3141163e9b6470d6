"""Tests for path conversion and file helpers."""

from pathlib import Path

import pytest

from rekord_fixer.core.paths import (
    file_type_for_extension,
    is_dir_writable,
    list_files_with_extensions,
    normalize_path,
    strip_extension,
    to_db_path,
)


class TestToDbPath:
    """Tests for to_db_path."""

    def test_backslashes_become_forward_slashes(self):
        assert to_db_path("C:\\Music\\A\\Song.mp3") == "C:/Music/A/Song.mp3"

    def test_empty_input(self):
        assert to_db_path("") == ""
        assert to_db_path("   ") == ""

    def test_dot_segments_and_duplicate_separators(self):
        assert to_db_path("/Music//A/./B/../Song.mp3") == "/Music/A/Song.mp3"

    def test_trailing_slash_added_once(self):
        """Folder prefixes get exactly one trailing slash."""
        assert to_db_path("/Music/A", trailing_slash=True) == "/Music/A/"
        assert to_db_path("/Music/A/", trailing_slash=True) == "/Music/A/"

    def test_unc_prefix_preserved(self):
        assert to_db_path("\\\\server\\share\\Song.mp3") == "//server/share/Song.mp3"

    def test_accepts_path_objects(self):
        assert to_db_path(Path("/Music/A")) == "/Music/A"


class TestNormalizePath:
    """Tests for normalize_path."""

    def test_none_and_empty(self):
        assert normalize_path(None) == ""
        assert normalize_path("") == ""

    def test_trailing_slash_dropped(self):
        assert normalize_path("/Music/A/") == "/Music/A"

    def test_root_kept(self):
        assert normalize_path("/") == "/"

    def test_whitespace_trimmed(self):
        assert normalize_path("  /Music/A  ") == "/Music/A"


class TestFileNames:
    """Tests for extension handling."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Song A.mp3", "Song A"),
            ("Song.v2.flac", "Song.v2"),
            ("README", "README"),
            ("/Music/A/Song A.wav", "Song A"),
        ],
    )
    def test_strip_extension(self, name, expected):
        assert strip_extension(name) == expected

    @pytest.mark.parametrize(
        "value, expected",
        [
            (".mp3", 1),
            (".m4a", 4),
            ("track.FLAC", 5),
            (".wav", 11),
            ("x.aiff", 12),
            (".ogg", 0),
            ("noext", 0),
        ],
    )
    def test_file_type_for_extension(self, value, expected):
        assert file_type_for_extension(value) == expected


class TestListFiles:
    """Tests for list_files_with_extensions."""

    def test_filters_extensions_case_insensitively(self, tmp_path):
        for name in ("b.MP3", "a.flac", "c.txt"):
            (tmp_path / name).write_bytes(b"x")
        result = list_files_with_extensions(tmp_path, [".mp3", ".flac"])
        assert [p.name for p in result] == ["a.flac", "b.MP3"]

    def test_recursive(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "top.mp3").write_bytes(b"x")
        (tmp_path / "sub" / "deep.mp3").write_bytes(b"x")

        flat = list_files_with_extensions(tmp_path, [".mp3"])
        deep = list_files_with_extensions(tmp_path, [".mp3"], recursive=True)

        assert [p.name for p in flat] == ["top.mp3"]
        assert sorted(p.name for p in deep) == ["deep.mp3", "top.mp3"]

    def test_directories_ignored(self, tmp_path):
        (tmp_path / "folder.mp3").mkdir()
        assert list_files_with_extensions(tmp_path, [".mp3"]) == []


class TestIsDirWritable:
    def test_writable_directory(self, tmp_path):
        assert is_dir_writable(tmp_path)
        assert not (tmp_path / ".write_test").exists()

    def test_missing_directory(self, tmp_path):
        assert not is_dir_writable(tmp_path / "missing")
