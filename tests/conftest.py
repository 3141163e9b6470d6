"""
Shared fixtures: a temporary library database with the tables the tool
touches, music folders on disk and an operation context wired to both.
"""

import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Tuple

import pytest

from rekord_fixer.context import OperationContext
from rekord_fixer.core.config import Config
from rekord_fixer.core.database import CUE_COLUMNS, DBManager
from rekord_fixer.core.paths import to_db_path
from rekord_fixer.domain.progress import CancellationToken

SCHEMA = f"""
CREATE TABLE djmdContent (
    ID VARCHAR(255) PRIMARY KEY,
    FolderPath VARCHAR(255),
    FileNameL VARCHAR(255),
    FileType INTEGER,
    StockDate VARCHAR(255),
    DateCreated VARCHAR(255),
    ReleaseDate VARCHAR(255),
    AlbumID VARCHAR(255),
    ArtistID VARCHAR(255),
    OrgArtistID VARCHAR(255),
    Subtitle VARCHAR(255),
    ColorID INTEGER,
    DJPlayCount INTEGER,
    rb_local_usn INTEGER,
    updated_at TEXT
);
CREATE TABLE djmdCue (
    {", ".join(CUE_COLUMNS)},
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE djmdPlaylist (
    ID VARCHAR(255) PRIMARY KEY,
    Seq INTEGER,
    Name VARCHAR(255),
    ParentID VARCHAR(255)
);
CREATE TABLE djmdSongPlaylist (
    ID VARCHAR(255) PRIMARY KEY,
    PlaylistID VARCHAR(255),
    ContentID VARCHAR(255),
    TrackNo INTEGER
);
CREATE TABLE djmdArtist (
    ID VARCHAR(255) PRIMARY KEY,
    Name VARCHAR(255),
    rb_local_usn INTEGER,
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE djmdAlbum (
    ID VARCHAR(255) PRIMARY KEY,
    Name VARCHAR(255),
    AlbumArtistID VARCHAR(255),
    rb_local_usn INTEGER,
    updated_at TEXT
);
CREATE TABLE agentRegistry (
    registry_id VARCHAR(255) PRIMARY KEY,
    int_1 INTEGER
);
INSERT INTO agentRegistry (registry_id, int_1) VALUES ('localUpdateCount', 100);
"""


class RecordingReporter:
    """Progress sink that keeps every call for assertions."""

    def __init__(self, cancel_after: Optional[int] = None):
        self.reports: List[Tuple[float, str]] = []
        self.completed: List[str] = []
        self.errors: List[Exception] = []
        self.cancel_after = cancel_after

    def report(self, fraction: float, status: str) -> None:
        self.reports.append((fraction, status))

    def is_cancelled(self) -> bool:
        if self.cancel_after is None:
            return False
        rows_done = sum(1 for _, status in self.reports if status.startswith("Processing"))
        return rows_done >= self.cancel_after

    def on_complete(self, summary: str) -> None:
        self.completed.append(summary)

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)

    @property
    def fractions(self) -> List[float]:
        return [fraction for fraction, _ in self.reports]


class Library:
    """Direct access to the test database, bypassing DBManager."""

    def __init__(self, path: Path):
        self.path = path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def execute(self, sql: str, params: Tuple[Any, ...] = ()) -> None:
        conn = self._connect()
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def fetch(self, sql: str, params: Tuple[Any, ...] = ()) -> List[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def track(self, track_id: str) -> sqlite3.Row:
        return self.fetch("SELECT * FROM djmdContent WHERE ID = ?", (track_id,))[0]

    def add_track(self, track_id: str, file_path: Path, **columns: Any) -> None:
        """Insert a djmdContent row for a file (FolderPath holds the full path)."""
        values = {
            "ID": track_id,
            "FolderPath": to_db_path(file_path),
            "FileNameL": Path(file_path).name,
            **columns,
        }
        names = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        self.execute(f"INSERT INTO djmdContent ({names}) VALUES ({marks})", tuple(values.values()))

    def add_playlist(
        self, playlist_id: str, name: str, seq: int, parent_id: str = "root"
    ) -> None:
        self.execute(
            "INSERT INTO djmdPlaylist (ID, Seq, Name, ParentID) VALUES (?, ?, ?, ?)",
            (playlist_id, seq, name, parent_id),
        )

    def add_to_playlist(self, playlist_id: str, track_id: str, track_no: int) -> None:
        self.execute(
            "INSERT INTO djmdSongPlaylist (ID, PlaylistID, ContentID, TrackNo) VALUES (?, ?, ?, ?)",
            (f"{playlist_id}-{track_id}", playlist_id, track_id, track_no),
        )

    def add_cue(self, cue_id: str, track_id: str, kind: int, in_msec: int) -> None:
        self.execute(
            "INSERT INTO djmdCue (ID, ContentID, Kind, InMsec, Comment) VALUES (?, ?, ?, ?, ?)",
            (cue_id, track_id, kind, in_msec, f"cue {cue_id}"),
        )

    def cues(self, track_id: str) -> List[sqlite3.Row]:
        return self.fetch(
            "SELECT * FROM djmdCue WHERE ContentID = ? ORDER BY Kind", (track_id,)
        )


@pytest.fixture
def db_path(tmp_path):
    """Temporary library database file with the schema loaded."""
    path = tmp_path / "library" / "master.db"
    path.parent.mkdir()
    conn = sqlite3.connect(path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def library(db_path):
    return Library(db_path)


@pytest.fixture
def music_root(tmp_path):
    """Music folders A and B on disk."""
    root = tmp_path / "Music"
    (root / "A").mkdir(parents=True)
    (root / "B").mkdir(parents=True)
    return root


def touch(path: Path, content: bytes = b"audio") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture
def make_file():
    """Create a non-empty file (and its folders)."""
    return touch


@pytest.fixture
def config(db_path):
    config = Config()
    config.database.path = str(db_path)
    config.batch.row_delay_ms = 0
    return config


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def db(db_path):
    manager = DBManager(db_path)
    yield manager
    manager.finalize()


@pytest.fixture
def ctx(db, config, reporter):
    """Operation context on the test database with no row delay."""
    return OperationContext(
        db=db, config=config, token=CancellationToken(), reporter=reporter
    )


@pytest.fixture
def make_reporter():
    """Factory for reporters, e.g. make_reporter(cancel_after=3)."""
    return RecordingReporter
