"""
SQLite access to the library database.

DBManager owns the one connection the tool ever holds against the library
file. The file is the live working database of the desktop application, so
the connection is opened late, released early, and every mutating run is
preceded by a byte-for-byte backup.
"""

import os
import shutil
import sqlite3
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from loguru import logger

from .errors import (
    BackupError,
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    NoTracksFoundError,
    NotConnectedError,
    OperationBusyError,
)
from .paths import ensure_directory, to_db_path

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.000 +00:00"
BACKUP_TIME_FORMAT = "%Y-%m-%d@%H_%M_%S"

LIKE_ESCAPE_CHAR = "\\"
# Folder prefix match; bind folder_prefix_pattern(folder)
PREFIX_LIKE = "LIKE ? ESCAPE '\\'"

# SQLCipher settings of the library application's database
CIPHER_PRAGMAS = ("PRAGMA cipher_compatibility = 3", "PRAGMA cipher_page_size = 4096")

# Tables whose ID column is allocated with MAX()+1
ID_TABLES = frozenset({"djmdCue", "djmdArtist", "djmdAlbum", "djmdContent"})

TRACK_COLUMNS = (
    "c.ID, c.FolderPath, c.FileNameL, c.StockDate, c.DateCreated, "
    "c.ColorID, c.DJPlayCount"
)

CUE_COLUMNS = (
    "ID",
    "ContentID",
    "InMsec",
    "InFrame",
    "InMpegFrame",
    "InMpegAbs",
    "OutMsec",
    "OutFrame",
    "OutMpegFrame",
    "OutMpegAbs",
    "Kind",
    "Color",
    "ColorTableIndex",
    "ActiveLoop",
    "Comment",
    "BeatLoopSize",
    "CueMicrosec",
    "InPointSeekInfo",
    "OutPointSeekInfo",
    "ContentUUID",
    "UUID",
    "rb_data_status",
    "rb_local_data_status",
    "rb_local_deleted",
    "rb_local_synced",
)

PLAYLISTS_SQL = """
    SELECT p1.ID, p1.Name, p1.ParentID,
           CASE WHEN p2.Name IS NOT NULL THEN p2.Name || ' > ' || p1.Name
                ELSE p1.Name END AS Path
    FROM djmdPlaylist p1
    LEFT JOIN djmdPlaylist p2 ON p1.ParentID = p2.ID
    ORDER BY CASE WHEN p2.ID IS NULL THEN p1.Seq ELSE p2.Seq END,
             CASE WHEN p2.ID IS NULL THEN 0 ELSE p1.Seq + 1 END
"""


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """Format a UTC timestamp the way the library application stores it."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so they match literally under PREFIX_LIKE."""
    return (
        text.replace(LIKE_ESCAPE_CHAR, LIKE_ESCAPE_CHAR * 2)
        .replace("%", LIKE_ESCAPE_CHAR + "%")
        .replace("_", LIKE_ESCAPE_CHAR + "_")
    )


def folder_prefix_pattern(folder: str) -> str:
    """LIKE pattern selecting every track below a folder.

    Use it with PREFIX_LIKE so "_" and "%" in folder names match literally.
    """
    return escape_like(to_db_path(folder, trailing_slash=True)) + "%"


def load_cipher_driver():
    """DB-API module of SQLCipher, used for encrypted libraries.

    Raises:
        ConfigurationError: If sqlcipher3 is not installed
    """
    try:
        from sqlcipher3 import dbapi2
    except ImportError as e:
        raise ConfigurationError(
            "A database key is configured but sqlcipher3 is not installed "
            "(pip install 'rekord-fixer[cipher]')"
        ) from e
    return dbapi2


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _classify_connect_error(
    path: str, error: Exception, encrypted: bool = False
) -> DatabaseConnectionError:
    message = str(error).lower()
    if "not a database" in message or "malformed" in message:
        if encrypted:
            return DatabaseConnectionError(
                f"{path} could not be decrypted (check the database key)"
            )
        return DatabaseConnectionError(f"{path} is not a valid database file")
    if "locked" in message or "busy" in message:
        return DatabaseConnectionError(
            f"{path} is locked (close the library application and retry)"
        )
    if "no such table" in message:
        return DatabaseConnectionError(f"{path} does not contain a library schema")
    return DatabaseConnectionError(f"Cannot open {path}: {error}")


class DBManager:
    """Owner of the single library database connection.

    Args:
        db_path: Path to the database file ("" when not configured)
        backup_dir: Directory for backups (default: the database's folder)
        timeout: Seconds sqlite waits on a locked file before giving up
        key: SQLCipher key; when set the file is opened through sqlcipher3
    """

    def __init__(
        self,
        db_path: str | os.PathLike = "",
        backup_dir: Optional[str | os.PathLike] = None,
        timeout: float = 5.0,
        key: Optional[str] = None,
    ):
        self._db_path = os.fspath(db_path) if db_path else ""
        self._backup_dir = os.fspath(backup_dir) if backup_dir else None
        self._timeout = timeout
        self._key = key or None
        self._driver = sqlite3
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._in_transaction = False
        self._owner: Optional[str] = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def owner(self) -> Optional[str]:
        """Name of the operation currently holding the database, if any."""
        return self._owner

    def claim(self, owner: str) -> None:
        """Reserve the database for one operation.

        Raises:
            OperationBusyError: If another operation holds it
        """
        with self._lock:
            if self._owner is not None:
                raise OperationBusyError(
                    f"{self._owner} is still running", operation=owner
                )
            self._owner = owner

    def release(self, owner: str) -> None:
        with self._lock:
            if self._owner == owner:
                self._owner = None

    def get_database_path(self) -> str:
        """Configured database path, or "" when not configured."""
        return self._db_path

    @property
    def encrypted(self) -> bool:
        """True when the file is opened with a SQLCipher key."""
        return self._key is not None

    @property
    def backup_dir(self) -> Optional[Path]:
        if self._backup_dir:
            return Path(self._backup_dir)
        if self._db_path:
            return Path(self._db_path).parent
        return None

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._conn is not None

    def connect(self) -> None:
        """Open the connection. Does nothing if it is already open.

        Raises:
            DatabaseConnectionError: Path missing or empty file, locked or
                not a database
        """
        with self._lock:
            if self._conn is not None:
                return

            path = self._db_path
            if not path:
                raise DatabaseConnectionError("Database path is not configured")
            db_file = Path(path)
            if not db_file.is_file():
                raise DatabaseConnectionError(f"Database file not found: {path}")
            if db_file.stat().st_size == 0:
                raise DatabaseConnectionError(f"Database file is empty: {path}")

            driver = load_cipher_driver() if self.encrypted else sqlite3

            conn = None
            try:
                conn = driver.connect(path, timeout=self._timeout, check_same_thread=False)
                conn.row_factory = driver.Row
                if self.encrypted:
                    # The key must be the first statement on the connection
                    conn.execute(f"PRAGMA key = {_quote(self._key)}")
                    for pragma in CIPHER_PRAGMAS:
                        conn.execute(pragma)
                conn.execute("PRAGMA journal_mode=DELETE")
                conn.execute("PRAGMA synchronous=FULL")
                conn.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
            except driver.Error as e:
                if conn is not None:
                    conn.close()
                raise _classify_connect_error(path, e, self.encrypted) from e

            self._driver = driver
            self._conn = conn
            logger.debug(f"Connected to {path}")

    def ensure_connected(self) -> None:
        """Connect if needed."""
        if not self.is_connected:
            self.connect()

    def finalize(self) -> None:
        """Flush and close the connection. Safe to call when not connected."""
        with self._lock:
            conn = self._conn
            if conn is None:
                return
            self._conn = None

            try:
                conn.commit()
            except self._driver.Error as e:
                logger.warning(f"Commit on finalize failed: {e}")

            for pragma in ("PRAGMA wal_checkpoint(FULL)", "PRAGMA optimize"):
                try:
                    conn.execute(pragma)
                except self._driver.Error as e:
                    logger.warning(f"{pragma} failed: {e}")

            conn.close()
            logger.debug(f"Released connection to {self._db_path}")

    @contextmanager
    def session(self) -> Iterator["DBManager"]:
        """Hold the connection for the duration of a with-block.

        A nested session reuses the outer connection and leaves it open.
        """
        with self._lock:
            owns = self._conn is None
            if owns:
                self.connect()
        try:
            yield self
        finally:
            if owns:
                self.finalize()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise NotConnectedError(
                f"Database is not connected: {self._db_path or '(not configured)'}"
            )
        return self._conn

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def backup_database(self, now: Optional[datetime] = None) -> Path:
        """Copy the database file to a timestamped backup.

        The open connection (if any) is finalized first so the copy is
        consistent. The copy is written to a temp file in the backup
        directory and renamed into place, so an existing backup is never
        partially overwritten.

        Returns:
            Path of the new backup file

        Raises:
            BackupError: Source unreadable or destination not writable
        """
        with self._lock:
            self.finalize()

            if not self._db_path:
                raise BackupError("Database path is not configured")
            source = Path(self._db_path)
            if not source.is_file():
                raise BackupError(f"Database file not found: {source}")

            backup_dir = self.backup_dir
            try:
                ensure_directory(backup_dir)
            except OSError as e:
                raise BackupError(f"Cannot create backup directory {backup_dir}: {e}") from e

            stamp = (now or datetime.now()).strftime(BACKUP_TIME_FORMAT)
            target = backup_dir / f"{source.stem}_backup_{stamp}{source.suffix or '.db'}"

            tmp_name = None
            try:
                with tempfile.NamedTemporaryFile(
                    dir=backup_dir, prefix=".backup-", suffix=".tmp", delete=False
                ) as tmp:
                    tmp_name = tmp.name
                    with open(source, "rb") as src:
                        shutil.copyfileobj(src, tmp)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, target)
            except OSError as e:
                if tmp_name and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise BackupError(f"Backup of {source} failed: {e}") from e

            logger.info(f"Database backed up to {target}")
            return target

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Run a SELECT and return all rows."""
        with self._lock:
            conn = self._connection()
            try:
                return conn.execute(sql, tuple(params)).fetchall()
            except self._driver.Error as e:
                raise DatabaseError(f"Query failed: {e}", sql=sql) from e

    def query_row(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        """Run a SELECT and return the first row (or None)."""
        with self._lock:
            conn = self._connection()
            try:
                return conn.execute(sql, tuple(params)).fetchone()
            except self._driver.Error as e:
                raise DatabaseError(f"Query failed: {e}", sql=sql) from e

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a mutating statement and commit it.

        Inside transaction() the commit is deferred to the end of the block.

        Returns:
            Number of rows changed
        """
        with self._lock:
            conn = self._connection()
            try:
                cursor = conn.execute(sql, tuple(params))
                if not self._in_transaction:
                    conn.commit()
                return cursor.rowcount
            except self._driver.Error as e:
                if not self._in_transaction:
                    conn.rollback()
                raise DatabaseError(f"Statement failed: {e}", sql=sql) from e

    @contextmanager
    def transaction(self) -> Iterator["DBManager"]:
        """Group execute() calls: commit on success, roll back on error."""
        with self._lock:
            conn = self._connection()
            if self._in_transaction:
                yield self
                return
            self._in_transaction = True
            try:
                yield self
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._in_transaction = False

    def table_exists(self, table: str) -> bool:
        row = self.query_row(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        )
        return row is not None

    # ------------------------------------------------------------------
    # Library accessors
    # ------------------------------------------------------------------

    def get_playlists(self) -> list:
        """All playlists ordered as the library application shows them."""
        from ..domain.models import PlaylistItem

        return [PlaylistItem.from_row(row) for row in self.query(PLAYLISTS_SQL)]

    def get_playlist_by_path(self, path: str):
        """Playlist whose display path ("Parent > Child") equals `path`.

        Raises:
            ConfigurationError: If no playlist has that path
        """
        for playlist in self.get_playlists():
            if playlist.path == path:
                return playlist
        raise ConfigurationError(f"Playlist not found: {path}")

    def get_tracks_based_on_folder(self, folder: str) -> list:
        """Tracks whose file lives below a folder, ordered by file name.

        Raises:
            NoTracksFoundError: If the folder holds no known tracks
        """
        from ..domain.models import TrackItem

        rows = self.query(
            f"""
            SELECT {TRACK_COLUMNS}
            FROM djmdContent c
            WHERE c.FolderPath {PREFIX_LIKE}
            ORDER BY c.FileNameL
            """,
            (folder_prefix_pattern(folder),),
        )
        if not rows:
            raise NoTracksFoundError(f"No tracks found in folder {folder}")
        return [TrackItem.from_row(row) for row in rows]

    def get_tracks_based_on_playlist(self, playlist_id: str) -> list:
        """Tracks in a playlist in playlist order."""
        from ..domain.models import TrackItem

        rows = self.query(
            f"""
            SELECT {TRACK_COLUMNS}
            FROM djmdContent c
            JOIN djmdSongPlaylist sp ON c.ID = sp.ContentID
            WHERE sp.PlaylistID = ?
            ORDER BY sp.TrackNo, c.FileNameL
            """,
            (str(playlist_id),),
        )
        return [TrackItem.from_row(row) for row in rows]

    def get_track_hot_cues(self, track_id: str) -> List[Dict[str, Any]]:
        """All cue rows of a track as column dicts."""
        rows = self.query(
            f"SELECT {', '.join(CUE_COLUMNS)} FROM djmdCue WHERE ContentID = ? ORDER BY Kind",
            (str(track_id),),
        )
        return [dict(row) for row in rows]

    def get_next_id(self, table: str) -> int:
        """Next free integer ID of a table (MAX()+1, not atomic)."""
        if table not in ID_TABLES:
            raise ValueError(f"Unknown table for ID allocation: {table}")
        row = self.query_row(
            f"SELECT COALESCE(MAX(CAST(ID AS INTEGER)), 0) FROM {table}"
        )
        return int(row[0]) + 1

    def get_next_usn(self) -> int:
        """Bump and return the library's local update sequence number."""
        with self.transaction():
            self.execute(
                "UPDATE agentRegistry SET int_1 = int_1 + 1 "
                "WHERE registry_id = 'localUpdateCount'"
            )
            row = self.query_row(
                "SELECT int_1 FROM agentRegistry WHERE registry_id = 'localUpdateCount'"
            )
        if row is None:
            raise DatabaseError("agentRegistry has no localUpdateCount entry")
        return int(row[0])

    def add_or_get_artist(self, name: str, usn: int) -> Optional[str]:
        """ID of the artist with this name (case-insensitive), inserting it if new."""
        if not name:
            return None
        row = self.query_row(
            "SELECT ID FROM djmdArtist WHERE Name = ? COLLATE NOCASE", (name,)
        )
        if row is not None:
            return str(row["ID"])

        new_id = str(self.get_next_id("djmdArtist"))
        now = utc_timestamp()
        self.execute(
            """
            INSERT INTO djmdArtist (ID, Name, rb_local_usn, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (new_id, name, usn, now, now),
        )
        logger.info(f"Artist {name!r} inserted as {new_id}")
        return new_id

    def get_album_id(self, track_id: str) -> Optional[str]:
        row = self.query_row("SELECT AlbumID FROM djmdContent WHERE ID = ?", (track_id,))
        if row is None or row["AlbumID"] in (None, ""):
            return None
        return str(row["AlbumID"])

    def update_album_artist(self, album_id: str, artist_id: str, usn: int) -> None:
        self.execute(
            """
            UPDATE djmdAlbum
            SET AlbumArtistID = ?, rb_local_usn = ?, updated_at = ?
            WHERE ID = ?
            """,
            (artist_id, usn, utc_timestamp(), album_id),
        )
        logger.debug(f"Album {album_id} assigned to artist {artist_id}")
