"""
Metadata sync: copy album, artist, release date and subtitle from MP3 rows
to their FLAC twins in the same folder.
"""

import posixpath
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List

from loguru import logger

from ...context import OperationContext
from ...core.database import PREFIX_LIKE, folder_prefix_pattern
from ...core.paths import strip_extension, to_db_path
from ..batch import BatchOperation, RowOutcome, format_name_list
from ..validator import FieldRule, check_source_files


@dataclass
class MetadataSyncConfig:
    source_folder: str = ""
    recursive: bool = True


class MetadataSync(BatchOperation):
    """Copy MP3 metadata columns onto the matching FLAC rows."""

    name = "Metadata sync"

    def __init__(self, config: MetadataSyncConfig):
        super().__init__()
        self.config = config
        self._missing: List[str] = []

    def field_rules(self):
        return (FieldRule("source_folder", "folder", checks=("exists",)),)

    def field_values(self) -> Dict[str, Any]:
        return {"source_folder": self.config.source_folder}

    def preflight(self, ctx: OperationContext) -> None:
        check_source_files(
            "source_folder",
            self.config.source_folder,
            [".mp3"],
            recursive=self.config.recursive,
        )

    def enumerate_rows(self, ctx: OperationContext) -> List[sqlite3.Row]:
        sql = f"""
            SELECT ID, FolderPath, FileNameL, AlbumID, ArtistID, OrgArtistID,
                   ReleaseDate, Subtitle
            FROM djmdContent
            WHERE FolderPath {PREFIX_LIKE}
              AND lower(FileNameL) LIKE '%.mp3'
        """
        params: List[Any] = [folder_prefix_pattern(self.config.source_folder)]
        if not self.config.recursive:
            sql += f" AND FolderPath NOT {PREFIX_LIKE}"
            params.append(folder_prefix_pattern(self.config.source_folder) + "/%")
        sql += " ORDER BY FileNameL"
        self._missing = []
        return ctx.db.query(sql, params)

    def row_label(self, row: sqlite3.Row) -> str:
        return row["FileNameL"]

    def process_row(
        self, ctx: OperationContext, row: sqlite3.Row, index: int, total: int
    ) -> RowOutcome:
        flac_name = strip_extension(row["FileNameL"]) + ".flac"
        folder = posixpath.dirname(to_db_path(row["FolderPath"] or ""))
        changed = ctx.db.execute(
            """
            UPDATE djmdContent
            SET AlbumID = CAST(? AS INTEGER),
                ArtistID = CAST(? AS INTEGER),
                OrgArtistID = CAST(? AS INTEGER),
                ReleaseDate = ?,
                Subtitle = ?
            WHERE FileNameL = ? AND FolderPath = ?
            """,
            (
                row["AlbumID"],
                row["ArtistID"],
                row["OrgArtistID"],
                row["ReleaseDate"],
                row["Subtitle"],
                flac_name,
                posixpath.join(folder, flac_name),
            ),
        )
        if not changed:
            self._missing.append(row["FileNameL"])
            logger.debug(f"{self.name}: no FLAC entry for {row['FileNameL']}")
            return RowOutcome.SKIPPED
        return RowOutcome.UPDATED

    def progress_for(self, index: int, total: int) -> float:
        return 0.3 + (index + 1) / total * 0.7

    def empty_message(self) -> str:
        return "no MP3 entries found in the database for this folder"

    def finish(self, ctx: OperationContext, counters) -> None:
        if self._missing:
            self.warn(f"No FLAC entry for: {format_name_list(self._missing)}")
        self._missing = []
