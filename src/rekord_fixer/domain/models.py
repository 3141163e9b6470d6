"""
Library domain models.

Rows read from the djmdContent and djmdPlaylist tables.
"""

from dataclasses import dataclass
from typing import Optional

from ..core.nullable import NullInt64, NullString
from ..core.paths import file_type_for_extension, strip_extension


@dataclass(frozen=True)
class TrackItem:
    """A track row with the fields the batch operations read and copy.

    folder_path holds the database form of the file path (forward slashes).
    """

    id: str
    folder_path: str
    file_name: str
    stock_date: NullString = NullString()
    date_created: NullString = NullString()
    color_id: NullInt64 = NullInt64()
    dj_play_count: NullInt64 = NullInt64()

    @property
    def base_name(self) -> str:
        """File name without extension, used to match format variants."""
        return strip_extension(self.file_name)

    @property
    def file_type(self) -> int:
        return file_type_for_extension(self.file_name)

    @classmethod
    def from_row(cls, row) -> "TrackItem":
        """Build from a sqlite3.Row selected with the standard track columns."""
        return cls(
            id=str(row["ID"]),
            folder_path=row["FolderPath"] or "",
            file_name=row["FileNameL"] or "",
            stock_date=NullString.scan(row["StockDate"]),
            date_created=NullString.scan(row["DateCreated"]),
            color_id=NullInt64.scan(row["ColorID"]),
            dj_play_count=NullInt64.scan(row["DJPlayCount"]),
        )


@dataclass(frozen=True)
class PlaylistItem:
    """A playlist with its display path ("Parent > Child")."""

    id: str
    name: str
    parent_id: Optional[str]
    path: str

    @classmethod
    def from_row(cls, row) -> "PlaylistItem":
        parent = row["ParentID"]
        return cls(
            id=str(row["ID"]),
            name=row["Name"] or "",
            parent_id=None if parent in (None, "", "root") else str(parent),
            path=row["Path"] or "",
        )
