"""
Format updater: repoint playlist tracks to converted files.

After a folder of tracks has been converted (e.g. MP3 to FLAC), the library
still points at the old files. For every track of the chosen playlist this
operation looks for a file with the same base name in the new folder and
rewrites FolderPath, FileNameL and FileType in place, so cues, play counts
and playlist membership stay attached to the same row.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from ...context import OperationContext
from ...core.paths import (
    FILE_TYPES,
    file_type_for_extension,
    list_files_with_extensions,
    to_db_path,
)
from ..batch import BatchOperation, RowOutcome, format_name_list
from ..matching import find_file_by_base_name
from ..models import PlaylistItem, TrackItem
from ..validator import FieldRule

# Progress milestones before rows are processed
STAGE_PLAYLIST_LOADED = 0.3
STAGE_FILES_LISTED = 0.4


@dataclass
class FormatUpdaterConfig:
    playlist: str = ""  # Playlist path, e.g. "Replace Me"
    folder: str = ""  # Folder holding the new files


class FormatUpdater(BatchOperation):
    """Point playlist tracks at same-named files in another folder and format."""

    name = "Format updater"

    def __init__(self, config: FormatUpdaterConfig):
        super().__init__()
        self.config = config
        self._files: List[Path] = []
        self._mismatched: List[str] = []
        self._playlist: Optional[PlaylistItem] = None

    def field_rules(self):
        return (
            FieldRule("playlist", "playlist", checks=("filled",)),
            FieldRule("folder", "folder", checks=("exists",)),
        )

    def field_values(self) -> Dict[str, Any]:
        return {"playlist": self.config.playlist, "folder": self.config.folder}

    def preflight(self, ctx: OperationContext) -> None:
        # An unknown playlist fails here, before the backup
        with ctx.db.session():
            self._playlist = ctx.db.get_playlist_by_path(self.config.playlist)

    def enumerate_rows(self, ctx: OperationContext) -> List[TrackItem]:
        playlist = self._playlist
        tracks = ctx.db.get_tracks_based_on_playlist(playlist.id)
        ctx.reporter.report(STAGE_PLAYLIST_LOADED, f"{len(tracks)} tracks in {playlist.path}")

        self._files = list_files_with_extensions(
            Path(self.config.folder).expanduser(), FILE_TYPES.keys()
        )
        self._mismatched = []
        ctx.reporter.report(STAGE_FILES_LISTED, f"{len(self._files)} files in folder")
        logger.info(
            f"{self.name}: {len(tracks)} tracks in {playlist.path!r}, "
            f"{len(self._files)} candidate files"
        )
        return tracks

    def process_row(
        self, ctx: OperationContext, row: TrackItem, index: int, total: int
    ) -> RowOutcome:
        match = find_file_by_base_name(self.config.folder, row.base_name, self._files)
        if match is None:
            self._mismatched.append(row.file_name)
            return RowOutcome.SKIPPED

        file_type = file_type_for_extension(match.suffix)
        new_path = to_db_path(match)
        if new_path == row.folder_path and match.name == row.file_name:
            return RowOutcome.UNCHANGED

        ctx.db.execute(
            "UPDATE djmdContent SET FolderPath = ?, FileNameL = ?, FileType = ? WHERE ID = ?",
            (new_path, match.name, file_type, row.id),
        )
        logger.debug(f"{self.name}: {row.file_name} -> {new_path} (type {file_type})")
        return RowOutcome.UPDATED

    def progress_for(self, index: int, total: int) -> float:
        return STAGE_FILES_LISTED + (index + 1) / total * (1.0 - STAGE_FILES_LISTED)

    def empty_message(self) -> str:
        return "the playlist is empty"

    def finish(self, ctx: OperationContext, counters) -> None:
        if self._mismatched:
            self.warn(
                f"{len(self._mismatched)} tracks have no matching file: "
                f"{format_name_list(self._mismatched)}"
            )

    def result_details(self) -> Dict[str, Any]:
        return {"mismatched": list(self._mismatched)}
