"""
FLAC fixer: pull tags from FLAC files on disk into the library database.

The library application ignores several Vorbis comments when it imports FLAC
files. This operation reads them with mutagen and writes them to the
matching rows:

    ALBUMARTIST -> djmdAlbum.AlbumArtistID (artist created if missing)
    ORIGARTIST  -> djmdContent.OrgArtistID (artist created if missing)
    RELEASEDATE -> djmdContent.ReleaseDate
    SUBTITLE    -> djmdContent.Subtitle

All writes of one run share a single update sequence number (USN) so the
library application picks the changes up as local edits.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger
from mutagen import File as MutagenFile
from mutagen import MutagenError

from ...context import OperationContext
from ...core.database import PREFIX_LIKE, DBManager, folder_prefix_pattern
from ...core.paths import list_files_with_extensions, normalize_path, to_db_path
from ..batch import BatchOperation, RowOutcome
from ..validator import FieldRule, check_source_files

TAG_FIELDS = ("ALBUMARTIST", "ORIGARTIST", "RELEASEDATE", "SUBTITLE")


@dataclass
class FlacFixerConfig:
    source_folder: str = ""
    recursive: bool = False


@dataclass
class FlacFixSummary:
    """Per-category counts of a FLAC fixer run."""

    total: int = 0
    updated: int = 0
    no_change: int = 0
    skipped_zero: int = 0
    metadata_errors: int = 0
    db_misses: int = 0
    fields: Dict[str, int] = field(default_factory=lambda: dict.fromkeys(TAG_FIELDS, 0))


def get_tag_value(audio_file, tag_names: List[str]) -> Optional[str]:
    """Get tag value, trying multiple possible tag names."""
    for tag_name in tag_names:
        try:
            value = audio_file.get(tag_name)
        except (KeyError, ValueError):
            # Vorbis comments raise ValueError for some invalid keys
            continue
        if value:
            if isinstance(value, list):
                return str(value[0]).strip()
            return str(value).strip()
    return None


def read_flac_tags(path: Path) -> Dict[str, str]:
    """Read the tags this operation cares about from a FLAC file.

    Returns:
        Mapping of TAG_FIELDS name to value, only for tags that are present

    Raises:
        MutagenError: If the file cannot be parsed
        ValueError: If mutagen does not recognize the file
    """
    audio = MutagenFile(path)
    if audio is None or audio.tags is None:
        raise ValueError(f"No readable tags in {path.name}")

    tags = {}
    for name in TAG_FIELDS:
        value = get_tag_value(audio.tags, [name, name.lower()])
        if value is not None:
            tags[name] = value
    return tags


def apply_flac_tags(
    db: DBManager, track_id: str, tags: Dict[str, str], usn: int
) -> List[str]:
    """Write tag values to the library rows of one track.

    Returns:
        Names of the tag fields that were written
    """
    written = []

    album_artist = tags.get("ALBUMARTIST")
    if album_artist:
        album_id = db.get_album_id(track_id)
        if album_id:
            artist_id = db.add_or_get_artist(album_artist, usn)
            db.update_album_artist(album_id, artist_id, usn)
            written.append("ALBUMARTIST")

    org_artist = tags.get("ORIGARTIST")
    if org_artist:
        artist_id = db.add_or_get_artist(org_artist, usn)
        db.execute(
            "UPDATE djmdContent SET OrgArtistID = ?, rb_local_usn = ? WHERE ID = ?",
            (artist_id, usn, track_id),
        )
        written.append("ORIGARTIST")

    assignments = []
    params: List[Any] = []
    for name, column in (("RELEASEDATE", "ReleaseDate"), ("SUBTITLE", "Subtitle")):
        if name in tags:
            assignments.append(f"{column} = ?")
            params.append(tags[name])
            written.append(name)
    if assignments:
        db.execute(
            f"UPDATE djmdContent SET {', '.join(assignments)}, rb_local_usn = ? WHERE ID = ?",
            (*params, usn, track_id),
        )

    return written


class FlacFixer(BatchOperation):
    """Import ALBUMARTIST, ORIGARTIST, RELEASEDATE and SUBTITLE from FLAC tags."""

    name = "FLAC fixer"

    def __init__(self, config: FlacFixerConfig):
        super().__init__()
        self.config = config
        self.tally = FlacFixSummary()
        self._track_ids: Dict[str, str] = {}
        self._usn: Optional[int] = None

    def field_rules(self):
        return (FieldRule("source_folder", "folder", checks=("exists",)),)

    def field_values(self) -> Dict[str, Any]:
        return {"source_folder": self.config.source_folder}

    def preflight(self, ctx: OperationContext) -> None:
        check_source_files(
            "source_folder",
            self.config.source_folder,
            [".flac"],
            recursive=self.config.recursive,
        )

    def enumerate_rows(self, ctx: OperationContext) -> List[Path]:
        files = list_files_with_extensions(
            Path(self.config.source_folder).expanduser(),
            [".flac"],
            recursive=self.config.recursive,
        )
        self.tally = FlacFixSummary(total=len(files))

        rows = ctx.db.query(
            f"SELECT ID, FolderPath FROM djmdContent WHERE FolderPath {PREFIX_LIKE}",
            (folder_prefix_pattern(self.config.source_folder),),
        )
        self._track_ids = {normalize_path(row["FolderPath"]): str(row["ID"]) for row in rows}
        self._usn = ctx.db.get_next_usn()
        logger.info(
            f"{self.name}: {len(files)} FLAC files, {len(rows)} database rows, USN {self._usn}"
        )
        return files

    def row_label(self, row: Path) -> str:
        return row.name

    def process_row(
        self, ctx: OperationContext, row: Path, index: int, total: int
    ) -> RowOutcome:
        if row.stat().st_size == 0:
            logger.warning(f"{self.name}: {row.name} is empty, skipped")
            self.tally.skipped_zero += 1
            return RowOutcome.SKIPPED

        try:
            tags = read_flac_tags(row)
        except (MutagenError, ValueError, OSError) as e:
            logger.warning(f"{self.name}: cannot read tags of {row.name}: {e}")
            self.tally.metadata_errors += 1
            return RowOutcome.SKIPPED

        track_id = self._track_ids.get(normalize_path(to_db_path(row)))
        if track_id is None:
            logger.warning(f"{self.name}: {row.name} is not in the library database")
            self.tally.db_misses += 1
            return RowOutcome.SKIPPED

        with ctx.db.transaction():
            written = apply_flac_tags(ctx.db, track_id, tags, self._usn)
        missing = [name for name in TAG_FIELDS if name not in written]
        logger.info(
            f"{self.name}: {row.name} (id {track_id}) updated: {', '.join(written) or '-'}; "
            f"not updated: {', '.join(missing) or '-'}"
        )
        if not written:
            self.tally.no_change += 1
            return RowOutcome.UNCHANGED

        for name in written:
            self.tally.fields[name] += 1
        self.tally.updated += 1
        return RowOutcome.UPDATED

    def empty_message(self) -> str:
        return "no FLAC files found"

    def finish(self, ctx: OperationContext, counters) -> None:
        s = self.tally
        if s.db_misses:
            self.warn(f"{s.db_misses} files are not in the library database")
        if s.metadata_errors:
            self.warn(f"{s.metadata_errors} files have unreadable tags")
        if s.skipped_zero:
            self.warn(f"{s.skipped_zero} files are empty")

    def completion_message(self, counters) -> str:
        s = self.tally
        return (
            f"{s.updated} of {s.total} files updated, {s.no_change} without changes, "
            f"{s.db_misses + s.metadata_errors + s.skipped_zero} skipped"
        )

    def result_details(self) -> Dict[str, Any]:
        return {"tally": self.tally}
