"""
Hot cue sync: copy cue points and play data between format variants.

Source and target track sets are each a folder or a playlist. Every source
track is matched to the target tracks that share its base name; for each
match the source's cues replace the target's cues of the same Kind, and
StockDate, DateCreated, ColorID and DJPlayCount are copied over.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from loguru import logger

from ...context import OperationContext
from ...core.database import DBManager, utc_timestamp
from ...core.errors import ConfigurationError
from ..batch import BatchOperation, RowOutcome, format_name_list
from ..matching import index_by_base_name, match_targets
from ..models import PlaylistItem, TrackItem
from ..validator import FieldRule

SOURCE_FOLDER = "folder"
SOURCE_PLAYLIST = "playlist"

# Columns of an inserted cue row
_CUE_INSERT_COLUMNS = (
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
    "created_at",
    "updated_at",
)


@dataclass
class HotCueSyncConfig:
    """Where to copy from and where to copy to."""

    source_type: str = SOURCE_FOLDER
    source_folder: str = ""
    source_playlist: str = ""  # Playlist path, e.g. "House > 2024"
    target_type: str = SOURCE_FOLDER
    target_folder: str = ""
    target_playlist: str = ""

    def validate(self) -> None:
        for label, value in (("source", self.source_type), ("target", self.target_type)):
            if value not in (SOURCE_FOLDER, SOURCE_PLAYLIST):
                raise ConfigurationError(f"Unknown {label} type: {value}")


def resolve_playlist(db: DBManager, kind: str, playlist: str) -> Optional[PlaylistItem]:
    """The playlist a track set is read from, None for a folder set.

    Raises:
        ConfigurationError: If the playlist does not exist
    """
    if kind == SOURCE_PLAYLIST:
        return db.get_playlist_by_path(playlist)
    return None


def load_track_set(
    db: DBManager, kind: str, folder: str, playlist: Optional[PlaylistItem]
) -> List[TrackItem]:
    if kind == SOURCE_PLAYLIST:
        return db.get_tracks_based_on_playlist(playlist.id)
    return db.get_tracks_based_on_folder(folder)


def copy_hot_cues(db: DBManager, source_id: str, target_id: str) -> int:
    """Replace the target's cues with the source's, one Kind at a time.

    Returns:
        Number of cues inserted
    """
    cues = db.get_track_hot_cues(source_id)
    placeholders = ", ".join("?" for _ in _CUE_INSERT_COLUMNS)
    insert_sql = (
        f"INSERT INTO djmdCue ({', '.join(_CUE_INSERT_COLUMNS)}) VALUES ({placeholders})"
    )

    for cue in cues:
        db.execute(
            "DELETE FROM djmdCue WHERE ContentID = ? AND Kind = ?",
            (target_id, cue["Kind"]),
        )
        now = utc_timestamp()
        row = dict(cue)
        # MAX()+1 under the single-writer assumption
        row["ID"] = str(db.get_next_id("djmdCue"))
        row["ContentID"] = target_id
        row["created_at"] = now
        row["updated_at"] = now
        db.execute(insert_sql, [row.get(col) for col in _CUE_INSERT_COLUMNS])

    return len(cues)


def copy_track_metadata(db: DBManager, source: TrackItem, target_id: str) -> None:
    db.execute(
        """
        UPDATE djmdContent
        SET StockDate = ?, DateCreated = ?, ColorID = ?, DJPlayCount = ?, updated_at = ?
        WHERE ID = ?
        """,
        (
            source.stock_date.value_or_none(),
            source.date_created.value_or_none(),
            source.color_id.value_or_none(),
            source.dj_play_count.value_or_none(),
            utc_timestamp(),
            target_id,
        ),
    )


class HotCueSync(BatchOperation):
    """Copy hot cues and play data from one track set to another."""

    name = "Hot cue sync"

    def __init__(self, config: HotCueSyncConfig):
        super().__init__()
        config.validate()
        self.config = config
        self._targets: Dict[str, List[TrackItem]] = {}
        self._unmatched: List[str] = []
        self._source_playlist: Optional[PlaylistItem] = None
        self._target_playlist: Optional[PlaylistItem] = None
        self.cues_copied = 0

    def field_rules(self):
        return (
            FieldRule("source_type", "select"),
            FieldRule(
                "source_folder",
                "folder",
                depends_on="source_type",
                active_when=SOURCE_FOLDER,
                checks=("exists",),
            ),
            FieldRule(
                "source_playlist",
                "playlist",
                depends_on="source_type",
                active_when=SOURCE_PLAYLIST,
                checks=("filled",),
            ),
            FieldRule("target_type", "select"),
            FieldRule(
                "target_folder",
                "folder",
                depends_on="target_type",
                active_when=SOURCE_FOLDER,
                checks=("exists",),
            ),
            FieldRule(
                "target_playlist",
                "playlist",
                depends_on="target_type",
                active_when=SOURCE_PLAYLIST,
                checks=("filled",),
            ),
        )

    def field_values(self) -> Dict[str, Any]:
        return vars(self.config).copy()

    def preflight(self, ctx: OperationContext) -> None:
        # Unknown playlists fail here, before the backup
        cfg = self.config
        with ctx.db.session():
            self._source_playlist = resolve_playlist(ctx.db, cfg.source_type, cfg.source_playlist)
            self._target_playlist = resolve_playlist(ctx.db, cfg.target_type, cfg.target_playlist)

    def enumerate_rows(self, ctx: OperationContext) -> List[TrackItem]:
        cfg = self.config
        sources = load_track_set(
            ctx.db, cfg.source_type, cfg.source_folder, self._source_playlist
        )
        targets = load_track_set(
            ctx.db, cfg.target_type, cfg.target_folder, self._target_playlist
        )
        self._targets = index_by_base_name(targets)
        self._unmatched = []
        self.cues_copied = 0
        logger.info(f"{self.name}: {len(sources)} source tracks, {len(targets)} target tracks")
        return sources

    def process_row(
        self, ctx: OperationContext, row: TrackItem, index: int, total: int
    ) -> RowOutcome:
        targets = match_targets(row, self._targets)
        if not targets:
            self._unmatched.append(row.file_name)
            logger.debug(f"{self.name}: no target for {row.file_name}")
            return RowOutcome.SKIPPED

        for target in targets:
            with ctx.db.transaction():
                self.cues_copied += copy_hot_cues(ctx.db, row.id, target.id)
                copy_track_metadata(ctx.db, row, target.id)
            logger.debug(f"{self.name}: {row.file_name} -> {target.file_name} ({target.id})")
        return RowOutcome.UPDATED

    def progress_for(self, index: int, total: int) -> float:
        return 0.2 + (index + 1) / total * 0.8

    def finish(self, ctx: OperationContext, counters) -> None:
        if self._unmatched:
            self.warn(f"No target track for: {format_name_list(self._unmatched)}")

    def completion_message(self, counters) -> str:
        return (
            f"{counters.updated} tracks processed, {counters.skipped} skipped, "
            f"{self.cues_copied} cues copied"
        )

    def result_details(self) -> Dict[str, Any]:
        return {"cues_copied": self.cues_copied, "unmatched": list(self._unmatched)}
