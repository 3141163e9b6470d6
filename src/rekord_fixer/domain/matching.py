"""
Base-name matching between format variants of the same track.

"Song A.mp3" in one folder and "Song A.flac" in another are the same song.
Comparison is exact and case-sensitive on the file name with its last
extension removed.
"""

from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from ..core.paths import (
    FILE_TYPES,
    file_type_for_extension,
    list_files_with_extensions,
    strip_extension,
)
from .models import TrackItem

# Tie-break when one base name exists in several formats
FORMAT_PRIORITY = (".flac", ".aiff", ".wav", ".m4a", ".mp3")


def same_track(name_a: str, name_b: str) -> bool:
    """True if two file names differ at most in their extension."""
    return strip_extension(name_a) == strip_extension(name_b)


def index_by_base_name(tracks: Iterable[TrackItem]) -> Dict[str, List[TrackItem]]:
    """Group tracks by base name, keeping query order within each group."""
    index: Dict[str, List[TrackItem]] = defaultdict(list)
    for track in tracks:
        index[track.base_name].append(track)
    return dict(index)


def match_targets(
    source: TrackItem, candidates: Dict[str, List[TrackItem]]
) -> List[TrackItem]:
    """Tracks in the candidate index that are variants of the source.

    The source row itself is never its own target.
    """
    return [t for t in candidates.get(source.base_name, []) if t.id != source.id]


def _priority(path: Path) -> tuple:
    ext = path.suffix.lower()
    rank = FORMAT_PRIORITY.index(ext) if ext in FORMAT_PRIORITY else len(FORMAT_PRIORITY)
    return (rank, path.name)


def find_file_by_base_name(
    folder: str | Path,
    base_name: str,
    files: Optional[Sequence[Path]] = None,
) -> Optional[Path]:
    """Find the file in a folder that is a variant of base_name.

    Only files with a recognized FileType qualify. When several formats
    exist, FORMAT_PRIORITY decides, then the file name.

    Args:
        folder: Folder to look in (non-recursive)
        base_name: File name without extension
        files: Pre-listed folder contents (avoids rescanning per track)

    Returns:
        Matching file path, or None
    """
    if files is None:
        files = list_files_with_extensions(folder, FILE_TYPES.keys())
    matches = [
        f
        for f in files
        if strip_extension(f.name) == base_name and file_type_for_extension(f.suffix)
    ]
    if not matches:
        return None
    return min(matches, key=_priority)
