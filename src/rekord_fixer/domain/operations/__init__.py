"""Batch operations on the DJ library database and its audio files."""

from .date_sync import DateSync, DateSyncConfig, MODE_CUSTOM, MODE_STANDARD
from .flac_fixer import FlacFixer, FlacFixerConfig
from .format_converter import FormatConverter, FormatConverterConfig
from .format_updater import FormatUpdater, FormatUpdaterConfig
from .hotcue_sync import HotCueSync, HotCueSyncConfig, SOURCE_FOLDER, SOURCE_PLAYLIST
from .metadata_sync import MetadataSync, MetadataSyncConfig

__all__ = [
    "DateSync",
    "DateSyncConfig",
    "MODE_CUSTOM",
    "MODE_STANDARD",
    "FlacFixer",
    "FlacFixerConfig",
    "FormatConverter",
    "FormatConverterConfig",
    "FormatUpdater",
    "FormatUpdaterConfig",
    "HotCueSync",
    "HotCueSyncConfig",
    "SOURCE_FOLDER",
    "SOURCE_PLAYLIST",
    "MetadataSync",
    "MetadataSyncConfig",
]
