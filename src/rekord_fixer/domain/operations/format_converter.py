"""
Format converter: batch-transcode a folder of audio files.

Works on files only; the library database is not opened. Pair it with the
format updater to repoint library tracks at the converted files.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from ...context import OperationContext
from ...core.errors import ConfigurationError, TranscodeCancelled, TranscodeError
from ...core.paths import FILE_TYPES, list_files_with_extensions
from ..batch import BatchCounters, BatchOperation, RowOutcome, format_name_list
from ..transcoder import CODECS, FfmpegTranscoder, Transcoder
from ..validator import FieldRule, check_source_files

SOURCE_ALL = "all"


@dataclass
class FormatConverterConfig:
    source_folder: str = ""
    target_folder: str = ""
    target_format: str = "mp3"  # mp3, flac or wav
    source_format: str = SOURCE_ALL  # Restrict sources to one extension
    make_target_folder: bool = False  # Create <target>/<source folder name>
    rewrite_existing: bool = False
    recursive: bool = True

    def validate(self) -> None:
        if self.target_format.lower() not in CODECS:
            raise ConfigurationError(f"Unsupported target format: {self.target_format}")
        if self.source_format != SOURCE_ALL and f".{self.source_format.lower()}" not in FILE_TYPES:
            raise ConfigurationError(f"Unsupported source format: {self.source_format}")

    @property
    def source_extensions(self) -> List[str]:
        if self.source_format == SOURCE_ALL:
            return list(FILE_TYPES)
        return [f".{self.source_format.lower()}"]


@dataclass
class ConversionTally:
    converted: int = 0
    existing: int = 0
    failed: List[str] = field(default_factory=list)


class FormatConverter(BatchOperation):
    """Convert every audio file below a folder to one target format."""

    name = "Format converter"
    mutating = False
    needs_database = False

    def __init__(self, config: FormatConverterConfig, transcoder: Optional[Transcoder] = None):
        super().__init__()
        config.validate()
        self.config = config
        self.transcoder = transcoder
        self.tally = ConversionTally()
        self._source_root = Path(config.source_folder).expanduser()
        self._target_root = Path(config.target_folder).expanduser()

    def field_rules(self):
        return (
            FieldRule("source_folder", "folder", checks=("exists",)),
            FieldRule("target_folder", "folder", checks=("exists", "write")),
            FieldRule("target_format", "select"),
        )

    def field_values(self) -> Dict[str, Any]:
        return {
            "source_folder": self.config.source_folder,
            "target_folder": self.config.target_folder,
            "target_format": self.config.target_format,
        }

    def preflight(self, ctx: OperationContext) -> None:
        check_source_files(
            "source_folder",
            self.config.source_folder,
            self.config.source_extensions,
            recursive=self.config.recursive,
        )
        if self.transcoder is None:
            self.transcoder = FfmpegTranscoder(ctx.config.converter.ffmpeg_path)

    def enumerate_rows(self, ctx: OperationContext) -> List[Path]:
        self.tally = ConversionTally()
        if self.config.make_target_folder:
            self._target_root = (
                Path(self.config.target_folder).expanduser() / self._source_root.name
            )
            self._target_root.mkdir(parents=True, exist_ok=True)
            logger.info(f"{self.name}: writing into {self._target_root}")
        return list_files_with_extensions(
            self._source_root, self.config.source_extensions, recursive=self.config.recursive
        )

    def target_for(self, source: Path) -> Path:
        """Output path mirroring the source's position below the source folder."""
        relative = source.relative_to(self._source_root)
        return (self._target_root / relative).with_suffix(f".{self.config.target_format.lower()}")

    def row_label(self, row: Path) -> str:
        return row.name

    def process_row(
        self, ctx: OperationContext, row: Path, index: int, total: int
    ) -> RowOutcome:
        target = self.target_for(row)
        if target.exists() and not self.config.rewrite_existing:
            logger.info(f"{self.name}: {target.name} exists, skipping")
            self.tally.existing += 1
            return RowOutcome.SKIPPED

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            self.transcoder.convert(row, target, self.config.target_format, ctx.is_cancelled)
        except TranscodeCancelled:
            # Cancellation is picked up before the next row
            logger.info(f"{self.name}: {row.name} interrupted")
            return RowOutcome.SKIPPED
        except (TranscodeError, OSError) as e:
            logger.warning(f"{self.name}: {e}")
            self.tally.failed.append(row.name)
            return RowOutcome.SKIPPED

        self.tally.converted += 1
        return RowOutcome.UPDATED

    def process(self, ctx, rows, counters, progress) -> None:
        super().process(ctx, rows, counters, progress)
        # A cancel during the last conversion leaves no row to observe it
        if ctx.is_cancelled():
            counters.cancelled = True

    def status_for(self, row: Path, index: int, total: int) -> str:
        return f"Converting {index + 1}/{total}: {row.name}"

    def empty_message(self) -> str:
        return "no audio files found"

    def finish(self, ctx: OperationContext, counters: BatchCounters) -> None:
        if self.tally.failed:
            self.warn(
                f"{len(self.tally.failed)} files failed: {format_name_list(self.tally.failed)}"
            )

    def completion_message(self, counters: BatchCounters) -> str:
        return (
            f"{self.tally.converted} converted, {self.tally.existing} already present, "
            f"{len(self.tally.failed)} failed"
        )

    def result_details(self) -> Dict[str, Any]:
        return {"tally": self.tally}
