"""
rekord-fixer CLI - Entry point

Every batch command runs the operation on its worker thread and renders
progress with a rich progress bar. Ctrl-C asks the operation to stop after
the current row and still prints the partial summary.
"""

import argparse
import sys
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import List, Optional

from loguru import logger
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn

from rekord_fixer import __version__
from rekord_fixer.context import OperationContext
from rekord_fixer.core.config import Config, get_log_file_path, load_config
from rekord_fixer.core.console import get_console, print_table
from rekord_fixer.core.errors import RekordFixerError
from rekord_fixer.core.output import log, set_quiet, setup_loguru
from rekord_fixer.domain.batch import BatchOperation, BatchResult, BatchState

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

WAIT_INTERVAL = 0.2


class RichProgressReporter:
    """Progress sink drawing one rich progress bar per batch run."""

    def __init__(self, progress: Progress, description: str):
        self._progress = progress
        self._task = progress.add_task(description, total=1.0, status="")

    def report(self, fraction: float, status: str) -> None:
        self._progress.update(self._task, completed=fraction, status=status)

    def is_cancelled(self) -> bool:
        # Cancellation goes through the context token
        return False

    def on_complete(self, summary: str) -> None:
        self._progress.update(self._task, status="done")

    def on_error(self, error: Exception) -> None:
        self._progress.update(self._task, status="failed")


def _make_progress() -> Progress:
    return Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        TextColumn("{task.fields[status]}"),
        console=get_console(),
        transient=False,
    )


def _wait_for(ctx: OperationContext, future) -> BatchResult:
    """Wait for a batch future; Ctrl-C cancels and keeps waiting."""
    while True:
        try:
            return future.result(timeout=WAIT_INTERVAL)
        except FutureTimeout:
            continue
        except KeyboardInterrupt:
            if ctx.token.cancelled:
                raise
            log("Cancelling after the current row...", level="warning")
            ctx.token.cancel()


def print_result(result: BatchResult, config: Config) -> int:
    """Print the result of a batch run.

    Returns:
        Exit code (0 completed, 1 failed, 130 cancelled)
    """
    for warning in result.warnings:
        log(f"  ! {warning}", level="warning")

    if result.backup_path:
        log(f"Backup: {result.backup_path}")

    if result.state is BatchState.FAILED:
        log(result.summary(), level="error")
        log(f"See {get_log_file_path(config)} for details")
        return EXIT_FAILED
    if result.state is BatchState.CANCELLED:
        log(result.summary(), level="warning")
        return EXIT_CANCELLED

    log(result.summary(), level="success")
    return EXIT_OK


def run_operation(ctx: OperationContext, operation: BatchOperation) -> int:
    """Run one batch operation with a progress bar.

    Args:
        ctx: Operation context (database, config, token)
        operation: Configured batch operation

    Returns:
        Exit code
    """
    logger.info(f"CLI: starting {operation.name}")
    with _make_progress() as progress:
        run_ctx = ctx.with_reporter(RichProgressReporter(progress, operation.name))
        try:
            future = operation.start(run_ctx)
        except RekordFixerError as e:
            log(f"Error: {e}", level="error")
            return EXIT_FAILED
        try:
            result = _wait_for(run_ctx, future)
        finally:
            operation.shutdown()
    return print_result(result, ctx.config)


def run_playlists(ctx: OperationContext) -> int:
    """Print every playlist path of the library.

    Returns:
        Exit code
    """
    try:
        with ctx.db.session():
            playlists = ctx.db.get_playlists()
    except RekordFixerError as e:
        log(f"Error: {e}", level="error")
        return EXIT_FAILED

    if not playlists:
        log("No playlists found", level="warning")
        return EXIT_OK

    print_table(
        "Playlists",
        ["ID", "Path"],
        [(p.id, p.path) for p in playlists],
    )
    return EXIT_OK


def run_backup(ctx: OperationContext) -> int:
    """Make a manual backup of the library database.

    Returns:
        Exit code
    """
    if not ctx.db.get_database_path():
        log("Error: database path is not configured (use --db)", level="error")
        return EXIT_FAILED
    try:
        path = ctx.db.backup_database()
    except RekordFixerError as e:
        log(f"Error: {e}", level="error")
        return EXIT_FAILED
    log(f"Backup written to {path}", level="success")
    return EXIT_OK


def _absolute(folder: Optional[str]) -> str:
    if not folder:
        return ""
    return str(Path(folder).expanduser().resolve())


def _absolute_all(folders: Optional[List[str]]) -> List[str]:
    return [_absolute(f) for f in folders or []]


def build_operation(args: argparse.Namespace) -> BatchOperation:
    """Translate parsed arguments into a configured batch operation.

    Raises:
        ConfigurationError: If the options do not form a valid configuration
    """
    from rekord_fixer.domain.operations import (
        MODE_CUSTOM,
        MODE_STANDARD,
        SOURCE_FOLDER,
        SOURCE_PLAYLIST,
        DateSync,
        DateSyncConfig,
        FlacFixer,
        FlacFixerConfig,
        FormatConverter,
        FormatConverterConfig,
        FormatUpdater,
        FormatUpdaterConfig,
        HotCueSync,
        HotCueSyncConfig,
        MetadataSync,
        MetadataSyncConfig,
    )

    if args.subcommand == "date-sync":
        custom = bool(args.custom_date)
        return DateSync(
            DateSyncConfig(
                mode=MODE_CUSTOM if custom else MODE_STANDARD,
                custom_date=args.custom_date or "",
                custom_folders=_absolute_all(args.folder),
                exclude_enabled=bool(args.exclude),
                excluded_folders=_absolute_all(args.exclude),
            )
        )

    if args.subcommand == "hotcue-sync":
        return HotCueSync(
            HotCueSyncConfig(
                source_type=SOURCE_PLAYLIST if args.source_playlist else SOURCE_FOLDER,
                source_folder=_absolute(args.source_folder),
                source_playlist=args.source_playlist or "",
                target_type=SOURCE_PLAYLIST if args.target_playlist else SOURCE_FOLDER,
                target_folder=_absolute(args.target_folder),
                target_playlist=args.target_playlist or "",
            )
        )

    if args.subcommand == "metadata-sync":
        return MetadataSync(
            MetadataSyncConfig(source_folder=_absolute(args.folder), recursive=args.recursive)
        )

    if args.subcommand == "flac-fixer":
        return FlacFixer(
            FlacFixerConfig(source_folder=_absolute(args.folder), recursive=args.recursive)
        )

    if args.subcommand == "format-update":
        return FormatUpdater(
            FormatUpdaterConfig(playlist=args.playlist, folder=_absolute(args.folder))
        )

    if args.subcommand == "convert":
        return FormatConverter(
            FormatConverterConfig(
                source_folder=_absolute(args.source),
                target_folder=_absolute(args.target),
                target_format=args.format,
                source_format=args.source_format,
                make_target_folder=args.make_target_folder,
                rewrite_existing=args.rewrite,
                recursive=args.recursive,
            )
        )

    raise ValueError(f"Not a batch command: {args.subcommand}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rekord-fixer",
        description="rekord-fixer - bulk fixes for a DJ library database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Global options
    parser.add_argument("--config", type=Path, help="Configuration file (TOML)")
    parser.add_argument("--db", help="Library database file (overrides config)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log file level (overrides config)",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true",
        help="Do not echo messages on the console (the log file still gets them)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    subparsers.add_parser("playlists", help="List playlist paths")
    subparsers.add_parser("backup", help="Back up the library database")

    date_parser = subparsers.add_parser(
        "date-sync", help="Copy release dates into the date-added columns"
    )
    date_parser.add_argument(
        "--custom-date", help="Set this date (YYYY-MM-DD) instead of the release date"
    )
    date_parser.add_argument(
        "--folder", action="append", help="Folder to set the custom date on (repeatable)"
    )
    date_parser.add_argument(
        "--exclude", action="append", help="Folder to leave untouched (repeatable)"
    )

    cue_parser = subparsers.add_parser(
        "hotcue-sync", help="Copy hot cues to same-named tracks in other formats"
    )
    source = cue_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--source-folder")
    source.add_argument("--source-playlist")
    target = cue_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--target-folder")
    target.add_argument("--target-playlist")

    meta_parser = subparsers.add_parser(
        "metadata-sync", help="Copy MP3 metadata rows onto their FLAC twins"
    )
    meta_parser.add_argument("folder", help="Folder holding the MP3 files")
    meta_parser.add_argument(
        "--no-recursive", dest="recursive", action="store_false",
        help="Only the folder itself, not its subfolders",
    )

    flac_parser = subparsers.add_parser(
        "flac-fixer", help="Import FLAC tags the library ignores"
    )
    flac_parser.add_argument("folder", help="Folder holding the FLAC files")
    flac_parser.add_argument("--recursive", action="store_true", help="Include subfolders")

    update_parser = subparsers.add_parser(
        "format-update", help="Point playlist tracks at converted files"
    )
    update_parser.add_argument("--playlist", required=True, help='Playlist path, e.g. "A > B"')
    update_parser.add_argument("folder", help="Folder holding the converted files")

    convert_parser = subparsers.add_parser("convert", help="Convert audio files with ffmpeg")
    convert_parser.add_argument("source", help="Source folder")
    convert_parser.add_argument("target", help="Target folder")
    convert_parser.add_argument("--format", required=True, choices=["mp3", "flac", "wav"])
    convert_parser.add_argument(
        "--source-format", default="all",
        choices=["all", "mp3", "m4a", "flac", "wav", "aiff"],
        help="Only convert files of this format",
    )
    convert_parser.add_argument(
        "--make-target-folder", action="store_true",
        help="Create a folder named after the source inside the target",
    )
    convert_parser.add_argument("--rewrite", action="store_true", help="Overwrite existing files")
    convert_parser.add_argument(
        "--no-recursive", dest="recursive", action="store_false",
        help="Only the folder itself, not its subfolders",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the rekord-fixer command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.subcommand:
        parser.print_help()
        sys.exit(EXIT_OK)
    if args.subcommand == "date-sync" and args.folder and not args.custom_date:
        parser.error("date-sync: --folder only applies together with --custom-date")

    config = load_config(args.config)
    if args.log_level:
        config.logging.level = args.log_level
    setup_loguru(get_log_file_path(config), level=config.logging.level)
    set_quiet(args.quiet)

    ctx = OperationContext.create(config, db_path=args.db)

    if args.subcommand == "playlists":
        sys.exit(run_playlists(ctx))
    if args.subcommand == "backup":
        sys.exit(run_backup(ctx))

    try:
        operation = build_operation(args)
    except RekordFixerError as e:
        log(f"Error: {e}", level="error")
        sys.exit(EXIT_FAILED)

    sys.exit(run_operation(ctx, operation))


if __name__ == "__main__":
    main()
