"""
Date sync: rewrite the "date added" and "date created" columns.

Two modes:
- standard: StockDate and DateCreated take the track's own ReleaseDate,
  optionally skipping tracks below excluded folders.
- custom: StockDate and DateCreated take one user-supplied date, for tracks
  below up to six selected folders.

Both modes are a single UPDATE. The matching rows are counted first so the
user sees how many records will change before the statement runs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from ...context import OperationContext
from ...core.database import PREFIX_LIKE, folder_prefix_pattern
from ...core.errors import ConfigurationError
from ..batch import BatchCounters, BatchOperation
from ..progress import MonotonicProgress
from ..validator import FieldRule, parse_date

MODE_STANDARD = "standard"
MODE_CUSTOM = "custom"
MAX_CUSTOM_FOLDERS = 6


@dataclass
class DateSyncConfig:
    """Settings of one date-sync run."""

    mode: str = MODE_STANDARD
    custom_date: str = ""  # YYYY-MM-DD, custom mode only
    custom_folders: List[str] = field(default_factory=list)
    exclude_enabled: bool = False
    excluded_folders: List[str] = field(default_factory=list)

    def validate(self) -> None:
        if self.mode not in (MODE_STANDARD, MODE_CUSTOM):
            raise ConfigurationError(f"Unknown date sync mode: {self.mode}")
        if len(self.custom_folders) > MAX_CUSTOM_FOLDERS:
            raise ConfigurationError(
                f"At most {MAX_CUSTOM_FOLDERS} folders can get a custom date"
            )


def build_predicate(config: DateSyncConfig) -> Tuple[str, List[Any]]:
    """WHERE clause and parameters selecting the rows a run will change."""
    if config.mode == MODE_CUSTOM:
        clauses = [f"FolderPath {PREFIX_LIKE}" for _ in config.custom_folders]
        params = [folder_prefix_pattern(f) for f in config.custom_folders]
        return f"WHERE ({' OR '.join(clauses)})", params

    where = "WHERE ReleaseDate IS NOT NULL"
    params: List[Any] = []
    if config.exclude_enabled:
        for folder in config.excluded_folders:
            where += f" AND FolderPath NOT {PREFIX_LIKE}"
            params.append(folder_prefix_pattern(folder))
    return where, params


class DateSync(BatchOperation):
    """Copy release dates (or a fixed date) into the date-added columns."""

    name = "Date sync"

    def __init__(self, config: DateSyncConfig):
        super().__init__()
        config.validate()
        self.config = config
        self._where: Optional[str] = None
        self._params: List[Any] = []

    def field_rules(self):
        return (
            FieldRule("mode", "select"),
            FieldRule(
                "custom_date",
                "date",
                depends_on="mode",
                active_when=MODE_CUSTOM,
                checks=("valid_date",),
            ),
            FieldRule(
                "custom_folders",
                "folder",
                depends_on="mode",
                active_when=MODE_CUSTOM,
                checks=("exists",),
            ),
            FieldRule(
                "excluded_folders",
                "folder",
                required=False,
                depends_on="exclude_enabled",
                active_when="true",
                checks=("exists",),
            ),
        )

    def field_values(self) -> Dict[str, Any]:
        return {
            "mode": self.config.mode,
            "custom_date": self.config.custom_date,
            "custom_folders": self.config.custom_folders,
            "exclude_enabled": self.config.exclude_enabled,
            "excluded_folders": self.config.excluded_folders,
        }

    def enumerate_rows(self, ctx: OperationContext) -> List[Any]:
        self._where, self._params = build_predicate(self.config)
        row = ctx.db.query_row(
            f"SELECT COUNT(*) FROM djmdContent {self._where}", self._params
        )
        count = int(row[0])
        # Rows are updated in one statement; the count stands in for the row set
        return [count] if count else []

    def empty_message(self) -> str:
        return "no records to change"

    def process(
        self,
        ctx: OperationContext,
        rows: List[Any],
        counters: BatchCounters,
        progress: MonotonicProgress,
    ) -> None:
        count = rows[0]
        counters.total = count
        progress.report(0.3, f"{count} records will be changed")
        logger.info(f"{self.name}: {count} records will be changed ({self.config.mode} mode)")

        if ctx.is_cancelled():
            counters.cancelled = True
            return

        if self.config.mode == MODE_CUSTOM:
            date = parse_date(self.config.custom_date).strftime("%Y-%m-%d")
            changed = ctx.db.execute(
                f"UPDATE djmdContent SET StockDate = ?, DateCreated = ? {self._where}",
                [date, date, *self._params],
            )
        else:
            changed = ctx.db.execute(
                "UPDATE djmdContent SET StockDate = ReleaseDate, DateCreated = ReleaseDate "
                f"{self._where}",
                self._params,
            )
        progress.report(0.9, f"{changed} records updated")

        counters.processed = changed
        counters.updated = changed

    def completion_message(self, counters: BatchCounters) -> str:
        return f"{counters.updated} records updated"

