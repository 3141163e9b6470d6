"""
The batch pattern shared by every operation.

    validate -> backup -> connect -> enumerate -> process rows -> finalize

Subclasses supply the candidate rows and the per-row mutation; BatchOperation
owns the control flow: the backup always precedes the first write, rows are
processed one at a time with a cancellation check before each, progress is
reported after each, and the connection is released on every exit path.
"""

import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..context import OperationContext
from ..core.errors import OperationBusyError, RekordFixerError, RowMutationError
from .progress import MonotonicProgress
from .validator import FieldRule, Validator

WARNING_DISPLAY_LIMIT = 5


class BatchState(Enum):
    """Lifecycle of one batch run."""

    IDLE = "idle"
    VALIDATING = "validating"
    BACKING_UP = "backing_up"
    CONNECTED = "connected"
    ENUMERATING = "enumerating"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RowOutcome(Enum):
    """What happened to one candidate row."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


@dataclass
class BatchCounters:
    """Running tallies while rows are processed."""

    total: int = 0
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    cancelled: bool = False

    def count(self, outcome: RowOutcome) -> None:
        self.processed += 1
        if outcome is RowOutcome.UPDATED:
            self.updated += 1
        elif outcome is RowOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.unchanged += 1


@dataclass(frozen=True)
class BatchResult:
    """Terminal result of a batch run."""

    operation: str
    state: BatchState
    total: int = 0
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    warnings: Tuple[str, ...] = ()
    error: Optional[Exception] = None
    backup_path: Optional[Path] = None
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state is BatchState.COMPLETED

    def summary(self) -> str:
        if self.state is BatchState.FAILED:
            return f"{self.operation} failed: {self.error}"
        if self.state is BatchState.CANCELLED:
            return (
                f"{self.operation} cancelled after {self.processed}/{self.total} rows "
                f"({self.updated} updated)"
            )
        if self.message:
            return f"{self.operation}: {self.message}"
        parts = [f"{self.updated} updated"]
        if self.unchanged:
            parts.append(f"{self.unchanged} unchanged")
        if self.skipped:
            parts.append(f"{self.skipped} skipped")
        return f"{self.operation} completed: {', '.join(parts)} of {self.total}"


def format_name_list(names: Sequence[str], limit: int = WARNING_DISPLAY_LIMIT) -> str:
    """First `limit` names, plus an "and N more" tail."""
    shown = ", ".join(names[:limit])
    extra = len(names) - limit
    if extra > 0:
        return f"{shown} and {extra} more"
    return shown


class BatchOperation(ABC):
    """Base class of the batch operations.

    Class attributes:
        name: Operation label used in messages and logs
        mutating: Writes to the database (a backup is taken first)
        needs_database: Opens the database at all
    """

    name = "batch"
    mutating = True
    needs_database = True

    def __init__(self):
        self.state = BatchState.IDLE
        self.warnings: List[str] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._future: Optional[Future] = None
        self._start_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    def field_rules(self) -> Sequence[FieldRule]:
        return ()

    def field_values(self) -> Dict[str, Any]:
        return {}

    def preflight(self, ctx: OperationContext) -> None:
        """Extra checks after field validation (e.g. source files present)."""

    @abstractmethod
    def enumerate_rows(self, ctx: OperationContext) -> List[Any]:
        """Candidate rows; called with the connection open."""

    def process_row(
        self, ctx: OperationContext, row: Any, index: int, total: int
    ) -> RowOutcome:
        raise NotImplementedError

    def process(
        self,
        ctx: OperationContext,
        rows: List[Any],
        counters: BatchCounters,
        progress: MonotonicProgress,
    ) -> None:
        """Process rows one by one. Set-based operations override this."""
        total = len(rows)
        for index, row in enumerate(rows):
            if ctx.is_cancelled():
                counters.cancelled = True
                return

            try:
                outcome = self.process_row(ctx, row, index, total)
            except (RekordFixerError, sqlite3.Error) as e:
                raise RowMutationError(self.row_label(row), index, str(e)) from e

            counters.count(outcome)
            progress.report(
                self.progress_for(index, total), self.status_for(row, index, total)
            )

            if ctx.row_delay and index + 1 < total:
                time.sleep(ctx.row_delay)

    def row_label(self, row: Any) -> str:
        return getattr(row, "file_name", None) or str(row)

    def progress_for(self, index: int, total: int) -> float:
        return (index + 1) / total

    def status_for(self, row: Any, index: int, total: int) -> str:
        return f"Processing {index + 1}/{total}: {self.row_label(row)}"

    def empty_message(self) -> str:
        return "no matching entries found"

    def finish(self, ctx: OperationContext, counters: BatchCounters) -> None:
        """Called after processing, also when cancelled (e.g. to warn about misses)."""

    def completion_message(self, counters: BatchCounters) -> str:
        """Override to replace the default count summary."""
        return ""

    def result_details(self) -> Dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def warn(self, message: str) -> None:
        logger.warning(f"{self.name}: {message}")
        self.warnings.append(message)

    def _set_state(self, state: BatchState) -> None:
        logger.debug(f"{self.name}: {self.state.value} -> {state.value}")
        self.state = state

    def _result(self, state: BatchState, counters: BatchCounters, **kwargs) -> BatchResult:
        return BatchResult(
            operation=self.name,
            state=state,
            total=counters.total,
            processed=counters.processed,
            updated=counters.updated,
            unchanged=counters.unchanged,
            skipped=counters.skipped,
            warnings=tuple(self.warnings),
            details=self.result_details(),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Control flow
    # ------------------------------------------------------------------

    def run(self, ctx: OperationContext) -> BatchResult:
        """Run the whole batch on the calling thread.

        Returns:
            BatchResult in state COMPLETED, CANCELLED or FAILED
        """
        try:
            ctx.db.claim(self.name)
        except OperationBusyError as e:
            ctx.reporter.on_error(e)
            return self._result(BatchState.FAILED, BatchCounters(), error=e)
        try:
            return self._run_claimed(ctx)
        finally:
            ctx.db.release(self.name)

    def _run_claimed(self, ctx: OperationContext) -> BatchResult:
        progress = MonotonicProgress(ctx.reporter)
        counters = BatchCounters()
        backup_path = None
        self.warnings = []

        try:
            self._set_state(BatchState.VALIDATING)
            Validator(ctx.db, self.field_rules()).validate(
                self.name,
                self.field_values(),
                mutating=self.mutating,
                needs_database=self.needs_database,
            )
            self.preflight(ctx)

            if self.mutating:
                self._set_state(BatchState.BACKING_UP)
                progress.report(0.0, "Backing up database")
                backup_path = ctx.db.backup_database()

            if self.needs_database:
                ctx.db.connect()
                self._set_state(BatchState.CONNECTED)

            self._set_state(BatchState.ENUMERATING)
            rows = self.enumerate_rows(ctx)
            counters.total = len(rows)
            logger.info(f"{self.name}: {counters.total} candidate rows")

            if not rows:
                message = self.empty_message()
                progress.report(1.0, message)
                self._set_state(BatchState.COMPLETED)
                result = self._result(
                    BatchState.COMPLETED, counters, backup_path=backup_path, message=message
                )
                ctx.reporter.on_complete(result.summary())
                return result

            self._set_state(BatchState.PROCESSING)
            self.process(ctx, rows, counters, progress)
            self.finish(ctx, counters)

            if counters.cancelled:
                self._set_state(BatchState.CANCELLED)
                result = self._result(
                    BatchState.CANCELLED, counters, backup_path=backup_path
                )
            else:
                progress.report(1.0, "Completed")
                self._set_state(BatchState.COMPLETED)
                result = self._result(
                    BatchState.COMPLETED,
                    counters,
                    backup_path=backup_path,
                    message=self.completion_message(counters),
                )
            logger.info(result.summary())
            ctx.reporter.on_complete(result.summary())
            return result

        except RekordFixerError as e:
            e.with_operation(self.name)
            logger.error(f"{e}")
            return self._fail(ctx, counters, e, backup_path)
        except Exception as e:
            # Unexpected failure inside the worker: report it, never leave the
            # caller without a terminal state
            logger.exception(f"{self.name}: unexpected error")
            return self._fail(ctx, counters, e, backup_path)
        finally:
            if self.needs_database:
                ctx.db.finalize()
            self._set_state(BatchState.IDLE)

    def _fail(
        self,
        ctx: OperationContext,
        counters: BatchCounters,
        error: Exception,
        backup_path: Optional[Path],
    ) -> BatchResult:
        self._set_state(BatchState.FAILED)
        ctx.reporter.on_error(error)
        return self._result(
            BatchState.FAILED, counters, error=error, backup_path=backup_path
        )

    def start(self, ctx: OperationContext) -> "Future[BatchResult]":
        """Run the batch on a background worker.

        The database is claimed before this returns, so a second start()
        against the same database fails immediately.

        Raises:
            OperationBusyError: If an operation is already running
        """
        with self._start_lock:
            if self._future is not None and not self._future.done():
                raise OperationBusyError(f"{self.name} is already running")
            ctx.db.claim(self.name)
            try:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=1, thread_name_prefix=f"batch-{self.name}"
                    )
                self._future = self._executor.submit(self._run_owned, ctx)
            except RuntimeError:
                ctx.db.release(self.name)
                raise
            return self._future

    def _run_owned(self, ctx: OperationContext) -> BatchResult:
        try:
            return self._run_claimed(ctx)
        finally:
            ctx.db.release(self.name)

    def shutdown(self) -> None:
        """Wait for a running batch and stop the worker thread."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
