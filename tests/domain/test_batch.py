"""
Tests for the shared batch control flow: backup before write, cancellation,
mid-batch failures, progress and the busy guard.
"""

import threading
from unittest.mock import patch

import pytest

from rekord_fixer.context import OperationContext
from rekord_fixer.core.database import DBManager
from rekord_fixer.core.errors import BackupError, OperationBusyError, RowMutationError
from rekord_fixer.domain.batch import (
    BatchOperation,
    BatchResult,
    BatchState,
    RowOutcome,
    format_name_list,
)
from rekord_fixer.domain.progress import MonotonicProgress


class SubtitleStamp(BatchOperation):
    """Writes a subtitle on every track of the test database, row by row."""

    name = "Subtitle stamp"

    def __init__(self, fail_on=None, cancel_after=None, on_row=None):
        super().__init__()
        self.fail_on = fail_on
        self.cancel_after = cancel_after
        self.on_row = on_row

    def enumerate_rows(self, ctx):
        return [row["ID"] for row in ctx.db.query("SELECT ID FROM djmdContent ORDER BY ID")]

    def process_row(self, ctx, row, index, total):
        if self.on_row is not None:
            self.on_row()
        if row == self.fail_on:
            # Statement against a missing table fails inside the DB layer
            ctx.db.execute("UPDATE missing_table SET x = 1")
        ctx.db.execute("UPDATE djmdContent SET Subtitle = 'stamped' WHERE ID = ?", (row,))
        if self.cancel_after is not None and index + 1 == self.cancel_after:
            ctx.token.cancel()
        return RowOutcome.UPDATED


@pytest.fixture
def five_tracks(library, music_root):
    for i in range(1, 6):
        library.add_track(str(i), music_root / "A" / f"t{i}.mp3")
    return library


def stamped(library):
    return [
        row["ID"]
        for row in library.fetch("SELECT ID FROM djmdContent WHERE Subtitle = 'stamped' ORDER BY ID")
    ]


class TestRun:
    """Tests for BatchOperation.run()."""

    def test_completes_and_backs_up(self, ctx, five_tracks, reporter):
        result = SubtitleStamp().run(ctx)

        assert result.state is BatchState.COMPLETED
        assert result.ok
        assert (result.total, result.processed, result.updated) == (5, 5, 5)
        assert result.backup_path is not None and result.backup_path.exists()
        assert stamped(five_tracks) == ["1", "2", "3", "4", "5"]
        assert reporter.completed == [result.summary()]
        assert not ctx.db.is_connected

    def test_backup_is_taken_before_any_write(self, ctx, five_tracks):
        result = SubtitleStamp().run(ctx)
        # The backup still holds the untouched rows
        backup = DBManager(result.backup_path)
        with backup.session():
            rows = backup.query("SELECT Subtitle FROM djmdContent")
        assert all(row["Subtitle"] is None for row in rows)

    def test_backup_failure_means_no_writes(self, ctx, five_tracks, reporter):
        with patch.object(
            DBManager, "backup_database", side_effect=BackupError("disk full")
        ):
            result = SubtitleStamp().run(ctx)

        assert result.state is BatchState.FAILED
        assert isinstance(result.error, BackupError)
        assert str(result.error) == "Subtitle stamp: disk full"
        assert stamped(five_tracks) == []
        assert reporter.errors == [result.error]

    def test_unwritable_backup_dir_fails_validation(self, db_path, config, reporter, tmp_path, five_tracks):
        blocker = tmp_path / "blocker"
        blocker.write_bytes(b"")
        ctx = OperationContext(
            db=DBManager(db_path, backup_dir=blocker), config=config, reporter=reporter
        )
        before = db_path.read_bytes()

        result = SubtitleStamp().run(ctx)

        assert result.state is BatchState.FAILED
        assert isinstance(result.error, BackupError)
        assert db_path.read_bytes() == before

    def test_cancel_after_k_rows(self, ctx, five_tracks):
        result = SubtitleStamp(cancel_after=2).run(ctx)

        assert result.state is BatchState.CANCELLED
        assert (result.processed, result.total) == (2, 5)
        assert stamped(five_tracks) == ["1", "2"]
        assert "cancelled after 2/5 rows" in result.summary()

    def test_reporter_cancellation(self, ctx, five_tracks, make_reporter):
        """A reporter asking to stop is honoured like the token."""
        run_ctx = ctx.with_reporter(make_reporter(cancel_after=3))
        result = SubtitleStamp().run(run_ctx)

        assert result.state is BatchState.CANCELLED
        assert result.processed == 3
        assert stamped(five_tracks) == ["1", "2", "3"]

    def test_row_failure_stops_batch(self, ctx, five_tracks):
        result = SubtitleStamp(fail_on="3").run(ctx)

        assert result.state is BatchState.FAILED
        assert isinstance(result.error, RowMutationError)
        assert result.error.index == 2
        assert result.error.row == "3"
        # Rows before the failure stay written; the backup allows a restore
        assert stamped(five_tracks) == ["1", "2"]
        assert not ctx.db.is_connected

    def test_unexpected_exception_becomes_failed_result(self, ctx, five_tracks):
        def explode():
            raise KeyError("surprise")

        result = SubtitleStamp(on_row=explode).run(ctx)

        assert result.state is BatchState.FAILED
        assert isinstance(result.error, KeyError)

    def test_empty_row_set(self, ctx, library):
        result = SubtitleStamp().run(ctx)
        assert result.state is BatchState.COMPLETED
        assert result.summary() == "Subtitle stamp: no matching entries found"

    def test_progress_is_monotonic_and_ends_at_one(self, ctx, five_tracks, reporter):
        SubtitleStamp().run(ctx)
        fractions = reporter.fractions
        assert fractions[0] == 0.0
        assert fractions[-1] == 1.0
        assert fractions == sorted(fractions)

    def test_state_returns_to_idle(self, ctx, five_tracks):
        operation = SubtitleStamp()
        operation.run(ctx)
        assert operation.state is BatchState.IDLE

    def test_busy_database(self, ctx, five_tracks):
        ctx.db.claim("Other operation")
        result = SubtitleStamp().run(ctx)
        assert result.state is BatchState.FAILED
        assert isinstance(result.error, OperationBusyError)
        assert stamped(five_tracks) == []


class TestStart:
    """Tests for BatchOperation.start()."""

    def test_runs_on_worker(self, ctx, five_tracks):
        operation = SubtitleStamp()
        try:
            result = operation.start(ctx).result(timeout=10)
        finally:
            operation.shutdown()
        assert result.state is BatchState.COMPLETED
        assert ctx.db.owner is None

    def test_second_start_is_rejected(self, ctx, five_tracks):
        gate = threading.Event()
        first = SubtitleStamp(on_row=lambda: gate.wait(5))
        second = SubtitleStamp()
        try:
            future = first.start(ctx)
            with pytest.raises(OperationBusyError):
                first.start(ctx)
            with pytest.raises(OperationBusyError):
                second.start(ctx)
            gate.set()
            assert future.result(timeout=10).ok
        finally:
            gate.set()
            first.shutdown()
            second.shutdown()

    def test_cancel_from_caller_thread(self, ctx, five_tracks):
        gate = threading.Event()
        entered = threading.Event()

        def block_once():
            entered.set()
            gate.wait(5)

        operation = SubtitleStamp(on_row=block_once)
        try:
            future = operation.start(ctx)
            assert entered.wait(5)
            ctx.token.cancel()
            gate.set()
            result = future.result(timeout=10)
        finally:
            gate.set()
            operation.shutdown()

        assert result.state is BatchState.CANCELLED
        assert result.processed == 1


class TestResults:
    def test_summary_counts(self):
        result = BatchResult(
            operation="Format updater",
            state=BatchState.COMPLETED,
            total=4,
            processed=4,
            updated=2,
            unchanged=1,
            skipped=1,
        )
        assert result.summary() == "Format updater completed: 2 updated, 1 unchanged, 1 skipped of 4"

    def test_format_name_list(self):
        names = [f"t{i}.mp3" for i in range(7)]
        assert format_name_list(names) == "t0.mp3, t1.mp3, t2.mp3, t3.mp3, t4.mp3 and 2 more"
        assert format_name_list(names[:2]) == "t0.mp3, t1.mp3"


class TestMonotonicProgress:
    def test_never_goes_backwards(self, reporter):
        progress = MonotonicProgress(reporter)
        for fraction in (0.2, 0.5, 0.3, 1.4, -1):
            progress.report(fraction, "")
        assert reporter.fractions == [0.2, 0.5, 0.5, 1.0, 1.0]
