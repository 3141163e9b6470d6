"""
Progress and cancellation plumbing between batch operations and the caller.

The caller (CLI, tests) implements ProgressReporter; batch operations only
call it. Cancellation is cooperative: operations poll the token once per row.
"""

import threading
from typing import Protocol, runtime_checkable


@runtime_checkable
class ProgressReporter(Protocol):
    """Sink for progress updates of a running batch."""

    def report(self, fraction: float, status: str) -> None:
        """Progress fraction in [0, 1] and a short status line."""
        ...

    def is_cancelled(self) -> bool:
        """True once the user asked to stop."""
        ...

    def on_complete(self, summary: str) -> None:
        """Terminal success or cancellation summary."""
        ...

    def on_error(self, error: Exception) -> None:
        """Terminal failure."""
        ...


class CancellationToken:
    """Thread-safe cancel flag shared between the caller and the worker."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class NullReporter:
    """Reporter that ignores everything (used when nobody is watching)."""

    def report(self, fraction: float, status: str) -> None:
        pass

    def is_cancelled(self) -> bool:
        return False

    def on_complete(self, summary: str) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass


class MonotonicProgress:
    """Wraps a reporter so fractions never go backwards within one run."""

    def __init__(self, reporter: ProgressReporter):
        self._reporter = reporter
        self._last = 0.0

    @property
    def last(self) -> float:
        return self._last

    def report(self, fraction: float, status: str) -> None:
        fraction = min(max(fraction, 0.0), 1.0)
        if fraction < self._last:
            fraction = self._last
        self._last = fraction
        self._reporter.report(fraction, status)
