"""Centralized Rich Console management.

A single Console instance is shared by the CLI, the progress display and
log() so that progress bars and messages do not overwrite each other.
"""

from typing import Iterable, Sequence

from rich.console import Console
from rich.table import Table

_console: Console | None = None


def get_console() -> Console:
    """Get or create the global Rich Console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def print_table(
    title: str, columns: Sequence[str], rows: Iterable[Sequence[object]]
) -> None:
    """Render rows as a Rich table on the shared console.

    Args:
        title: Table caption
        columns: Column headers
        rows: Row values (converted with str())
    """
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(str(value) for value in row))
    get_console().print(table)
