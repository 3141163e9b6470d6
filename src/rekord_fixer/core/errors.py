"""Exceptions raised by the database engine and the batch operations."""

from typing import Optional


class RekordFixerError(Exception):
    """Base exception for all rekord-fixer failures.

    Attributes:
        operation: Human-readable label of the operation that failed
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)

    def with_operation(self, operation: str) -> "RekordFixerError":
        """Attach an operation label if none is set yet."""
        if self.operation is None:
            self.operation = operation
        return self

    def __str__(self) -> str:
        message = super().__str__()
        if self.operation:
            return f"{self.operation}: {message}"
        return message


class ConfigurationError(RekordFixerError):
    """Raised when settings are missing or invalid (no database path, etc.)."""

    pass


class ValidationError(ConfigurationError):
    """Raised when a user-supplied field fails a pre-flight check."""

    def __init__(self, field: str, message: str, operation: Optional[str] = None):
        self.field = field
        super().__init__(message, operation)


class DatabaseIOError(RekordFixerError):
    """Raised when the database file cannot be read or copied."""

    pass


class BackupError(DatabaseIOError):
    """Raised when a backup snapshot cannot be written."""

    pass


class DatabaseConnectionError(RekordFixerError):
    """Raised when the database cannot be opened (locked, corrupt, missing)."""

    pass


class NotConnectedError(DatabaseConnectionError):
    """Raised when a statement is issued without an open connection."""

    pass


class DatabaseError(RekordFixerError):
    """Raised when a statement fails.

    Attributes:
        sql: The statement that failed (kept for logging)
    """

    def __init__(self, message: str, sql: str = "", operation: Optional[str] = None):
        self.sql = sql
        super().__init__(message, operation)


class NoTracksFoundError(DatabaseError):
    """Raised when a folder query matches no tracks."""

    pass


class RowMutationError(RekordFixerError):
    """Raised when a single row fails mid-batch. Fatal to the batch only.

    Attributes:
        row: Label of the row being processed (file name or ID)
        index: Zero-based position of the row in the batch
    """

    def __init__(
        self,
        row: str,
        index: int,
        message: str,
        operation: Optional[str] = None,
    ):
        self.row = row
        self.index = index
        super().__init__(f"{row}: {message}", operation)


class OperationBusyError(RekordFixerError):
    """Raised when an operation is started while another one is running."""

    pass


class TranscodeError(RekordFixerError):
    """Raised when the external transcoder fails."""

    pass


class TranscodeCancelled(TranscodeError):
    """Raised when a transcode is killed because of cancellation."""

    pass
