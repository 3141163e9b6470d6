"""Operation context for explicit state passing.

Everything a batch run needs (database owner, settings, cancellation token,
progress sink) travels in one OperationContext instead of module globals.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

from rekord_fixer.core.config import Config
from rekord_fixer.core.database import DBManager
from rekord_fixer.domain.progress import (
    CancellationToken,
    NullReporter,
    ProgressReporter,
)


@dataclass
class OperationContext:
    """State handed to every batch operation.

    Attributes:
        db: Owner of the library database connection
        config: Application configuration
        token: Cancellation flag polled before every row
        reporter: Progress sink
    """

    db: DBManager
    config: Config = field(default_factory=Config)
    token: CancellationToken = field(default_factory=CancellationToken)
    reporter: ProgressReporter = field(default_factory=NullReporter)

    @classmethod
    def create(
        cls,
        config: Config,
        reporter: Optional[ProgressReporter] = None,
        db_path: Optional[str] = None,
    ) -> "OperationContext":
        """Build a context from configuration.

        Args:
            config: Application configuration
            reporter: Progress sink (default: NullReporter)
            db_path: Override for config.database.path

        Returns:
            New OperationContext with a fresh token
        """
        db = DBManager(
            db_path or config.database.path,
            backup_dir=config.database.backup_dir,
            key=config.database.key or None,
        )
        return cls(
            db=db,
            config=config,
            token=CancellationToken(),
            reporter=reporter or NullReporter(),
        )

    def is_cancelled(self) -> bool:
        """True if the token or the reporter signals cancellation."""
        return self.token.cancelled or self.reporter.is_cancelled()

    def with_reporter(self, reporter: ProgressReporter) -> "OperationContext":
        """Return new context with another progress sink, same connection owner."""
        return replace(self, reporter=reporter)

    @property
    def row_delay(self) -> float:
        """Throttle between row writes, in seconds."""
        return self.config.batch.row_delay_ms / 1000.0
