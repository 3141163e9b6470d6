"""
Pre-flight checks run before any batch operation starts.

Each operation declares its input fields as FieldRule entries. The Validator
checks the active fields, then the database (configured, present, backup
feasible, connectable), and stops at the first failure. It never writes.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from loguru import logger

from ..core.database import DBManager
from ..core.errors import (
    BackupError,
    ConfigurationError,
    DatabaseConnectionError,
    ValidationError,
)
from ..core.paths import is_dir_writable, list_files_with_extensions

DATE_FORMAT = "%Y-%m-%d"

FIELD_KINDS = ("folder", "playlist", "date", "text", "checkbox", "select")
CHECKS = ("exists", "write", "filled", "valid_date")


@dataclass(frozen=True)
class FieldRule:
    """Validation rule for one input field.

    Attributes:
        name: Field name as it appears in the operation's values
        kind: One of FIELD_KINDS
        required: Empty values fail when the rule is active
        depends_on: Name of the field that switches this rule on
        active_when: Value of depends_on for which this rule is active
        checks: Extra checks ("exists", "write", "filled", "valid_date")
        actions: Actions on which the rule is enforced
    """

    name: str
    kind: str
    required: bool = True
    depends_on: Optional[str] = None
    active_when: Optional[str] = None
    checks: Tuple[str, ...] = ()
    actions: Tuple[str, ...] = ("start",)

    def __post_init__(self):
        if self.kind not in FIELD_KINDS:
            raise ValueError(f"Unknown field kind: {self.kind}")
        unknown = set(self.checks) - set(CHECKS)
        if unknown:
            raise ValueError(f"Unknown checks for {self.name}: {sorted(unknown)}")

    def is_active(self, values: Mapping[str, Any], action: str) -> bool:
        if action not in self.actions:
            return False
        if self.depends_on is None:
            return True
        current = values.get(self.depends_on)
        return _as_text(current) == str(self.active_when).lower()


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value).strip().lower()


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [v for v in value if str(v).strip()]
    text = str(value).strip()
    return [text] if text else []


def parse_date(value: str) -> datetime:
    """Parse a YYYY-MM-DD date.

    Raises:
        ValueError: If the value is not a valid date
    """
    return datetime.strptime(value.strip(), DATE_FORMAT)


def _check_field(rule: FieldRule, value: Any) -> None:
    items = _as_list(value)

    if not items:
        if rule.required:
            raise ValidationError(rule.name, f"{rule.name} is required")
        return

    if rule.kind == "date" or "valid_date" in rule.checks:
        for item in items:
            try:
                parse_date(str(item))
            except ValueError as e:
                raise ValidationError(
                    rule.name, f"{rule.name}: invalid date {item!r} (expected YYYY-MM-DD)"
                ) from e

    if rule.kind == "folder":
        for item in items:
            folder = Path(str(item)).expanduser()
            if "exists" in rule.checks and not folder.is_dir():
                raise ValidationError(rule.name, f"{rule.name}: folder not found: {item}")
            if "write" in rule.checks and not is_dir_writable(folder):
                raise ValidationError(rule.name, f"{rule.name}: folder is not writable: {item}")


def existing_ancestor(path: Path) -> Path:
    """The path itself if it exists, else its nearest existing parent.

    A missing backup directory is created (with its parents) at backup time,
    so writability is decided by the first directory that already exists.
    """
    path = Path(path)
    while not path.exists() and path.parent != path:
        path = path.parent
    return path


def check_source_files(
    field: str, folder: str, extensions: Iterable[str], recursive: bool = False
) -> None:
    """Require at least one file with the given extensions in a folder.

    Raises:
        ValidationError: If the folder is missing or holds no such file
    """
    path = Path(folder).expanduser()
    if not path.is_dir():
        raise ValidationError(field, f"{field}: folder not found: {folder}")
    wanted = list(extensions)
    if not list_files_with_extensions(path, wanted, recursive=recursive):
        raise ValidationError(
            field, f"{field}: no {', '.join(wanted)} files in {folder}"
        )


class Validator:
    """Runs field rules and database checks for one operation.

    Args:
        db: Database owner used for the connection check
        rules: Field rules of the operation
    """

    def __init__(self, db: Optional[DBManager], rules: Sequence[FieldRule] = ()):
        self.db = db
        self.rules = tuple(rules)

    def validate_fields(self, values: Mapping[str, Any], action: str = "start") -> None:
        for rule in self.rules:
            if rule.is_active(values, action):
                _check_field(rule, values.get(rule.name))

    def validate_database(self, mutating: bool = True) -> None:
        """Database configured, present, backup feasible and connectable."""
        if self.db is None or not self.db.get_database_path():
            raise ConfigurationError("Database path is not configured")

        db_file = Path(self.db.get_database_path())
        if not db_file.is_file():
            raise ConfigurationError(f"Database file not found: {db_file}")

        if mutating:
            backup_dir = self.db.backup_dir
            if not is_dir_writable(existing_ancestor(backup_dir)):
                raise BackupError(f"Backup directory is not writable: {backup_dir}")

        was_connected = self.db.is_connected
        try:
            self.db.ensure_connected()
            if not self.db.table_exists("djmdContent"):
                raise DatabaseConnectionError(f"{db_file} does not contain a library schema")
        finally:
            if not was_connected:
                self.db.finalize()

    def validate(
        self,
        operation: str,
        values: Mapping[str, Any],
        action: str = "start",
        mutating: bool = True,
        needs_database: bool = True,
    ) -> None:
        """Run every check, raising the first failure labelled with the operation.

        Raises:
            ValidationError, ConfigurationError, BackupError,
            DatabaseConnectionError
        """
        try:
            self.validate_fields(values, action)
            if needs_database:
                self.validate_database(mutating=mutating)
        except (ConfigurationError, BackupError, DatabaseConnectionError) as e:
            e.with_operation(operation)
            logger.warning(f"Validation failed: {e}")
            raise
        logger.debug(f"{operation}: validation passed")
