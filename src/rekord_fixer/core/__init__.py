"""Core infrastructure layer - no business logic dependencies.

This module provides foundation-level services:
- Configuration management (TOML)
- Library database access (SQLite)
- Path conversion and nullable column values
- Console and log output (Rich, Loguru)
"""

# Configuration
from .config import (
    Config,
    load_config,
    save_config,
    get_config_dir,
    get_config_path,
    get_data_dir,
    get_log_file_path,
    create_default_config,
)

# Database
from .database import DBManager, folder_prefix_pattern, utc_timestamp

# Errors
from .errors import (
    RekordFixerError,
    ConfigurationError,
    ValidationError,
    DatabaseIOError,
    BackupError,
    DatabaseConnectionError,
    NotConnectedError,
    DatabaseError,
    NoTracksFoundError,
    RowMutationError,
    OperationBusyError,
    TranscodeError,
    TranscodeCancelled,
)

# Values and paths
from .nullable import NullInt64, NullString
from .paths import (
    FILE_TYPES,
    to_db_path,
    normalize_path,
    strip_extension,
    file_type_for_extension,
    list_files_with_extensions,
    is_dir_writable,
)

# Console
from .console import get_console, print_table

__all__ = [
    # Config
    "Config",
    "load_config",
    "save_config",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "get_log_file_path",
    "create_default_config",
    # Database
    "DBManager",
    "folder_prefix_pattern",
    "utc_timestamp",
    # Errors
    "RekordFixerError",
    "ConfigurationError",
    "ValidationError",
    "DatabaseIOError",
    "BackupError",
    "DatabaseConnectionError",
    "NotConnectedError",
    "DatabaseError",
    "NoTracksFoundError",
    "RowMutationError",
    "OperationBusyError",
    "TranscodeError",
    "TranscodeCancelled",
    # Values and paths
    "NullInt64",
    "NullString",
    "FILE_TYPES",
    "to_db_path",
    "normalize_path",
    "strip_extension",
    "file_type_for_extension",
    "list_files_with_extensions",
    "is_dir_writable",
    # Console
    "get_console",
    "print_table",
]
