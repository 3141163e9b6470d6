"""
Configuration management for rekord-fixer
"""

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger

from .errors import ConfigurationError

ENV_DB_PATH = "REKORD_FIXER_DB"
ENV_BACKUP_DIR = "REKORD_FIXER_BACKUP_DIR"
ENV_DB_KEY = "REKORD_FIXER_DB_KEY"


@dataclass
class DatabaseConfig:
    """Location of the library database and its backups."""

    path: str = ""  # Empty means "not configured"
    backup_dir: Optional[str] = None  # Default: next to the database file
    key: str = ""  # SQLCipher key; empty means a plain SQLite file


@dataclass
class BatchConfig:
    """Settings shared by every batch operation."""

    row_delay_ms: int = 10  # Pause between row writes

    def validate(self) -> None:
        """Validate batch configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if self.row_delay_ms < 0:
            raise ValueError(f"row_delay_ms must be >= 0, got {self.row_delay_ms}")


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR
    log_file: Optional[str] = None  # Default: ~/.local/share/rekord-fixer/rekord-fixer.log


@dataclass
class ConverterConfig:
    """Configuration for the audio transcoder."""

    ffmpeg_path: str = "ffmpeg"


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    converter: ConverterConfig = field(default_factory=ConverterConfig)


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "rekord-fixer"
    return Path.home() / ".config" / "rekord-fixer"


def get_config_path() -> Path:
    """Get the main configuration file path.

    A config.toml in the current working directory wins over the one in
    XDG_CONFIG_HOME/rekord-fixer (or ~/.config/rekord-fixer).
    """
    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config
    return get_config_dir() / "config.toml"


def get_data_dir() -> Path:
    """Get the data directory path (logs live here)."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "rekord-fixer"
    return Path.home() / ".local" / "share" / "rekord-fixer"


def get_log_file_path(config: Config) -> Path:
    """Resolve the log file from config, defaulting to the data directory."""
    if config.logging.log_file:
        return Path(config.logging.log_file).expanduser()
    return get_data_dir() / "rekord-fixer.log"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# rekord-fixer configuration

[database]
# Path to the library database (master.db)
# path = "~/Library/Pioneer/rekordbox/master.db"

# Where backups are written before every change (default: database folder)
# backup_dir = "~/rekordbox-backups"

# SQLCipher key of an encrypted library (needs the "cipher" extra).
# Prefer the REKORD_FIXER_DB_KEY environment variable or the .env file.
# key = "..."

[batch]
# Pause between row writes in milliseconds
row_delay_ms = 10

[logging]
# Log level (DEBUG, INFO, WARNING, ERROR)
level = "INFO"

# Custom log file path (default: ~/.local/share/rekord-fixer/rekord-fixer.log)
# log_file = "/path/to/rekord-fixer.log"

[converter]
# ffmpeg executable used by the convert command
ffmpeg_path = "ffmpeg"
""".strip()


def _expand(path: Optional[str]) -> Optional[str]:
    if not path:
        return path
    return str(Path(path).expanduser())


def _toml_str(value: str) -> str:
    # JSON string escapes are valid TOML basic-string escapes
    return json.dumps(value)


def _apply_env_overrides(config: Config) -> None:
    db_path = os.environ.get(ENV_DB_PATH)
    backup_dir = os.environ.get(ENV_BACKUP_DIR)
    db_key = os.environ.get(ENV_DB_KEY)

    if db_path:
        config.database.path = _expand(db_path)
    if backup_dir:
        config.database.backup_dir = _expand(backup_dir)
    if db_key:
        config.database.key = db_key


def parse_config(toml_data: dict) -> Config:
    """Build a Config from parsed TOML data.

    Raises:
        ConfigurationError: If a section holds invalid values
    """
    config = Config()

    if "database" in toml_data:
        database_data = toml_data["database"]
        config.database = DatabaseConfig(
            path=_expand(database_data.get("path", config.database.path)) or "",
            backup_dir=_expand(database_data.get("backup_dir")),
            key=str(database_data.get("key", "")),
        )

    if "batch" in toml_data:
        batch_data = toml_data["batch"]
        config.batch = BatchConfig(
            row_delay_ms=int(
                batch_data.get("row_delay_ms", config.batch.row_delay_ms)
            ),
        )
        try:
            config.batch.validate()
        except ValueError as e:
            raise ConfigurationError(f"Invalid [batch] section: {e}") from e

    if "logging" in toml_data:
        logging_data = toml_data["logging"]
        config.logging = LoggingConfig(
            level=logging_data.get("level", config.logging.level).upper(),
            log_file=_expand(logging_data.get("log_file")),
        )

    if "converter" in toml_data:
        converter_data = toml_data["converter"]
        config.converter = ConverterConfig(
            ffmpeg_path=converter_data.get(
                "ffmpeg_path", config.converter.ffmpeg_path
            ),
        )

    return config


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values:
    - REKORD_FIXER_DB
    - REKORD_FIXER_BACKUP_DIR
    - REKORD_FIXER_DB_KEY

    Args:
        config_path: Explicit config file (default: get_config_path())

    Returns:
        Parsed configuration; defaults if the file is missing or unreadable
    """
    # Load .env file from config directory if it exists
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = config_path or get_config_path()

    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_default_config())
        logger.info(f"Created default configuration at: {config_path}")
        config = Config()
        _apply_env_overrides(config)
        return config

    try:
        with open(config_path, "rb") as f:
            toml_data = tomllib.load(f)
        config = parse_config(toml_data)
    except (OSError, tomllib.TOMLDecodeError, ConfigurationError, ValueError) as e:
        logger.warning(f"Error loading configuration from {config_path}: {e}")
        logger.warning("Using default configuration.")
        config = Config()

    _apply_env_overrides(config)
    return config


def save_config(config: Config, config_path: Optional[Path] = None) -> bool:
    """Save configuration to file."""
    config_path = config_path or get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        toml_content = "# rekord-fixer configuration\n\n[database]\n"
        if config.database.path:
            toml_content += f"path = {_toml_str(config.database.path)}\n"
        if config.database.backup_dir:
            toml_content += f"backup_dir = {_toml_str(config.database.backup_dir)}\n"
        if config.database.key:
            toml_content += f"key = {_toml_str(config.database.key)}\n"

        toml_content += f"""
[batch]
row_delay_ms = {config.batch.row_delay_ms}

[logging]
level = "{config.logging.level}"
"""
        if config.logging.log_file:
            toml_content += f"log_file = {_toml_str(config.logging.log_file)}\n"

        toml_content += f"""
[converter]
ffmpeg_path = {_toml_str(config.converter.ffmpeg_path)}
"""

        with open(config_path, "w", encoding="utf-8") as f:
            f.write(toml_content)
        return True

    except OSError as e:
        logger.error(f"Error saving configuration to {config_path}: {e}")
        return False
