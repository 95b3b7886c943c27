"""Application configuration loader.

Loads configuration from data/config/localdb.yaml (or the file named by
LOCALDB_CONFIG), falling back to built-in defaults.

Usage:
    from localdb.config.app_config import load_app_config

    config = load_app_config()
    db = Database.from_config(config, build_migrator())
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from localdb.db.database import JOURNAL_MODES

logger = structlog.get_logger(__name__)

# Config file path (relative to working directory)
CONFIG_FILE = Path("data/config/localdb.yaml")
CONFIG_ENV = "LOCALDB_CONFIG"
DB_PATH_ENV = "LOCALDB_DB_PATH"


@dataclass
class DatabaseConfig:
    """Settings for the SQLite database file."""

    path: Path = Path("data/db/localdb.sqlite3")
    timeout: float = 5.0
    busy_timeout_ms: int = 5000
    journal_mode: str | None = "WAL"


@dataclass
class AppConfig:
    """Application-wide configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    backup_dir: Path = Path("data/backups")


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "database": {
            "path": "data/db/localdb.sqlite3",
            "timeout": 5.0,
            "busy_timeout_ms": 5000,
            "journal_mode": "WAL",
        },
        "backup_dir": "data/backups",
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()
    db_data = {**defaults["database"], **(data.get("database") or {})}

    journal_mode = db_data.get("journal_mode")
    if journal_mode is not None:
        journal_mode = str(journal_mode).upper()
        if journal_mode not in JOURNAL_MODES:
            raise ValueError(
                f"Invalid journal_mode '{journal_mode}', expected one of {JOURNAL_MODES}"
            )

    database = DatabaseConfig(
        path=Path(db_data["path"]),
        timeout=float(db_data["timeout"]),
        busy_timeout_ms=int(db_data["busy_timeout_ms"]),
        journal_mode=journal_mode,
    )

    if os.environ.get(DB_PATH_ENV):
        database.path = Path(os.environ[DB_PATH_ENV])

    return AppConfig(
        database=database,
        backup_dir=Path(data.get("backup_dir") or defaults["backup_dir"]),
    )


def _config_file() -> Path:
    return Path(os.environ.get(CONFIG_ENV) or CONFIG_FILE)


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    config_file = _config_file()
    data: dict[str, Any]

    if config_file.exists():
        logger.debug("loading_app_config", source=str(config_file))
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    _cached_config = _parse_config(data)
    return _cached_config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
