"""Configuration package for localdb."""

from localdb.config.app_config import (
    AppConfig,
    DatabaseConfig,
    clear_config_cache,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "clear_config_cache",
    "load_app_config",
]
