"""Utilities package initialization."""
from .config import (
    GlobalSettings,
    RelayDefinition,
    ServiceConfiguration,
    clear_settings_cache,
    get_service_configuration,
    get_settings,
    load_yaml_config,
)
from .logging import configure_logging, log_sync_pass, setup_logger

__all__ = [
    "GlobalSettings",
    "RelayDefinition",
    "ServiceConfiguration",
    "clear_settings_cache",
    "configure_logging",
    "get_service_configuration",
    "get_settings",
    "load_yaml_config",
    "log_sync_pass",
    "setup_logger",
]
