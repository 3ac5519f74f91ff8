"""Core infrastructure: Configuration, Logging, Checkpoint storage and management."""

from respawn.core.checkpoint import (
    CheckpointManager,
    CheckpointStorage,
    MaintenanceReport,
)
from respawn.core.config import (
    ApplicationSettings,
    CheckpointSettings,
    CrashSettings,
    LoggingSettings,
    MonitorSettings,
    RespawnPaths,
    RespawnSettings,
    RestoreSettings,
    load_or_create_settings,
    load_settings,
    save_settings,
)
from respawn.core.logging import configure_logging, get_logger

__all__ = [
    "ApplicationSettings",
    "CheckpointManager",
    "CheckpointSettings",
    "CheckpointStorage",
    "CrashSettings",
    "LoggingSettings",
    "MaintenanceReport",
    "MonitorSettings",
    "RespawnPaths",
    "RespawnSettings",
    "RestoreSettings",
    "configure_logging",
    "get_logger",
    "load_or_create_settings",
    "load_settings",
    "save_settings",
]
