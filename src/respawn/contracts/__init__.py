"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core,
engine, or monitor. Settings classes are NOT re-exported here - import
them from respawn.core.config.
"""

from respawn.contracts.checkpoint import (
    CHECKPOINT_ID_FORMAT,
    Checkpoint,
    CheckpointList,
    CheckpointMetadata,
    ProcessRecord,
    checkpoint_id_for,
)
from respawn.contracts.enums import NotificationKind, SystemState, UserActivity, WindowState
from respawn.contracts.errors import (
    AutoStartError,
    CheckpointNotFoundError,
    CorruptRecordError,
    DuplicateCheckpointError,
    InitializationError,
    InitializationTimeout,
    InstanceAlreadyRunningError,
    IntegrityError,
    LaunchFailure,
    NoCheckpointsError,
    PermissionNotGrantedError,
    PlatformCommandError,
    RespawnError,
    RestartExhaustedError,
    StorageWriteError,
)
from respawn.contracts.launch import LaunchResult, LaunchSummary, RestartPolicy
from respawn.contracts.platform import (
    ApplicationActivator,
    AutoStartRegistrar,
    BatteryStatus,
    MonitoredApp,
    Notifier,
    PermissionChecker,
    ProcessLookup,
    ProcessSnapshotSource,
    SystemProbe,
    WindowManager,
)

__all__ = [
    "CHECKPOINT_ID_FORMAT",
    "ApplicationActivator",
    "AutoStartError",
    "AutoStartRegistrar",
    "BatteryStatus",
    "Checkpoint",
    "CheckpointList",
    "CheckpointMetadata",
    "CheckpointNotFoundError",
    "CorruptRecordError",
    "DuplicateCheckpointError",
    "InitializationError",
    "InitializationTimeout",
    "InstanceAlreadyRunningError",
    "IntegrityError",
    "LaunchFailure",
    "LaunchResult",
    "LaunchSummary",
    "MonitoredApp",
    "NoCheckpointsError",
    "NotificationKind",
    "Notifier",
    "PermissionChecker",
    "PermissionNotGrantedError",
    "PlatformCommandError",
    "ProcessLookup",
    "ProcessRecord",
    "ProcessSnapshotSource",
    "RespawnError",
    "RestartExhaustedError",
    "RestartPolicy",
    "StorageWriteError",
    "SystemProbe",
    "SystemState",
    "UserActivity",
    "WindowManager",
    "WindowState",
    "checkpoint_id_for",
]
