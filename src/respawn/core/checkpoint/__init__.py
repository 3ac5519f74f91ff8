"""Checkpoint storage and lifecycle management."""

from respawn.core.checkpoint.manager import CheckpointManager, MaintenanceReport, RestorationLauncher
from respawn.core.checkpoint.storage import CheckpointStorage, CleanupResult, DiskUsage, compute_checksum

__all__ = [
    "CheckpointManager",
    "CheckpointStorage",
    "CleanupResult",
    "DiskUsage",
    "MaintenanceReport",
    "RestorationLauncher",
    "compute_checksum",
]
