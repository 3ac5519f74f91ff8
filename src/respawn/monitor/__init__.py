"""Daemon side: state detection, crash accounting, the monitor loops and startup."""

from respawn.monitor.crash import CrashTracker
from respawn.monitor.heartbeat import HeartbeatStore, PidFile
from respawn.monitor.monitor import (
    CheckpointSummary,
    MonitorStatus,
    PauseMarker,
    StateHandlingResult,
    SystemMonitor,
    read_status,
)
from respawn.monitor.startup import InstanceLock, StartupManager
from respawn.monitor.state import SystemStateDetector, classify_transition
from respawn.monitor.work_pattern import OptimizationMetrics, WorkPattern, activity_from_cpu, optimal_interval

__all__ = [
    "CheckpointSummary",
    "CrashTracker",
    "HeartbeatStore",
    "InstanceLock",
    "MonitorStatus",
    "OptimizationMetrics",
    "PauseMarker",
    "PidFile",
    "StartupManager",
    "StateHandlingResult",
    "SystemMonitor",
    "SystemStateDetector",
    "WorkPattern",
    "activity_from_cpu",
    "classify_transition",
    "optimal_interval",
]
