"""Restoration engine: relaunching applications with retry and verification.

- ApplicationLauncher: memory-ordered, one-at-a-time relaunch
- RetryManager: fixed-delay retries with tenacity
- Clock: injectable time source (SystemClock, MockClock)

Example:
    from respawn.engine import ApplicationLauncher

    launcher = ApplicationLauncher(activator, lookup, window_manager, settings.restore)
    results = launcher.restore_applications(checkpoint.processes)
    summary = launcher.get_launch_summary()
"""

# clock first: core.checkpoint imports it while respawn.engine is initializing
from respawn.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from respawn.engine.launcher import ApplicationLauncher, order_by_memory
from respawn.engine.retry import RetryConfig, RetryManager, RetryOutcome

__all__ = [
    "DEFAULT_CLOCK",
    "ApplicationLauncher",
    "Clock",
    "MockClock",
    "RetryConfig",
    "RetryManager",
    "RetryOutcome",
    "SystemClock",
    "order_by_memory",
]
