"""CLI helper functions for wiring settings to adapters and the core."""

from dataclasses import dataclass
from pathlib import Path

from respawn.core.checkpoint import CheckpointManager, CheckpointStorage
from respawn.core.config import RespawnSettings
from respawn.engine.clock import DEFAULT_CLOCK, Clock
from respawn.engine.launcher import ApplicationLauncher
from respawn.platform import Platform, build_platform


@dataclass(frozen=True)
class Runtime:
    """Everything a command needs, built once per invocation."""

    settings: RespawnSettings
    config_path: Path | None
    platform: Platform
    storage: CheckpointStorage
    manager: CheckpointManager


def build_runtime(
    settings: RespawnSettings,
    *,
    config_path: Path | None = None,
    clock: Clock = DEFAULT_CLOCK,
) -> Runtime:
    """Instantiate adapters, storage and the checkpoint manager from settings.

    The data directory layout is created on first use.
    """
    settings.paths.ensure()
    platform = build_platform(settings, config_path=config_path)
    storage = CheckpointStorage(settings.paths.checkpoints_dir, last_used_file=settings.paths.last_used_file)

    def launcher_factory() -> ApplicationLauncher:
        # One launcher per restoration so result lists never mix runs
        return ApplicationLauncher(
            platform.activator,
            platform.lookup,
            platform.window_manager,
            settings.restore,
            clock=clock,
        )

    manager = CheckpointManager(
        storage,
        platform.processes,
        settings.monitored_apps(),
        settings.checkpoint,
        launcher_factory,
        disk_usage_threshold_percent=settings.monitor.disk_usage_threshold_percent,
        clock=clock,
    )
    return Runtime(settings=settings, config_path=config_path, platform=platform, storage=storage, manager=manager)
