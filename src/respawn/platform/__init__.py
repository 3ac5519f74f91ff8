"""Default OS adapters for the collaborator protocols in respawn.contracts.platform.

build_platform() picks AppleScript and LaunchAgent adapters on macOS and
inert fallbacks elsewhere; process queries use psutil everywhere.
"""

import sys
from dataclasses import dataclass
from pathlib import Path

from respawn.contracts import (
    ApplicationActivator,
    AutoStartRegistrar,
    Notifier,
    PermissionChecker,
    ProcessLookup,
    ProcessSnapshotSource,
    SystemProbe,
    WindowManager,
)
from respawn.core.config import RespawnSettings
from respawn.platform.fallback import LoggingNotifier, NullAutoStart, NullPermissionChecker, NullWindowManager
from respawn.platform.macos import (
    AccessibilityPermissionChecker,
    AppleScriptNotifier,
    AppleScriptWindowManager,
    LaunchAgentAutoStart,
)
from respawn.platform.processes import PsutilProcessSource, PsutilSystemProbe, SubprocessActivator

DEFAULT_OPEN_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class Platform:
    """One adapter per collaborator role."""

    processes: ProcessSnapshotSource
    lookup: ProcessLookup
    activator: ApplicationActivator
    window_manager: WindowManager
    probe: SystemProbe
    registrar: AutoStartRegistrar
    notifier: Notifier
    permissions: PermissionChecker


def agent_arguments(settings: RespawnSettings, config_path: Path | None = None) -> list[str]:
    """Command line the login agent runs: this interpreter, this config, ``start``."""
    config = config_path if config_path is not None else settings.paths.config_file
    return [sys.executable, "-m", "respawn", "--config", str(config), "start"]


def build_platform(
    settings: RespawnSettings,
    *,
    config_path: Path | None = None,
    platform: str = sys.platform,
) -> Platform:
    activator = SubprocessActivator(timeout_seconds=DEFAULT_OPEN_TIMEOUT_SECONDS, platform=platform)
    probe = PsutilSystemProbe()

    if platform == "darwin":
        window_manager: WindowManager = AppleScriptWindowManager()
        processes = PsutilProcessSource(window_manager)
        return Platform(
            processes=processes,
            lookup=processes,
            activator=activator,
            window_manager=window_manager,
            probe=probe,
            registrar=LaunchAgentAutoStart(agent_arguments(settings, config_path), settings.paths.log_dir),
            notifier=AppleScriptNotifier(),
            permissions=AccessibilityPermissionChecker(),
        )

    window_manager = NullWindowManager()
    processes = PsutilProcessSource(window_manager)
    return Platform(
        processes=processes,
        lookup=processes,
        activator=activator,
        window_manager=window_manager,
        probe=probe,
        registrar=NullAutoStart(platform),
        notifier=LoggingNotifier(),
        permissions=NullPermissionChecker(),
    )


__all__ = [
    "AccessibilityPermissionChecker",
    "AppleScriptNotifier",
    "AppleScriptWindowManager",
    "LaunchAgentAutoStart",
    "LoggingNotifier",
    "NullAutoStart",
    "NullPermissionChecker",
    "NullWindowManager",
    "Platform",
    "PsutilProcessSource",
    "PsutilSystemProbe",
    "SubprocessActivator",
    "agent_arguments",
    "build_platform",
]
