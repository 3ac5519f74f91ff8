# src/respawn/contracts/platform.py
"""Protocols for the OS collaborators the core depends on.

The core never enumerates processes, opens applications, or talks to the
login-session manager itself. It calls these protocols; respawn.platform
provides default adapters and tests inject in-memory fakes.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from respawn.contracts.checkpoint import ProcessRecord
from respawn.contracts.enums import NotificationKind, WindowState


@dataclass(frozen=True)
class MonitoredApp:
    """A configured application the snapshot source should look for."""

    name: str
    process_name: str


@dataclass(frozen=True)
class BatteryStatus:
    percent: float
    power_plugged: bool


@runtime_checkable
class ProcessSnapshotSource(Protocol):
    """Reports which monitored applications are running.

    Pure query. A failure for one application is logged and that application
    is omitted; the rest of the pass continues.
    """

    def list_running(self, apps: list[MonitoredApp]) -> list[ProcessRecord]: ...


@runtime_checkable
class ProcessLookup(Protocol):
    """Independent liveness lookup by process name."""

    def find_pid(self, process_name: str) -> int | None: ...


@runtime_checkable
class ApplicationActivator(Protocol):
    """Fire-and-forget application activation.

    Returning normally does not mean the application is live.

    Raises:
        LaunchFailure: If the OS open mechanism reports an error
    """

    def open_application(self, process_name: str) -> None: ...


@runtime_checkable
class WindowManager(Protocol):
    """Best-effort window state query and application."""

    def get_window_state(self, pid: int) -> WindowState: ...

    def set_window_state(self, process_name: str, state: WindowState) -> None: ...


@runtime_checkable
class SystemProbe(Protocol):
    """Environment signals. None means the signal is unknown."""

    def uptime_seconds(self) -> float | None: ...

    def is_pid_alive(self, pid: int) -> bool: ...

    def cpu_percent(self) -> float | None: ...

    def battery(self) -> BatteryStatus | None: ...


@runtime_checkable
class AutoStartRegistrar(Protocol):
    """OS login auto-start registration."""

    def is_installed(self) -> bool: ...

    def is_enabled(self) -> bool: ...

    def install(self) -> None: ...

    def uninstall(self) -> None: ...

    def enable(self) -> None: ...

    def disable(self) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    """User-facing messages. ask() returns True when the user accepts."""

    def notify(self, title: str, message: str, kind: NotificationKind = NotificationKind.INFO) -> None: ...

    def ask(self, title: str, message: str) -> bool: ...


@runtime_checkable
class PermissionChecker(Protocol):
    """Checks OS capabilities required by the daemon."""

    def missing_permissions(self) -> list[str]: ...
