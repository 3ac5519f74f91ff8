# tests/fakes.py
"""In-memory stand-ins for the OS collaborator protocols.

FakeProcessTable is the shared "OS": the snapshot source and lookup read it,
FakeActivator starts applications in it. Tests arrange the table, run the
code under test, then assert on the recorded calls.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from itertools import count

from respawn.contracts import (
    BatteryStatus,
    LaunchFailure,
    MonitoredApp,
    NotificationKind,
    ProcessRecord,
    WindowState,
)


class FakeProcessTable:
    """Running processes keyed by process name."""

    def __init__(self) -> None:
        self._pids = count(1000)
        self.running: dict[str, int] = {}
        self.memory_mb: dict[str, int] = {}
        self.window_states: dict[str, WindowState] = {}
        self.lookups: list[str] = []

    def start(self, process_name: str, *, memory_mb: int = 100, window_state: WindowState = WindowState.NORMAL) -> int:
        pid = next(self._pids)
        self.running[process_name] = pid
        self.memory_mb[process_name] = memory_mb
        self.window_states[process_name] = window_state
        return pid

    def stop(self, process_name: str) -> None:
        self.running.pop(process_name, None)

    # ProcessSnapshotSource
    def list_running(self, apps: list[MonitoredApp]) -> list[ProcessRecord]:
        return [
            ProcessRecord(
                name=app.name,
                pid=self.running[app.process_name],
                memory_mb=self.memory_mb.get(app.process_name, 0),
                window_state=self.window_states.get(app.process_name, WindowState.NORMAL),
                process_name=app.process_name,
            )
            for app in apps
            if app.process_name in self.running
        ]

    # ProcessLookup
    def find_pid(self, process_name: str) -> int | None:
        self.lookups.append(process_name)
        return self.running.get(process_name)


class FakeActivator:
    """Starts applications in the table.

    fail_first: process name -> number of opens that raise LaunchFailure
    before one succeeds.
    never_starts: opens report success but the process never appears.
    """

    def __init__(
        self,
        table: FakeProcessTable,
        *,
        fail_first: dict[str, int] | None = None,
        never_starts: Iterable[str] = (),
    ) -> None:
        self._table = table
        self._remaining_failures = dict(fail_first or {})
        self._never_starts = set(never_starts)
        self.opened: list[str] = []

    def open_application(self, process_name: str) -> None:
        self.opened.append(process_name)
        if self._remaining_failures.get(process_name, 0) > 0:
            self._remaining_failures[process_name] -= 1
            raise LaunchFailure(process_name, "Unable to find application")
        if process_name in self._never_starts:
            return
        self._table.start(process_name)

    def open_count(self, process_name: str) -> int:
        return self.opened.count(process_name)


class FakeWindowManager:
    def __init__(self, *, fail: bool = False) -> None:
        self._fail = fail
        self.applied: list[tuple[str, WindowState]] = []
        self.states: dict[int, WindowState] = {}

    def get_window_state(self, pid: int) -> WindowState:
        return self.states.get(pid, WindowState.NORMAL)

    def set_window_state(self, process_name: str, state: WindowState) -> None:
        if self._fail:
            raise OSError("window scripting unavailable")
        self.applied.append((process_name, state))


@dataclass
class FakeProbe:
    uptime: float | None = 86_400.0
    alive_pids: set[int] = field(default_factory=set)
    cpu: float | None = 10.0
    battery_status: BatteryStatus | None = None

    def uptime_seconds(self) -> float | None:
        return self.uptime

    def is_pid_alive(self, pid: int) -> bool:
        return pid in self.alive_pids

    def cpu_percent(self) -> float | None:
        return self.cpu

    def battery(self) -> BatteryStatus | None:
        return self.battery_status


@dataclass
class FakeRegistrar:
    installed: bool = False
    enabled: bool = False
    calls: list[str] = field(default_factory=list)

    def is_installed(self) -> bool:
        return self.installed

    def is_enabled(self) -> bool:
        return self.installed and self.enabled

    def install(self) -> None:
        self.calls.append("install")
        self.installed = True

    def uninstall(self) -> None:
        self.calls.append("uninstall")
        self.installed = False
        self.enabled = False

    def enable(self) -> None:
        self.calls.append("enable")
        self.enabled = True

    def disable(self) -> None:
        self.calls.append("disable")
        self.enabled = False


class RecordingNotifier:
    def __init__(self, *, answer: bool = True) -> None:
        self._answer = answer
        self.notifications: list[tuple[str, str, NotificationKind]] = []
        self.questions: list[tuple[str, str]] = []

    def notify(self, title: str, message: str, kind: NotificationKind = NotificationKind.INFO) -> None:
        self.notifications.append((title, message, kind))

    def ask(self, title: str, message: str) -> bool:
        self.questions.append((title, message))
        return self._answer

    @property
    def kinds(self) -> list[NotificationKind]:
        return [kind for _, _, kind in self.notifications]


@dataclass
class FakePermissionChecker:
    missing: list[str] = field(default_factory=list)

    def missing_permissions(self) -> list[str]:
        return list(self.missing)
