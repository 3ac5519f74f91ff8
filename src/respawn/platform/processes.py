# src/respawn/platform/processes.py
"""psutil-backed process, probe and activation adapters."""

import subprocess
import sys
import time

import psutil
import structlog

from respawn.contracts import (
    BatteryStatus,
    LaunchFailure,
    MonitoredApp,
    ProcessRecord,
    RespawnError,
    WindowManager,
    WindowState,
)
from respawn.core.logging import get_logger

BYTES_PER_MB = 1024 * 1024


class PsutilProcessSource:
    """Snapshot source and liveness lookup over psutil.process_iter.

    Matches configured process names exactly against the OS process name.
    The first match wins when an application runs several processes.
    """

    def __init__(
        self,
        window_manager: WindowManager,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._window_manager = window_manager
        self._logger = logger if logger is not None else get_logger(__name__)

    def list_running(self, apps: list[MonitoredApp]) -> list[ProcessRecord]:
        wanted = {app.process_name for app in apps}
        found: dict[str, psutil.Process] = {}
        for proc in psutil.process_iter(["name"]):
            name = proc.info.get("name")
            if name in wanted and name not in found:
                found[name] = proc

        records: list[ProcessRecord] = []
        for app in apps:
            proc = found.get(app.process_name)
            if proc is None:
                continue
            try:
                rss = proc.memory_info().rss
            except psutil.Error as e:
                self._logger.warning("Could not read process info, skipping", app=app.name, error=str(e))
                continue
            records.append(
                ProcessRecord(
                    name=app.name,
                    pid=proc.pid,
                    memory_mb=rss // BYTES_PER_MB,
                    window_state=self._window_state(app, proc.pid),
                    process_name=app.process_name,
                )
            )
        return records

    def find_pid(self, process_name: str) -> int | None:
        for proc in psutil.process_iter(["name"]):
            if proc.info.get("name") == process_name:
                return proc.pid
        return None

    def _window_state(self, app: MonitoredApp, pid: int) -> WindowState:
        try:
            return self._window_manager.get_window_state(pid)
        except (RespawnError, OSError) as e:
            self._logger.debug("Could not get window state", app=app.name, error=str(e))
            return WindowState.NORMAL


class SubprocessActivator:
    """Opens applications with ``open -a`` on macOS or a direct exec elsewhere."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        platform: str = sys.platform,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._platform = platform
        self._logger = logger if logger is not None else get_logger(__name__)

    def command_for(self, process_name: str) -> list[str]:
        if self._platform == "darwin":
            return ["open", "-a", process_name]
        return [process_name]

    def open_application(self, process_name: str) -> None:
        command = self.command_for(process_name)
        self._logger.debug("Opening application", command=command)
        try:
            if self._platform == "darwin":
                completed = subprocess.run(command, capture_output=True, text=True, timeout=self._timeout)
                if completed.returncode != 0:
                    raise LaunchFailure(process_name, completed.stderr.strip() or f"exit code {completed.returncode}")
            else:
                # GUI applications keep running; only a failure to exec is reported
                subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    start_new_session=True,
                )
        except subprocess.TimeoutExpired as e:
            raise LaunchFailure(process_name, f"open timed out after {self._timeout:g}s") from e
        except OSError as e:
            raise LaunchFailure(process_name, str(e)) from e


class PsutilSystemProbe:
    """Uptime, pid liveness, CPU load and battery. Unavailable signals are None."""

    def __init__(self, *, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger if logger is not None else get_logger(__name__)

    def uptime_seconds(self) -> float | None:
        try:
            return max(time.time() - psutil.boot_time(), 0.0)
        except (psutil.Error, OSError) as e:
            self._logger.warning("Could not read boot time", error=str(e))
            return None

    def is_pid_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            return bool(psutil.pid_exists(pid))
        except (psutil.Error, OSError):
            return False

    def cpu_percent(self) -> float | None:
        try:
            return float(psutil.cpu_percent(interval=0.5))
        except (psutil.Error, OSError) as e:
            self._logger.debug("Could not read CPU load", error=str(e))
            return None

    def battery(self) -> BatteryStatus | None:
        sensors_battery = getattr(psutil, "sensors_battery", None)
        if sensors_battery is None:
            return None
        try:
            reading = sensors_battery()
        except (psutil.Error, OSError, RuntimeError) as e:
            self._logger.debug("Could not read battery", error=str(e))
            return None
        if reading is None:
            return None
        return BatteryStatus(percent=float(reading.percent), power_plugged=bool(reading.power_plugged))
