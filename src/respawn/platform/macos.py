# src/respawn/platform/macos.py
"""macOS adapters: AppleScript (osascript) and LaunchAgent (launchctl)."""

import plistlib
import subprocess
from pathlib import Path

import structlog

from respawn.contracts import (
    AutoStartError,
    NotificationKind,
    PlatformCommandError,
    WindowState,
)
from respawn.core.logging import get_logger
from respawn.core.persistence import write_atomic

AGENT_LABEL = "com.respawn.agent"
NOTIFICATION_SOUND = "Glass"
ERROR_SOUND = "Basso"
OSASCRIPT_TIMEOUT_SECONDS = 10.0


def applescript_string(value: str) -> str:
    """Quote value as an AppleScript string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def run_osascript(script: str, *, timeout: float | None = OSASCRIPT_TIMEOUT_SECONDS) -> str:
    """Run an AppleScript and return its stripped stdout.

    Raises:
        PlatformCommandError: On non-zero exit, timeout or missing osascript
    """
    try:
        completed = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise PlatformCommandError("osascript", f"timed out after {e.timeout:g}s") from e
    except OSError as e:
        raise PlatformCommandError("osascript", str(e)) from e
    if completed.returncode != 0:
        raise PlatformCommandError("osascript", completed.stderr.strip() or f"exit code {completed.returncode}")
    return completed.stdout.strip()


class AppleScriptWindowManager:
    """Reads and sets the front window state through System Events."""

    def get_window_state(self, pid: int) -> WindowState:
        script = f"""
            tell application "System Events"
                set appProcess to first application process whose unix id is {int(pid)}
                if not (exists window 1 of appProcess) then return "normal"
                if value of attribute "AXMinimized" of window 1 of appProcess then return "minimized"
                if value of attribute "AXFullScreen" of window 1 of appProcess then return "maximized"
                return "normal"
            end tell
        """
        output = run_osascript(script)
        try:
            return WindowState(output)
        except ValueError:
            return WindowState.NORMAL

    def set_window_state(self, process_name: str, state: WindowState) -> None:
        if state == WindowState.NORMAL:
            return
        attribute = "AXMinimized" if state == WindowState.MINIMIZED else "AXFullScreen"
        script = f"""
            tell application "System Events"
                tell application process {applescript_string(process_name)}
                    if exists window 1 then
                        set value of attribute "{attribute}" of window 1 to true
                    end if
                end tell
            end tell
        """
        run_osascript(script)


class AppleScriptNotifier:
    """Banner notifications and dialogs.

    Notification failures are logged, never raised: a missing banner must not
    interrupt a restore.
    """

    def __init__(self, *, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger if logger is not None else get_logger(__name__)

    def notify(self, title: str, message: str, kind: NotificationKind = NotificationKind.INFO) -> None:
        self._logger.info("Notification", title=title, message=message, kind=kind.value)
        sound = ERROR_SOUND if kind == NotificationKind.ERROR else NOTIFICATION_SOUND
        script = (
            f"display notification {applescript_string(message)} with title {applescript_string(title)} "
            f'sound name "{sound}"'
        )
        try:
            # Banners only: the daemon sends these before its heartbeat loop starts
            run_osascript(script)
        except PlatformCommandError as e:
            self._logger.warning("Failed to show notification", title=title, error=str(e))

    def ask(self, title: str, message: str) -> bool:
        script = (
            f"display dialog {applescript_string(message)} with title {applescript_string(title)} "
            'buttons {"Cancel", "OK"} default button "OK" with icon caution'
        )
        try:
            output = run_osascript(script, timeout=None)
        except PlatformCommandError:
            # Cancel exits non-zero
            return False
        return "OK" in output


class AccessibilityPermissionChecker:
    """Reports Accessibility when System Events refuses window queries."""

    def missing_permissions(self) -> list[str]:
        script = """
            tell application "System Events"
                try
                    set x to every window of (first application process whose frontmost is true)
                    return "true"
                on error
                    return "false"
                end try
            end tell
        """
        try:
            granted = run_osascript(script) == "true"
        except PlatformCommandError:
            granted = False
        return [] if granted else ["Accessibility"]


def default_plist_path() -> Path:
    return Path.home() / "Library" / "LaunchAgents" / f"{AGENT_LABEL}.plist"


class LaunchAgentAutoStart:
    """Per-user LaunchAgent that starts the daemon at login and after crashes."""

    def __init__(
        self,
        program_arguments: list[str],
        log_dir: Path,
        *,
        plist_path: Path | None = None,
        label: str = AGENT_LABEL,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._program_arguments = list(program_arguments)
        self._log_dir = log_dir
        self._plist_path = plist_path if plist_path is not None else default_plist_path()
        self._label = label
        self._logger = logger if logger is not None else get_logger(__name__)

    @property
    def plist_path(self) -> Path:
        return self._plist_path

    def agent_definition(self) -> dict[str, object]:
        return {
            "Label": self._label,
            "ProgramArguments": self._program_arguments,
            "RunAtLoad": True,
            "KeepAlive": {"SuccessfulExit": False, "Crashed": True},
            "ThrottleInterval": 10,
            "StandardOutPath": str(self._log_dir / "respawn_stdout.log"),
            "StandardErrorPath": str(self._log_dir / "respawn_stderr.log"),
        }

    def is_installed(self) -> bool:
        return self._plist_path.exists()

    def is_enabled(self) -> bool:
        if not self.is_installed():
            return False
        try:
            completed = subprocess.run(
                ["launchctl", "list", self._label],
                capture_output=True,
                text=True,
                timeout=OSASCRIPT_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return completed.returncode == 0

    def install(self) -> None:
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            write_atomic(self._plist_path, plistlib.dumps(self.agent_definition()))
        except OSError as e:
            raise AutoStartError(f"Failed to write LaunchAgent plist: {e}") from e
        self._logger.debug("LaunchAgent plist created", plist_path=str(self._plist_path))

    def uninstall(self) -> None:
        if self.is_enabled():
            self.disable()
        try:
            self._plist_path.unlink(missing_ok=True)
        except OSError as e:
            raise AutoStartError(f"Failed to remove LaunchAgent plist: {e}") from e
        self._logger.debug("LaunchAgent plist removed")

    def enable(self) -> None:
        self._launchctl("load", "-w", str(self._plist_path))

    def disable(self) -> None:
        self._launchctl("unload", "-w", str(self._plist_path))

    def _launchctl(self, *args: str) -> None:
        try:
            completed = subprocess.run(
                ["launchctl", *args],
                capture_output=True,
                text=True,
                timeout=OSASCRIPT_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise AutoStartError(f"launchctl {args[0]} failed: {e}") from e
        if completed.returncode != 0:
            raise AutoStartError(f"launchctl {args[0]} failed: {completed.stderr.strip()}")
