# src/respawn/platform/fallback.py
"""Adapters for platforms without window scripting or login agents."""

import structlog

from respawn.contracts import AutoStartError, NotificationKind, WindowState
from respawn.core.logging import get_logger


class NullWindowManager:
    """Every window is normal; state changes are ignored."""

    def get_window_state(self, pid: int) -> WindowState:
        return WindowState.NORMAL

    def set_window_state(self, process_name: str, state: WindowState) -> None:
        return None


class NullAutoStart:
    """Auto-start is never installed here and cannot be changed."""

    def __init__(self, platform: str) -> None:
        self._platform = platform

    def is_installed(self) -> bool:
        return False

    def is_enabled(self) -> bool:
        return False

    def install(self) -> None:
        raise AutoStartError(f"Auto-start is not supported on {self._platform}")

    def uninstall(self) -> None:
        return None

    def enable(self) -> None:
        raise AutoStartError(f"Auto-start is not supported on {self._platform}")

    def disable(self) -> None:
        return None


_LEVELS = {
    NotificationKind.INFO: "info",
    NotificationKind.SUCCESS: "info",
    NotificationKind.WARNING: "warning",
    NotificationKind.ERROR: "error",
}


class LoggingNotifier:
    """Writes notifications to the log. Questions get the configured answer."""

    def __init__(self, *, answer: bool = False, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._answer = answer
        self._logger = logger if logger is not None else get_logger(__name__)

    def notify(self, title: str, message: str, kind: NotificationKind = NotificationKind.INFO) -> None:
        log = getattr(self._logger, _LEVELS[kind])
        log("Notification", title=title, message=message, kind=kind.value)

    def ask(self, title: str, message: str) -> bool:
        self._logger.info("Question answered automatically", title=title, message=message, answer=self._answer)
        return self._answer


class NullPermissionChecker:
    def missing_permissions(self) -> list[str]:
        return []
