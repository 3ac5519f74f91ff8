"""All status codes, states, and kinds used across subsystem boundaries.

Values are persisted (window state in checkpoint records) or logged, so
they are string enums with stable lowercase values.
"""

from enum import StrEnum


class WindowState(StrEnum):
    """Coarse window state captured at snapshot time.

    Stored in checkpoint records (ProcessRecord.window_state).
    """

    NORMAL = "normal"
    MINIMIZED = "minimized"
    MAXIMIZED = "maximized"


class SystemState(StrEnum):
    """Environment transition classified at daemon startup.

    Each state maps to exactly one handler in SystemMonitor.
    """

    FIRST_RUN = "first_run"
    NORMAL = "normal"
    SLEEP = "sleep"
    RESTART = "restart"
    CRASH = "crash"
    UNKNOWN = "unknown"


class UserActivity(StrEnum):
    """How busy the user is, derived from CPU load.

    UNKNOWN means the load could not be measured. It is never guessed.
    """

    UNKNOWN = "unknown"
    IDLE = "idle"
    LIGHT = "light"
    WORKING = "working"
    INTENSIVE = "intensive"


class NotificationKind(StrEnum):
    """Kind of message shown to the user."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
