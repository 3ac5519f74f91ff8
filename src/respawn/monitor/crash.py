"""CrashTracker: sliding-window crash counter with a sticky disable flag.

The tracker only reports. Turning auto-start off when it says so is the
StartupManager's job.
"""

from datetime import UTC, datetime
from pathlib import Path

import structlog

from respawn.core.config import CrashSettings
from respawn.core.logging import get_logger
from respawn.core.persistence import read_json, write_json_atomic
from respawn.engine.clock import DEFAULT_CLOCK, Clock


class CrashTracker:
    """Counts crashes within a sliding window, persisted across restarts.

    Entries older than the window are pruned on every read. Once the
    count reaches max_crashes, is_disabled is set and stays set until
    clear() is called.
    """

    def __init__(
        self,
        path: Path,
        settings: CrashSettings,
        *,
        clock: Clock = DEFAULT_CLOCK,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._path = path
        self._max_crashes = settings.max_crashes
        self._window = settings.window
        self._clock = clock
        self._logger = logger if logger is not None else get_logger(__name__)
        self._crashes: list[datetime] = []
        self._disabled = False
        self._load()

    @property
    def is_disabled(self) -> bool:
        return self._disabled

    @property
    def recent_crashes(self) -> list[datetime]:
        """Crash times inside the window, oldest first."""
        self._prune()
        return list(self._crashes)

    @property
    def crash_count(self) -> int:
        return len(self.recent_crashes)

    def record_crash(self) -> None:
        """Append the current time, prune and persist."""
        self._crashes.append(self._clock.now())
        self._prune()
        self._logger.warning(
            "Crash recorded",
            crashes_in_window=len(self._crashes),
            max_crashes=self._max_crashes,
        )
        self._save()

    def should_disable_auto_start(self) -> bool:
        """True once max_crashes occurred within the window (sticky)."""
        if self._disabled:
            return True
        if self.crash_count >= self._max_crashes:
            self._disabled = True
            self._logger.error(
                "Crash limit reached, auto-start should be disabled",
                crashes_in_window=len(self._crashes),
                window_minutes=self._window.total_seconds() / 60,
            )
            self._save()
            return True
        return False

    def clear(self) -> None:
        """Forget all crashes and lift the sticky disable."""
        self._crashes = []
        self._disabled = False
        self._save()
        self._logger.info("Crash history cleared")

    def _prune(self) -> None:
        cutoff = self._clock.now() - self._window
        self._crashes = [t for t in self._crashes if t >= cutoff]

    def _load(self) -> None:
        try:
            payload = read_json(self._path)
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            self._logger.warning("Crash state unreadable, starting empty", path=str(self._path), error=str(e))
            return

        try:
            crashes = sorted(_parse_crash_time(item) for item in payload["crashes"])
            disabled = bool(payload["is_disabled"])
        except (KeyError, TypeError, ValueError) as e:
            self._logger.warning("Crash state malformed, starting empty", path=str(self._path), error=str(e))
            return

        self._crashes = crashes
        self._disabled = disabled
        self._prune()

    def _save(self) -> None:
        try:
            write_json_atomic(
                self._path,
                {
                    "crashes": [t.isoformat() for t in self._crashes],
                    "is_disabled": self._disabled,
                },
            )
        except OSError as e:
            self._logger.error("Failed to persist crash state", path=str(self._path), error=str(e))


def _parse_crash_time(value: str) -> datetime:
    """Parse a persisted crash time; naive values are read as UTC."""
    timestamp = datetime.fromisoformat(value)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp
