"""Heartbeat and monitor pid files.

The heartbeat file holds one RFC 3339 timestamp, rewritten every heartbeat
interval. The pid file holds the pid of the monitor that wrote it. Together
they let the next startup tell a clean run from a restart, sleep or crash.
"""

from datetime import UTC, datetime
from pathlib import Path

from respawn.contracts import CorruptRecordError
from respawn.core.persistence import write_atomic


class HeartbeatStore:
    """Reads and writes the liveness timestamp."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> datetime | None:
        """Last recorded heartbeat, or None when no heartbeat was ever written.

        Raises:
            CorruptRecordError: If the file exists but cannot be read or parsed
        """
        try:
            text = self._path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptRecordError(f"Heartbeat unreadable at {self._path}: {e}") from e

        try:
            timestamp = datetime.fromisoformat(text)
        except ValueError as e:
            raise CorruptRecordError(f"Heartbeat at {self._path} is not a timestamp: {text!r}") from e
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return timestamp

    def write(self, timestamp: datetime) -> None:
        """Atomically record a heartbeat.

        Raises:
            OSError: If the file cannot be written
        """
        write_atomic(self._path, timestamp.isoformat(timespec="seconds").encode("utf-8"))


class PidFile:
    """A file holding one process id."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> int | None:
        """Recorded pid, or None when the file is missing or malformed."""
        try:
            return int(self._path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def write(self, pid: int) -> None:
        write_atomic(self._path, str(pid).encode("utf-8"))

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
