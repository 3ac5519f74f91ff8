"""Checkpoint domain contracts.

ProcessRecord is captured by the process snapshot source and never mutated.
Checkpoint is created by CheckpointManager and only mutated by Storage (path
and size after write, compression state after compression).
"""

from dataclasses import dataclass, field
from datetime import datetime

from respawn.contracts.enums import WindowState

CHECKPOINT_ID_FORMAT = "%Y-%m-%d_%H-%M-%S"


def checkpoint_id_for(timestamp: datetime) -> str:
    """Derive the lexicographically sortable identifier for a timestamp.

    Second resolution: two checkpoints in the same second share an ID.
    """
    return timestamp.strftime(CHECKPOINT_ID_FORMAT)


@dataclass(frozen=True)
class ProcessRecord:
    """One running monitored application at snapshot time."""

    name: str
    pid: int
    memory_mb: int
    window_state: WindowState = WindowState.NORMAL
    is_running: bool = True
    process_name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("ProcessRecord.name must not be empty")
        if self.memory_mb < 0:
            raise ValueError(f"ProcessRecord.memory_mb must be >= 0, got {self.memory_mb}")
        if not self.process_name:
            # Frozen dataclass: bypass __setattr__ to default process_name to name
            object.__setattr__(self, "process_name", self.name)


@dataclass
class Checkpoint:
    """A point-in-time set of ProcessRecords.

    file_size and is_compressed always describe the record's current on-disk
    representation. Summaries built from metadata carry no processes.
    """

    checkpoint_id: str
    timestamp: datetime
    processes: list[ProcessRecord] = field(default_factory=list)
    app_names: list[str] = field(default_factory=list)
    is_compressed: bool = False
    file_path: str = ""
    file_size: int = 0

    @classmethod
    def from_processes(cls, timestamp: datetime, processes: list[ProcessRecord]) -> "Checkpoint":
        """Build a new, not yet persisted checkpoint."""
        return cls(
            checkpoint_id=checkpoint_id_for(timestamp),
            timestamp=timestamp,
            processes=list(processes),
            app_names=[p.name for p in processes],
        )

    @property
    def display_name(self) -> str:
        """Descriptive name, e.g. ``2024-01-01_09-00-00 (Safari, Preview)``."""
        apps = ", ".join(self.app_names) if self.app_names else "No applications"
        return f"{self.checkpoint_id} ({apps})"


@dataclass
class CheckpointMetadata:
    """Sidecar record so listing never deserializes process data.

    checksum is the SHA-256 of the record's current on-disk bytes.
    original_checksum is the digest of the uncompressed record.
    """

    checkpoint_id: str
    timestamp: datetime
    checksum: str
    original_size: int
    app_names: list[str]
    is_compressed: bool = False
    compressed_size: int | None = None
    original_checksum: str | None = None


@dataclass(frozen=True)
class CheckpointList:
    """Read-only view of all known checkpoints, newest first."""

    checkpoints: tuple[Checkpoint, ...]
    last_used: str | None = None

    @property
    def total_count(self) -> int:
        return len(self.checkpoints)

    @property
    def compressed_count(self) -> int:
        return sum(1 for cp in self.checkpoints if cp.is_compressed)

    @property
    def latest(self) -> Checkpoint | None:
        return self.checkpoints[0] if self.checkpoints else None

    def find(self, checkpoint_id: str) -> Checkpoint | None:
        for cp in self.checkpoints:
            if cp.checkpoint_id == checkpoint_id:
                return cp
        return None
