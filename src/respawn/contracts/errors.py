"""Exception taxonomy.

Every error raised by respawn derives from RespawnError so the CLI can map
the whole family to a clean message and exit code 1.

Propagation rules:
- Single-checkpoint loads raise; batch listings skip and warn.
- LaunchFailure is per-application and never aborts a restoration run.
- Maintenance sub-task failures are logged, never raised.
"""


class RespawnError(Exception):
    """Base class for all respawn errors."""


class CheckpointNotFoundError(RespawnError, KeyError):
    """No record exists for the requested checkpoint identifier."""

    def __init__(self, checkpoint_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint not found: {checkpoint_id}")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])


class IntegrityError(RespawnError):
    """On-disk bytes do not match the digest recorded in metadata.

    Indicates disk corruption, a partial rewrite, or tampering. Corrupted
    data is never returned silently.
    """

    def __init__(self, checkpoint_id: str, expected: str, actual: str) -> None:
        self.checkpoint_id = checkpoint_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Checkpoint '{checkpoint_id}' failed integrity check: expected {expected}, got {actual}")


class StorageWriteError(RespawnError):
    """I/O failure while persisting a checkpoint or its metadata."""


class DuplicateCheckpointError(StorageWriteError):
    """A record for this identifier already exists.

    Identifiers have second resolution, so two checkpoints created within the
    same second collide. The second write fails instead of overwriting.
    """

    def __init__(self, checkpoint_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint '{checkpoint_id}' already exists; refusing to overwrite")


class CorruptRecordError(RespawnError):
    """Record bytes passed integrity checks but could not be decoded."""


class NoCheckpointsError(RespawnError):
    """Restoration was requested but no checkpoints exist."""


class LaunchFailure(RespawnError):
    """A single application could not be launched."""

    def __init__(self, app_name: str, reason: str) -> None:
        self.app_name = app_name
        self.reason = reason
        super().__init__(f"Failed to launch {app_name}: {reason}")


class InitializationError(RespawnError):
    """Daemon initialization (config, permissions, logging) failed."""


class InitializationTimeout(RespawnError):
    """Daemon initialization exceeded its time bound."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Initialization timeout (>{timeout_seconds:g} seconds)")


class PermissionNotGrantedError(RespawnError):
    """A required OS capability (e.g. accessibility access) is not granted."""


class InstanceAlreadyRunningError(RespawnError):
    """Another daemon instance holds the instance lock."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(f"Respawn is already running (PID: {pid})")


class AutoStartError(RespawnError):
    """Login auto-start registration could not be changed."""


class RestartExhaustedError(RespawnError):
    """Every restart attempt in the backoff policy failed."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Max restart retries ({attempts}) exceeded")


class PlatformCommandError(RespawnError):
    """An OS helper command (osascript, launchctl) failed."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"{command} failed: {reason}")
