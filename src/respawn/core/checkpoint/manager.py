"""CheckpointManager for creating, listing, restoring and maintaining checkpoints."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

import structlog

from respawn.contracts import (
    Checkpoint,
    CheckpointList,
    LaunchResult,
    MonitoredApp,
    NoCheckpointsError,
    ProcessRecord,
    ProcessSnapshotSource,
    RespawnError,
    StorageWriteError,
)
from respawn.core.checkpoint.storage import CheckpointStorage, CleanupResult, DiskUsage
from respawn.core.config import CheckpointSettings
from respawn.core.logging import get_logger
from respawn.engine.clock import DEFAULT_CLOCK, Clock


class RestorationLauncher(Protocol):
    """What the manager needs from an application launcher."""

    def restore_applications(self, processes: list[ProcessRecord]) -> list[LaunchResult]: ...


@dataclass
class MaintenanceReport:
    """What one maintenance pass did. Sub-task failures land in errors."""

    disk_usage: DiskUsage | None = None
    disk_usage_exceeded: bool = False
    cleanup: CleanupResult | None = None
    compressed_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class CheckpointManager:
    """Single owner of checkpoint actions.

    Creates checkpoints from the process snapshot source, lists them
    newest-first, restores them through a launcher created per run, and
    runs best-effort maintenance (disk check, retention, compression).
    """

    def __init__(
        self,
        storage: CheckpointStorage,
        snapshot_source: ProcessSnapshotSource,
        apps: list[MonitoredApp],
        settings: CheckpointSettings,
        launcher_factory: Callable[[], RestorationLauncher],
        *,
        disk_usage_threshold_percent: float = 75.0,
        clock: Clock = DEFAULT_CLOCK,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        """Initialize manager.

        Args:
            storage: Checkpoint storage
            snapshot_source: Reports running monitored applications
            apps: Monitored applications (enabled only)
            settings: Retention and compression parameters
            launcher_factory: Creates a fresh launcher for each restoration run
            disk_usage_threshold_percent: Volume usage that triggers a warning
            clock: Time source for identifiers and cutoffs
            logger: Injected logger (defaults to the module logger)
        """
        self._storage = storage
        self._snapshot_source = snapshot_source
        self._apps = list(apps)
        self._settings = settings
        self._launcher_factory = launcher_factory
        self._disk_threshold = disk_usage_threshold_percent
        self._clock = clock
        self._logger = logger if logger is not None else get_logger(__name__)

    @property
    def storage(self) -> CheckpointStorage:
        return self._storage

    def create_checkpoint(self) -> Checkpoint:
        """Snapshot running monitored applications and persist the result.

        An empty snapshot produces a valid checkpoint with no applications.

        Raises:
            DuplicateCheckpointError: If a checkpoint was already created
                in the same second
            StorageWriteError: If the record cannot be written
        """
        processes = self._snapshot_source.list_running(self._apps)
        if not processes:
            self._logger.warning("No monitored applications running; creating empty checkpoint")

        checkpoint = Checkpoint.from_processes(self._clock.now(), processes)
        self._storage.save_checkpoint(checkpoint)

        self._logger.info(
            "Checkpoint created",
            checkpoint_id=checkpoint.checkpoint_id,
            apps=checkpoint.app_names,
        )
        return checkpoint

    def get_available_checkpoints(self) -> CheckpointList:
        """All readable checkpoints, newest first (ties broken by identifier)."""
        checkpoints = sorted(
            self._storage.load_all_checkpoints(),
            key=lambda cp: (cp.timestamp, cp.checkpoint_id),
            reverse=True,
        )
        return CheckpointList(checkpoints=tuple(checkpoints), last_used=self._storage.read_last_used())

    def latest_checkpoint_time(self) -> datetime | None:
        latest = self.get_available_checkpoints().latest
        return latest.timestamp if latest is not None else None

    def restore_from_checkpoint(self, checkpoint_id: str) -> list[LaunchResult]:
        """Relaunch the applications recorded in one checkpoint.

        Individual application failures are part of the returned results;
        they do not make the restoration fail.

        Raises:
            CheckpointNotFoundError: If the checkpoint does not exist
            IntegrityError: If the checkpoint is corrupted
            CorruptRecordError: If the checkpoint cannot be decoded
        """
        checkpoint = self._storage.load_checkpoint(checkpoint_id)

        try:
            self._storage.write_last_used(checkpoint_id, self._clock.now())
        except StorageWriteError as e:
            self._logger.warning("Could not record last-used checkpoint", checkpoint_id=checkpoint_id, error=str(e))

        self._logger.info(
            "Restoring checkpoint",
            checkpoint_id=checkpoint_id,
            apps=checkpoint.app_names,
        )
        launcher = self._launcher_factory()
        return launcher.restore_applications(checkpoint.processes)

    def restore_latest_checkpoint(self) -> list[LaunchResult]:
        """Restore the newest checkpoint.

        Raises:
            NoCheckpointsError: If no checkpoints exist
        """
        latest = self.get_available_checkpoints().latest
        if latest is None:
            raise NoCheckpointsError("No checkpoints available to restore")
        return self.restore_from_checkpoint(latest.checkpoint_id)

    def perform_maintenance_tasks(self) -> MaintenanceReport:
        """Disk check, retention cleanup and compression.

        Best-effort: every sub-task failure is logged and recorded in the
        report; nothing is raised.
        """
        report = MaintenanceReport()
        now = self._clock.now()

        try:
            usage = self._storage.disk_usage()
            report.disk_usage = usage
            if usage.percent_used > self._disk_threshold:
                report.disk_usage_exceeded = True
                self._logger.warning(
                    "Disk usage above threshold",
                    percent_used=round(usage.percent_used, 1),
                    threshold=self._disk_threshold,
                    checkpoint_bytes=usage.checkpoint_bytes,
                )
        except OSError as e:
            self._record_failure(report, "disk_check", e)

        try:
            cutoff = now - timedelta(days=self._settings.retention_days)
            report.cleanup = self._storage.clean_old_checkpoints(cutoff)
        except (RespawnError, OSError) as e:
            self._record_failure(report, "retention", e)

        try:
            report.compressed_ids = self._compress_eligible()
        except (RespawnError, OSError) as e:
            self._record_failure(report, "compression", e)

        self._logger.info(
            "Maintenance finished",
            deleted_count=report.cleanup.deleted_count if report.cleanup is not None else 0,
            compressed_count=len(report.compressed_ids),
            error_count=len(report.errors),
        )
        return report

    def _compress_eligible(self) -> list[str]:
        """Compress uncompressed checkpoints older than the compression age.

        Age is measured against the last-used checkpoint, or the newest one
        when none has been used.
        """
        listing = self.get_available_checkpoints()
        reference = listing.find(listing.last_used) if listing.last_used is not None else None
        if reference is None:
            reference = listing.latest
        if reference is None:
            return []

        threshold = reference.timestamp - timedelta(hours=self._settings.compression_age_hours)
        compressed: list[str] = []
        for checkpoint in listing.checkpoints:
            if checkpoint.is_compressed or checkpoint.timestamp >= threshold:
                continue
            try:
                self._storage.compress_checkpoint(checkpoint)
            except (RespawnError, OSError) as e:
                self._logger.warning(
                    "Checkpoint compression failed",
                    checkpoint_id=checkpoint.checkpoint_id,
                    error=str(e),
                )
                continue
            compressed.append(checkpoint.checkpoint_id)
        return compressed

    def _record_failure(self, report: MaintenanceReport, task: str, error: Exception) -> None:
        self._logger.warning("Maintenance task failed", task=task, error=str(error), error_type=type(error).__name__)
        report.errors.append(f"{task}: {error}")
