# src/respawn/monitor/monitor.py
"""SystemMonitor: the long-running daemon.

At start it classifies the environment transition and runs the matching
handler, then runs three background loops until stopped:

- monitoring (every cycle_minutes): learning update, checkpoint-need
  evaluation, optimization check, maintenance
- heartbeat (every heartbeat_seconds): liveness timestamp
- learning (every learning_minutes): usage statistics

Thread Safety:
    All three loops share the work pattern, metrics and last-checkpoint
    fields; every access goes through one lock. The lock is never held
    while a checkpoint is being created or applications are being
    launched, so the heartbeat loop never waits on slow work.
"""

import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import assert_never

import structlog

from respawn.contracts import (
    CorruptRecordError,
    LaunchSummary,
    NoCheckpointsError,
    NotificationKind,
    Notifier,
    RespawnError,
    SystemProbe,
    SystemState,
    UserActivity,
)
from respawn.core.checkpoint import CheckpointManager
from respawn.core.config import RespawnPaths, RespawnSettings
from respawn.core.logging import get_logger
from respawn.engine.clock import DEFAULT_CLOCK, Clock
from respawn.monitor.heartbeat import HeartbeatStore, PidFile
from respawn.monitor.state import SystemStateDetector
from respawn.monitor.work_pattern import (
    OptimizationMetrics,
    WorkPattern,
    activity_from_cpu,
    load_model,
    optimal_interval,
    recommendations,
    save_model,
)

FINAL_CHECKPOINT_AGE = timedelta(hours=2)
OPTIMIZATION_INTERVAL = timedelta(hours=24)


@dataclass(frozen=True)
class StateHandlingResult:
    """Outcome of the handler run for a detected state.

    A failed handler does not change the detected state.
    """

    state: SystemState
    action: str
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CheckpointSummary:
    checkpoint_id: str
    app_names: tuple[str, ...]
    duration_seconds: float


@dataclass(frozen=True)
class MonitorStatus:
    """Snapshot for the status command."""

    running: bool
    pid: int | None
    paused: bool
    last_heartbeat: datetime | None
    learning_complete: bool
    top_apps: tuple[str, ...]
    restore_success_rate: float
    average_checkpoint_seconds: float | None


class PauseMarker:
    """The paused marker file: present means checkpoints are suspended."""

    def __init__(self, paths: RespawnPaths) -> None:
        self._path = paths.pause_file

    def is_paused(self) -> bool:
        return self._path.exists()

    def pause(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.touch()

    def resume(self) -> None:
        self._path.unlink(missing_ok=True)


class SystemMonitor:
    """Owns state detection, periodic checkpointing and maintenance."""

    def __init__(
        self,
        settings: RespawnSettings,
        manager: CheckpointManager,
        probe: SystemProbe,
        notifier: Notifier,
        *,
        clock: Clock = DEFAULT_CLOCK,
        logger: structlog.stdlib.BoundLogger | None = None,
        pid: int | None = None,
    ) -> None:
        """Initialize monitor and load persisted learning state.

        Args:
            settings: Full configuration
            manager: Checkpoint manager used by every handler and cycle
            probe: Uptime, pid liveness, CPU and battery signals
            notifier: User-facing messages
            clock: Time source
            logger: Injected logger (defaults to the module logger)
            pid: Pid recorded in monitor.pid (defaults to this process)
        """
        self._settings = settings
        self._paths = settings.paths
        self._manager = manager
        self._probe = probe
        self._notifier = notifier
        self._clock = clock
        self._logger = logger if logger is not None else get_logger(__name__)
        self._pid = pid if pid is not None else os.getpid()

        self._heartbeat = HeartbeatStore(self._paths.heartbeat_file)
        self._pid_file = PidFile(self._paths.monitor_pid_file)
        self._pause = PauseMarker(self._paths)
        self._detector = SystemStateDetector(
            self._heartbeat,
            self._pid_file,
            probe,
            settings.monitor,
            clock=clock,
            logger=self._logger,
        )

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

        self._work_pattern = load_model(
            self._paths.work_pattern_file,
            WorkPattern,
            WorkPattern(learning_start_date=clock.now()),
            self._logger,
        )
        self._metrics = load_model(self._paths.metrics_file, OptimizationMetrics, OptimizationMetrics(), self._logger)
        self._last_checkpoint: datetime | None = None

    @property
    def detector(self) -> SystemStateDetector:
        return self._detector

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    @property
    def last_checkpoint(self) -> datetime | None:
        with self._lock:
            return self._last_checkpoint

    @property
    def work_pattern(self) -> WorkPattern:
        with self._lock:
            return self._work_pattern.model_copy(deep=True)

    @property
    def metrics(self) -> OptimizationMetrics:
        with self._lock:
            return self._metrics.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> StateHandlingResult:
        """Detect and handle the system state, then start the loops.

        The loops start even when the handler failed; the failure is
        returned to the caller.
        """
        self._logger.info("Starting system monitor", pid=self._pid)
        self._paths.ensure()
        with self._lock:
            self._last_checkpoint = self._manager.latest_checkpoint_time()

        state = self._detector.detect_system_state()
        result = self.handle_system_state(state)
        if not result.succeeded:
            self._logger.error("Failed to handle system state", state=state.value, error=str(result.error))

        self._pid_file.write(self._pid)
        self.write_heartbeat()
        self._save_learning_state()

        self._stop_event.clear()
        self._threads = [
            self._start_loop("respawn-monitoring", self._settings.monitor.cycle_minutes * 60, self.run_monitoring_cycle),
            self._start_loop("respawn-heartbeat", self._settings.monitor.heartbeat_seconds, self.write_heartbeat),
            self._start_loop("respawn-learning", self._settings.monitor.learning_minutes * 60, self.update_learning_data),
        ]
        self._logger.info("System monitor started", state=state.value)
        return result

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the loops, take a final checkpoint if the last is stale, write a heartbeat."""
        self._logger.info("Stopping system monitor")
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []

        last = self.last_checkpoint
        if last is None or self._clock.now() - last > FINAL_CHECKPOINT_AGE:
            try:
                self.create_checkpoint_now()
            except (RespawnError, OSError) as e:
                self._logger.error("Final checkpoint failed", error=str(e))

        self.write_heartbeat()
        self._save_learning_state()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop() is requested. Returns True once stopped."""
        return self._stop_event.wait(timeout)

    def request_stop(self) -> None:
        """Signal-handler safe: wake wait() without joining threads."""
        self._stop_event.set()

    def _start_loop(self, name: str, interval_seconds: float, task: Callable[[], object]) -> threading.Thread:
        def run() -> None:
            while not self._stop_event.wait(interval_seconds):
                try:
                    task()
                except Exception as e:
                    # A failed iteration must not end the loop
                    self._logger.error("Background task failed", loop=name, error=str(e), exc_info=True)

        thread = threading.Thread(target=run, name=name, daemon=True)
        thread.start()
        return thread

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    def handle_system_state(self, state: SystemState) -> StateHandlingResult:
        """Run the one handler mapped to state."""
        handler: Callable[[], None]
        match state:
            case SystemState.FIRST_RUN:
                action, handler = "initial_checkpoint", self._create_initial_checkpoint
            case SystemState.RESTART:
                action, handler = "restore", self._handle_restart
            case SystemState.SLEEP:
                action, handler = "heartbeat", self.write_heartbeat
            case SystemState.CRASH:
                action, handler = "crash_recovery", self._handle_crash_recovery
            case SystemState.NORMAL | SystemState.UNKNOWN:
                action, handler = "resume", self.write_heartbeat
            case _:
                assert_never(state)

        self._logger.info("Handling system state", state=state.value, action=action)
        try:
            handler()
        except (RespawnError, OSError) as e:
            return StateHandlingResult(state=state, action=action, error=e)
        return StateHandlingResult(state=state, action=action)

    def _create_initial_checkpoint(self) -> None:
        summary = self.create_checkpoint_now()
        self._notifier.notify(
            "Respawn is running",
            f"Initial checkpoint saved with {len(summary.app_names)} application(s)",
            NotificationKind.INFO,
        )

    def _handle_restart(self) -> None:
        if not self._settings.restore.auto_restore:
            self._logger.info("Restart detected, automatic restore disabled")
            return
        self._restore_latest("System restart detected")

    def _handle_crash_recovery(self) -> None:
        # The OS session survived; the launcher skips applications that are still running
        self._notifier.notify(
            "Respawn recovered",
            "Respawn stopped unexpectedly and has been restarted",
            NotificationKind.WARNING,
        )
        if self._settings.restore.auto_restore:
            self._restore_latest("Recovering applications after crash")
        self.write_heartbeat()

    def _restore_latest(self, reason: str) -> None:
        self._logger.info(reason)
        try:
            results = self._manager.restore_latest_checkpoint()
        except NoCheckpointsError:
            self._logger.info("No checkpoints to restore")
            return

        summary = LaunchSummary.from_results(results)
        with self._lock:
            self._metrics.record_restore(summary.success_count, summary.fail_count)
        self._save_learning_state()

        if summary.total == 0:
            return
        if summary.all_failed:
            kind = NotificationKind.ERROR
        elif summary.fail_count:
            kind = NotificationKind.WARNING
        else:
            kind = NotificationKind.SUCCESS
        message = f"Restored {summary.success_count} of {summary.total} application(s)"
        if summary.failed_names:
            message += f"; failed: {', '.join(summary.failed_names)}"
        self._notifier.notify("Respawn restore", message, kind)

    # ------------------------------------------------------------------
    # Periodic work
    # ------------------------------------------------------------------

    def write_heartbeat(self) -> None:
        try:
            self._heartbeat.write(self._clock.now())
        except OSError as e:
            self._logger.error("Failed to write heartbeat", error=str(e))

    def run_monitoring_cycle(self) -> None:
        self._logger.debug("Performing monitoring cycle")
        self.update_learning_data()

        if self.should_create_checkpoint():
            try:
                self.create_checkpoint_now()
            except (RespawnError, OSError) as e:
                self._logger.error("Scheduled checkpoint failed", error=str(e))

        if self.should_run_optimizations():
            self.check_optimizations()

        if self.should_run_maintenance():
            self.run_maintenance()

    def should_create_checkpoint(self) -> bool:
        if self._pause.is_paused():
            self._logger.debug("Monitoring paused, skipping checkpoint")
            return False

        cpu = self._probe.cpu_percent()
        activity = activity_from_cpu(cpu)
        now = self._clock.now()
        with self._lock:
            interval = optimal_interval(
                self._settings.checkpoint.interval,
                self._work_pattern,
                now.astimezone().hour,
                activity,
            )
            last = self._last_checkpoint

        if last is not None and now - last < interval:
            return False
        if not self.resources_safe(cpu):
            return False
        if activity == UserActivity.INTENSIVE:
            self._logger.debug("User in intensive work, delaying checkpoint", cpu_percent=cpu)
            return False
        return True

    def resources_safe(self, cpu_percent: float | None) -> bool:
        """False under high CPU or low battery on battery power.

        Unknown signals never block.
        """
        if cpu_percent is not None and cpu_percent > self._settings.monitor.cpu_busy_percent:
            self._logger.debug("High CPU usage, skipping checkpoint", cpu_percent=cpu_percent)
            return False
        battery = self._probe.battery()
        if battery is not None and not battery.power_plugged and battery.percent <= self._settings.monitor.low_battery_percent:
            self._logger.debug("Low battery, skipping checkpoint", battery_percent=battery.percent)
            return False
        return True

    def create_checkpoint_now(self) -> CheckpointSummary:
        started = self._clock.monotonic()
        checkpoint = self._manager.create_checkpoint()
        duration = self._clock.monotonic() - started

        with self._lock:
            self._last_checkpoint = checkpoint.timestamp
            self._metrics.record_checkpoint_duration(duration)
            if not self._work_pattern.is_learning_complete:
                self._work_pattern.record_app_usage(checkpoint.app_names)
        self._save_learning_state()
        return CheckpointSummary(checkpoint.checkpoint_id, tuple(checkpoint.app_names), duration)

    def update_learning_data(self) -> None:
        now = self._clock.now()
        cpu = self._probe.cpu_percent()
        with self._lock:
            if self._work_pattern.is_learning_complete:
                return
            if cpu is not None:
                self._work_pattern.record_cpu(now.astimezone().hour, cpu)
            if self._work_pattern.learning_due(now):
                self._work_pattern.complete_learning()
                self._logger.info("Learning period complete", top_apps=self._work_pattern.top_three_apps)
        self._save_learning_state()

    def should_run_optimizations(self) -> bool:
        with self._lock:
            last = self._metrics.last_optimization
        return last is None or self._clock.now() - last > OPTIMIZATION_INTERVAL

    def check_optimizations(self) -> list[str]:
        with self._lock:
            found = recommendations(self._metrics)
            self._metrics.last_optimization = self._clock.now()
            success_rate = self._metrics.restore_success_rate
            average = self._metrics.average_checkpoint_duration
        self._save_learning_state()

        self._logger.info(
            "Optimization check",
            restore_success_rate=round(success_rate, 3),
            average_checkpoint_seconds=round(average, 3) if average is not None else None,
            recommendation_count=len(found),
        )
        for recommendation in found:
            self._logger.info("Optimization available", recommendation=recommendation)
        return found

    def should_run_maintenance(self) -> bool:
        with self._lock:
            last = self._metrics.last_maintenance
        interval = timedelta(hours=self._settings.monitor.maintenance_interval_hours)
        return last is None or self._clock.now() - last >= interval

    def run_maintenance(self) -> None:
        self._manager.perform_maintenance_tasks()
        with self._lock:
            self._metrics.last_maintenance = self._clock.now()
        self._save_learning_state()

    def _save_learning_state(self) -> None:
        with self._lock:
            pattern = self._work_pattern.model_copy(deep=True)
            metrics = self._metrics.model_copy(deep=True)
        try:
            save_model(self._paths.work_pattern_file, pattern)
            save_model(self._paths.metrics_file, metrics)
        except OSError as e:
            self._logger.warning("Failed to persist learning state", error=str(e))


def read_status(settings: RespawnSettings, probe: SystemProbe) -> MonitorStatus:
    """Status of the monitor as seen from another process."""
    paths = settings.paths
    logger = get_logger(__name__)
    pid = PidFile(paths.monitor_pid_file).read()
    try:
        last_heartbeat = HeartbeatStore(paths.heartbeat_file).read()
    except CorruptRecordError:
        last_heartbeat = None
    pattern = load_model(paths.work_pattern_file, WorkPattern, WorkPattern(learning_start_date=datetime.now(UTC)), logger)
    metrics = load_model(paths.metrics_file, OptimizationMetrics, OptimizationMetrics(), logger)
    return MonitorStatus(
        running=pid is not None and probe.is_pid_alive(pid),
        pid=pid,
        paused=PauseMarker(paths).is_paused(),
        last_heartbeat=last_heartbeat,
        learning_complete=pattern.is_learning_complete,
        top_apps=tuple(pattern.top_three_apps),
        restore_success_rate=metrics.restore_success_rate,
        average_checkpoint_seconds=metrics.average_checkpoint_duration,
    )
