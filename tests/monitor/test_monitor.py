# tests/monitor/test_monitor.py
"""Tests for SystemMonitor state handling, scheduling and status."""

from datetime import timedelta
from pathlib import Path

import pytest

from respawn.contracts import BatteryStatus, IntegrityError, NotificationKind, SystemState
from respawn.core.checkpoint import CheckpointManager, CheckpointStorage
from respawn.core.config import RespawnSettings, RestoreSettings
from respawn.engine.clock import MockClock
from respawn.monitor import PauseMarker, SystemMonitor, read_status
from respawn.monitor.heartbeat import HeartbeatStore
from respawn.monitor.work_pattern import LEARNING_PERIOD
from tests.fakes import FakeActivator, FakeProbe, FakeProcessTable, RecordingNotifier

MONITOR_PID = 4242


@pytest.fixture
def monitor(
    respawn_settings: RespawnSettings,
    manager: CheckpointManager,
    probe: FakeProbe,
    notifier: RecordingNotifier,
    clock: MockClock,
) -> SystemMonitor:
    respawn_settings.paths.ensure()
    return SystemMonitor(respawn_settings, manager, probe, notifier, clock=clock, pid=MONITOR_PID)


def _checkpoint_with(manager: CheckpointManager, table: FakeProcessTable, clock: MockClock, *names: str) -> str:
    for name in names:
        table.start(name)
    checkpoint_id = manager.create_checkpoint().checkpoint_id
    for name in names:
        table.stop(name)
    clock.advance(60)
    return checkpoint_id


class TestHandleSystemState:
    def test_first_run_creates_initial_checkpoint(
        self,
        monitor: SystemMonitor,
        manager: CheckpointManager,
        process_table: FakeProcessTable,
        notifier: RecordingNotifier,
    ) -> None:
        process_table.start("Safari")

        result = monitor.handle_system_state(SystemState.FIRST_RUN)

        assert result.succeeded
        assert result.action == "initial_checkpoint"
        assert manager.get_available_checkpoints().total_count == 1
        assert notifier.kinds == [NotificationKind.INFO]
        assert monitor.last_checkpoint is not None

    def test_restart_restores_latest(
        self,
        monitor: SystemMonitor,
        manager: CheckpointManager,
        process_table: FakeProcessTable,
        activator: FakeActivator,
        notifier: RecordingNotifier,
        clock: MockClock,
    ) -> None:
        _checkpoint_with(manager, process_table, clock, "Safari", "Preview")

        result = monitor.handle_system_state(SystemState.RESTART)

        assert result.succeeded
        assert result.action == "restore"
        assert sorted(activator.opened) == ["Preview", "Safari"]
        (_, message, kind) = notifier.notifications[-1]
        assert kind == NotificationKind.SUCCESS
        assert message == "Restored 2 of 2 application(s)"
        assert monitor.metrics.restore_attempts == 2

    def test_restart_with_partial_failure_warns(
        self,
        respawn_settings: RespawnSettings,
        storage: CheckpointStorage,
        process_table: FakeProcessTable,
        probe: FakeProbe,
        notifier: RecordingNotifier,
        clock: MockClock,
    ) -> None:
        from respawn.engine.launcher import ApplicationLauncher
        from tests.fakes import FakeWindowManager

        activator = FakeActivator(process_table, fail_first={"Preview": 10})
        manager = CheckpointManager(
            storage,
            process_table,
            respawn_settings.monitored_apps(),
            respawn_settings.checkpoint,
            lambda: ApplicationLauncher(activator, process_table, FakeWindowManager(), respawn_settings.restore, clock=clock),
            clock=clock,
        )
        _checkpoint_with(manager, process_table, clock, "Safari", "Preview")
        monitor = SystemMonitor(respawn_settings, manager, probe, notifier, clock=clock, pid=MONITOR_PID)

        monitor.handle_system_state(SystemState.RESTART)

        (_, message, kind) = notifier.notifications[-1]
        assert kind == NotificationKind.WARNING
        assert message == "Restored 1 of 2 application(s); failed: Preview"

    def test_restart_without_checkpoints_is_quiet(self, monitor: SystemMonitor, notifier: RecordingNotifier) -> None:
        result = monitor.handle_system_state(SystemState.RESTART)

        assert result.succeeded
        assert notifier.notifications == []

    def test_restart_with_auto_restore_off(
        self,
        tmp_path: Path,
        manager: CheckpointManager,
        process_table: FakeProcessTable,
        activator: FakeActivator,
        probe: FakeProbe,
        notifier: RecordingNotifier,
        clock: MockClock,
    ) -> None:
        settings = RespawnSettings(data_dir=tmp_path / "other", restore=RestoreSettings(auto_restore=False))
        _checkpoint_with(manager, process_table, clock, "Safari")
        monitor = SystemMonitor(settings, manager, probe, notifier, clock=clock, pid=MONITOR_PID)

        monitor.handle_system_state(SystemState.RESTART)

        assert activator.opened == []

    def test_crash_recovery_skips_running_apps(
        self,
        monitor: SystemMonitor,
        manager: CheckpointManager,
        process_table: FakeProcessTable,
        activator: FakeActivator,
        notifier: RecordingNotifier,
        clock: MockClock,
    ) -> None:
        _checkpoint_with(manager, process_table, clock, "Safari", "Preview")
        process_table.start("Safari")

        result = monitor.handle_system_state(SystemState.CRASH)

        assert result.action == "crash_recovery"
        assert activator.opened == ["Preview"]
        assert notifier.kinds[0] == NotificationKind.WARNING

    @pytest.mark.parametrize(
        ("state", "action"),
        [(SystemState.SLEEP, "heartbeat"), (SystemState.NORMAL, "resume"), (SystemState.UNKNOWN, "resume")],
    )
    def test_heartbeat_only_states(
        self,
        monitor: SystemMonitor,
        respawn_settings: RespawnSettings,
        manager: CheckpointManager,
        state: SystemState,
        action: str,
    ) -> None:
        result = monitor.handle_system_state(state)

        assert result.action == action
        assert HeartbeatStore(respawn_settings.paths.heartbeat_file).read() is not None
        assert manager.get_available_checkpoints().total_count == 0

    def test_handler_failure_keeps_state(
        self,
        monitor: SystemMonitor,
        manager: CheckpointManager,
        storage: CheckpointStorage,
        process_table: FakeProcessTable,
        clock: MockClock,
    ) -> None:
        checkpoint_id = _checkpoint_with(manager, process_table, clock, "Safari")
        path = storage.original_path(checkpoint_id)
        path.write_bytes(path.read_bytes() + b" ")

        result = monitor.handle_system_state(SystemState.RESTART)

        assert result.state == SystemState.RESTART
        assert not result.succeeded
        assert isinstance(result.error, IntegrityError)


class TestShouldCreateCheckpoint:
    def test_due_without_previous_checkpoint(self, monitor: SystemMonitor) -> None:
        assert monitor.should_create_checkpoint() is True

    def test_interval_respected(self, monitor: SystemMonitor, clock: MockClock) -> None:
        monitor.create_checkpoint_now()

        clock.advance(5 * 60)
        assert monitor.should_create_checkpoint() is False

        clock.advance(11 * 60)
        assert monitor.should_create_checkpoint() is True

    def test_paused(self, monitor: SystemMonitor, respawn_settings: RespawnSettings) -> None:
        PauseMarker(respawn_settings.paths).pause()

        assert monitor.should_create_checkpoint() is False

        PauseMarker(respawn_settings.paths).resume()
        assert monitor.should_create_checkpoint() is True

    def test_high_cpu_skips(self, monitor: SystemMonitor, probe: FakeProbe) -> None:
        probe.cpu = 85.0

        assert monitor.should_create_checkpoint() is False

    def test_intensive_activity_delays(self, monitor: SystemMonitor, probe: FakeProbe) -> None:
        probe.cpu = 70.0

        assert monitor.resources_safe(70.0) is True
        assert monitor.should_create_checkpoint() is False

    def test_low_battery_skips_only_when_unplugged(self, monitor: SystemMonitor, probe: FakeProbe) -> None:
        probe.battery_status = BatteryStatus(percent=10.0, power_plugged=False)
        assert monitor.should_create_checkpoint() is False

        probe.battery_status = BatteryStatus(percent=10.0, power_plugged=True)
        assert monitor.should_create_checkpoint() is True

    def test_unknown_signals_never_block(self, monitor: SystemMonitor, probe: FakeProbe) -> None:
        probe.cpu = None
        probe.battery_status = None

        assert monitor.should_create_checkpoint() is True


class TestPeriodicWork:
    def test_monitoring_cycle_checkpoints_and_maintains(
        self, monitor: SystemMonitor, manager: CheckpointManager, process_table: FakeProcessTable, clock: MockClock
    ) -> None:
        process_table.start("Safari")

        monitor.run_monitoring_cycle()

        assert manager.get_available_checkpoints().total_count == 1
        metrics = monitor.metrics
        assert metrics.last_maintenance == clock.now()
        assert metrics.last_optimization == clock.now()
        assert len(metrics.checkpoint_durations) == 1
        assert monitor.work_pattern.app_usage_frequency == {"Safari": 1}

    def test_maintenance_not_repeated_within_interval(self, monitor: SystemMonitor, clock: MockClock) -> None:
        monitor.run_maintenance()
        clock.advance(3600)

        assert monitor.should_run_maintenance() is False

        clock.advance(5 * 3600)
        assert monitor.should_run_maintenance() is True

    def test_learning_completes_after_period(
        self, monitor: SystemMonitor, process_table: FakeProcessTable, clock: MockClock
    ) -> None:
        process_table.start("Safari")
        monitor.create_checkpoint_now()
        monitor.update_learning_data()
        assert monitor.work_pattern.is_learning_complete is False

        clock.advance(LEARNING_PERIOD.total_seconds())
        monitor.update_learning_data()

        pattern = monitor.work_pattern
        assert pattern.is_learning_complete is True
        assert pattern.top_three_apps == ["Safari"]
        assert sum(pattern.cpu_samples.values()) == 2

    def test_learning_state_persisted(
        self,
        monitor: SystemMonitor,
        respawn_settings: RespawnSettings,
        manager: CheckpointManager,
        probe: FakeProbe,
        notifier: RecordingNotifier,
        clock: MockClock,
    ) -> None:
        monitor.create_checkpoint_now()

        reloaded = SystemMonitor(respawn_settings, manager, probe, notifier, clock=clock, pid=MONITOR_PID)

        assert len(reloaded.metrics.checkpoint_durations) == 1


class TestLifecycle:
    @pytest.mark.slow
    def test_start_and_stop(
        self,
        monitor: SystemMonitor,
        respawn_settings: RespawnSettings,
        manager: CheckpointManager,
        probe: FakeProbe,
    ) -> None:
        result = monitor.start()
        try:
            assert result.state == SystemState.FIRST_RUN
            assert monitor.is_running
            assert manager.get_available_checkpoints().total_count == 1
        finally:
            monitor.stop(timeout=5.0)

        assert not monitor.is_running
        # Last checkpoint is fresh: no final checkpoint on stop
        assert manager.get_available_checkpoints().total_count == 1

        probe.alive_pids = {MONITOR_PID}
        status = read_status(respawn_settings, probe)
        assert status.running is True
        assert status.pid == MONITOR_PID
        assert status.last_heartbeat is not None

    def test_stop_takes_final_checkpoint_when_stale(
        self, monitor: SystemMonitor, manager: CheckpointManager, clock: MockClock
    ) -> None:
        monitor.create_checkpoint_now()
        clock.advance(timedelta(hours=3).total_seconds())

        monitor.stop()

        assert manager.get_available_checkpoints().total_count == 2

    def test_request_stop_wakes_wait(self, monitor: SystemMonitor) -> None:
        assert monitor.wait(0) is False

        monitor.request_stop()

        assert monitor.wait(0) is True


class TestReadStatus:
    def test_never_started(self, respawn_settings: RespawnSettings, probe: FakeProbe) -> None:
        status = read_status(respawn_settings, probe)

        assert status.running is False
        assert status.pid is None
        assert status.paused is False
        assert status.learning_complete is False
        assert status.restore_success_rate == 1.0

    def test_paused_and_stale_pid(self, respawn_settings: RespawnSettings, probe: FakeProbe) -> None:
        respawn_settings.paths.ensure()
        respawn_settings.paths.monitor_pid_file.write_text("999")
        PauseMarker(respawn_settings.paths).pause()

        status = read_status(respawn_settings, probe)

        assert status.paused is True
        assert status.pid == 999
        assert status.running is False
